"""
FinHub - small-business finance frontend
"""
__version__ = "1.0.0"
