"""
Run script for the FinHub frontend
"""
import os
import sys

# Add project directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from finhub.core.config import settings
from finhub.web import app

if __name__ == '__main__':
    app.run(debug=settings.DEBUG, port=int(os.getenv('PORT', 5000)), host='0.0.0.0')
