# Core Package
from finhub.core.config import settings, Settings
from finhub.core.exceptions import (
    FinHubError, ValidationError, ConflictError, ApiError,
    NotFoundError, AuthenticationError, RemoteConflictError
)

__all__ = [
    'settings',
    'Settings',
    'FinHubError',
    'ValidationError',
    'ConflictError',
    'ApiError',
    'NotFoundError',
    'AuthenticationError',
    'RemoteConflictError',
]
