"""
Error taxonomy shared by the domain core, the API client and the views
"""
from typing import Dict, List, Optional


class FinHubError(Exception):
    """Base class for all application errors"""

    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(FinHubError):
    """
    Client-detectable input problem. Blocks submission and is shown inline;
    it is never sent to the server.
    """

    default_message = "Please correct the highlighted fields"

    def __init__(self, errors: Dict[str, List[str]], message: Optional[str] = None):
        self.errors = errors
        if message is None:
            first = next((msgs[0] for msgs in errors.values() if msgs), None)
            message = first
        super().__init__(message)

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls({field: [message]})


class ConflictError(FinHubError):
    """Invalid state transition, duplicate or concurrent submission"""

    default_message = "The request conflicts with the current state"


class ApiError(FinHubError):
    """Non-2xx response or transport failure from the upstream API"""

    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None, payload: Optional[dict] = None):
        self.status_code = status_code
        self.payload = payload or {}
        super().__init__(message)


class NotFoundError(ApiError):
    default_message = "Not found"


class AuthenticationError(FinHubError):
    """
    HTTP 401 that survived the single refresh attempt.

    Not an ApiError: views that recover from API failures let this one
    through to the login redirect.
    """

    default_message = "Your session has expired. Please log in again."

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = 401, payload: Optional[dict] = None):
        self.status_code = status_code
        self.payload = payload or {}
        super().__init__(message)


class RemoteConflictError(ApiError, ConflictError):
    """Conflict detected by the server (HTTP 409)"""

    default_message = "The request conflicts with the current state"
