"""
APIToolkit Exceptions
=====================
Exception classes raised while bootstrapping the capture pipeline.
"""

from typing import Optional, Any


class APIToolkitError(Exception):
    """Base exception for all APIToolkit errors."""
    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        if status_code is not None:
            super().__init__(f"APIToolkit: {message} (Status: {status_code})")
        else:
            super().__init__(f"APIToolkit: {message}")


class InitializationError(APIToolkitError):
    """Raised when the client cannot be constructed (metadata fetch or credentials)."""
    pass
