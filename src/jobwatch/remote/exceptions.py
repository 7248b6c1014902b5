"""Exception classes for session persistence."""

from typing import Optional


class SessionStateError(Exception):
    """Base exception for local session state errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self):
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class CredentialStorageError(SessionStateError):
    """Raised when the session file cannot be written or removed."""

    pass
