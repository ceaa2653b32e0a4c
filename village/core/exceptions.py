"""Custom exceptions for domain-specific errors"""

from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base exception for all domain errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# Authentication Errors
class AuthenticationError(DomainException):
    """Raised when authentication fails"""

    pass



class InvalidSessionPayloadError(AuthenticationError):
    """Raised when the auth gateway delivers an event without the data it implies"""

    def __init__(self, event: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Auth event {event} arrived without a usable session",
            details=details or {"event": event},
        )


# User & Profile Errors
class ProfileNotFoundError(DomainException):
    """Raised when profile does not exist"""

    pass


# External Service Errors
class ExternalServiceError(DomainException):
    """Raised when external service call fails"""

    pass


class SupabaseError(ExternalServiceError):
    """Raised when Supabase operation fails"""

    pass
