"""
Error taxonomy for identity resolution.

- ValidationError: the request carries nothing to resolve (client error, never retried)
- RepositoryError: the contact store failed or rejected a write (server error)
"""
from typing import Optional


class IdentityError(Exception):
    """Base class for identity resolution failures."""
    pass


class ValidationError(IdentityError):
    """Raised when a resolution request has no usable identifiers."""
    pass


class RepositoryError(IdentityError):
    """Raised when the contact store is unreachable or a constraint is violated."""

    def __init__(self, operation: str, message: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.message = message
        self.cause = cause
        super().__init__(f"{operation}: {message}")
