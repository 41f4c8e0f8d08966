"""
Exception classes for the FieldShare proximity core.

Validation errors (geometry, overlap, input) are user-correctable and are
raised before any write. StoreError wraps persistence failures and is never
shown to users in detail.
"""

from typing import Optional, Dict, Any, List


class FieldShareError(Exception):
    """Base exception class for all FieldShare exceptions."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (Context: {context_str})"
        return self.message


class ConfigurationError(FieldShareError):
    """Raised when an environment setting is missing or malformed."""
    pass


class GeometryError(FieldShareError):
    """
    Raised by the geometry utilities for degenerate polygon input.

    This exception is raised when:
    - A ring has fewer than 3 distinct points or is not closed
    - Coordinates are not finite numbers or are out of range
    - The polygon is self-intersecting or has no area
    """
    pass


class InvalidGeometryError(GeometryError):
    """Raised when a field create/update carries a malformed boundary."""
    pass


class FieldValidationError(FieldShareError):
    """Raised for user-correctable input problems other than geometry."""
    pass


class OverlapError(FieldShareError):
    """Raised when a boundary overlaps another field of the same owner."""

    def __init__(self, message: str, overlapping_fields: List[str],
                 context: Optional[Dict[str, Any]] = None):
        context = dict(context or {})
        context.setdefault("overlapping_fields", ",".join(overlapping_fields))
        super().__init__(message, context)
        self.overlapping_fields = list(overlapping_fields)


class NotFoundError(FieldShareError):
    """Raised for an unknown field or access grant id."""
    pass


class ForbiddenError(FieldShareError):
    """Raised when the caller is not allowed to act on the target."""
    pass


class InvalidStateError(FieldShareError):
    """Raised for an illegal access grant transition."""
    pass


class StoreError(FieldShareError):
    """Raised when the underlying store fails; never user-correctable."""
    pass
