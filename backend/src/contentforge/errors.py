"""Error taxonomy for ContentForge.

Every error raised by the pipeline derives from ContentError and carries a
machine-readable code and the transport status a caller should map it to:

- ValidationError: malformed input, raised before any store access
- ForbiddenError: access control or a policy hook denied the action
- NotFoundError: an id or collection does not resolve
- BadRequestError: operation preconditions are not met
- StoreError: the backing store failed (cause is chained, never exposed)
"""

from typing import Any


class ContentError(Exception):
    """Base exception for all pipeline errors."""

    code = "INTERNAL"
    status = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a response envelope."""
        return {"error": {"code": self.code, "message": self.message}}


class ValidationError(ContentError):
    """Raised when input is malformed (e.g. batch rows without a primary key)."""

    code = "VALIDATION"
    status = 422


class ForbiddenError(ContentError):
    """Raised when the acting user is not allowed to perform an action."""

    code = "FORBIDDEN"
    status = 403


class NotFoundError(ContentError):
    """Raised when a record cannot be found."""

    code = "NOT_FOUND"
    status = 404


class CollectionNotFoundError(NotFoundError):
    """Raised when a collection is not registered in the schema."""

    def __init__(self, name: str):
        super().__init__(f"Collection '{name}' not found")
        self.collection = name


class BadRequestError(ContentError):
    """Raised when an operation's preconditions are not met."""

    code = "BAD_REQUEST"
    status = 400


class StoreError(ContentError):
    """Raised when the backing store fails.

    The original exception is kept as ``__cause__``; the message shown to
    callers is always generic.
    """

    code = "STORE"
    status = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
