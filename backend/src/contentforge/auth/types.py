"""Type definitions for access control."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

# Reserved roles
ADMIN_ROLE_ID = 1
PUBLIC_ROLE_ID = 2
PUBLIC_ROLE_NAME = "public"


@dataclass(frozen=True)
class UserContext:
    """The authenticated identity a request acts as.

    Resolved by the transport layer before the pipeline runs.

    Attributes:
        user_id: The acting user's id, None for anonymous requests
        role_id: The acting user's role id
        role_name: The role's name, used to recognise the public role
        admin: Explicit admin flag (the admin role implies it)
    """

    user_id: Any = None
    role_id: Any = None
    role_name: str | None = None
    admin: bool = False


class PermissionLevel(Enum):
    """How much of a collection a role may touch for one verb."""

    NONE = "none"
    MINE = "mine"
    FULL = "full"

    @classmethod
    def parse(cls, value: Any) -> "PermissionLevel":
        """Parse a stored level; unknown or empty values mean NONE."""
        if isinstance(value, cls):
            return value
        if value is None or value == "":
            return cls.NONE
        if isinstance(value, int):
            if value <= 0:
                return cls.NONE
            return cls.MINE if value == 1 else cls.FULL
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NONE


VERBS = ("create", "read", "update", "delete")
