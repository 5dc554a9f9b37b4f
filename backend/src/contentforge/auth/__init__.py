"""Access control module for ContentForge."""

from contentforge.auth.password import PasswordService
from contentforge.auth.permissions import (
    AccessControl,
    Permission,
    PermissionRepository,
)
from contentforge.auth.types import (
    ADMIN_ROLE_ID,
    PUBLIC_ROLE_ID,
    PUBLIC_ROLE_NAME,
    PermissionLevel,
    UserContext,
)

__all__ = [
    "ADMIN_ROLE_ID",
    "PUBLIC_ROLE_ID",
    "PUBLIC_ROLE_NAME",
    "AccessControl",
    "PasswordService",
    "Permission",
    "PermissionLevel",
    "PermissionRepository",
    "UserContext",
]
