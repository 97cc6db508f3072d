"""Identity services."""

from community.services.identity.identity_service import (
    IdentityService,
    display_name_for,
    is_platform_admin,
)

__all__ = [
    "IdentityService",
    "display_name_for",
    "is_platform_admin",
]
