"""Group services."""

from community.services.groups.group_service import GroupService
from community.services.groups.membership_import import MembershipImporter, parse_membership_rows

__all__ = [
    "GroupService",
    "MembershipImporter",
    "parse_membership_rows",
]
