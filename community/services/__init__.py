"""
Community Services.

All service classes organized by feature.
"""

# Identity
from community.services.identity.identity_service import IdentityService

# Pairing
from community.services.pairing.pairing_service import PairingService

# Groups
from community.services.groups.group_service import GroupService
from community.services.groups.membership_import import MembershipImporter

# Sessions
from community.services.sessions.session_service import SessionService

# Chat
from community.services.chat.relay import ChatRelay

__all__ = [
    "IdentityService",
    "PairingService",
    "GroupService",
    "MembershipImporter",
    "SessionService",
    "ChatRelay",
]
