"""
Community request schemas.
"""

from community.schemas.buddies import (
    CreateInvitationRequest,
    AdminCreatePairRequest,
    RepairPairRequest,
)
from community.schemas.groups import (
    CreateGroupRequest,
    UpdateGroupRequest,
    AddMembersRequest,
)
from community.schemas.sessions import (
    CreateSessionRequest,
    UpdateSessionRequest,
)
from community.schemas.chat import SendMessageRequest, ChatClientEvent

__all__ = [
    "CreateInvitationRequest",
    "AdminCreatePairRequest",
    "RepairPairRequest",
    "CreateGroupRequest",
    "UpdateGroupRequest",
    "AddMembersRequest",
    "CreateSessionRequest",
    "UpdateSessionRequest",
    "SendMessageRequest",
    "ChatClientEvent",
]
