"""
FastAPI router for the learner's community overview.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from common.utils import success_response
from community.dependencies import (
    require_auth,
    get_pairing_service,
    get_group_service,
    get_session_service,
    get_identity_service,
)
from community.pipelines.overview import get_my_community

router = APIRouter(prefix="/overview", tags=["overview"])


@router.get("")
async def get_overview(
    user: Annotated[dict, Depends(require_auth)],
):
    """Buddy, groups and sessions of the caller."""
    overview = await get_my_community(
        get_pairing_service(),
        get_group_service(),
        get_session_service(),
        get_identity_service(),
        str(user["_id"]),
    )
    return success_response(overview)
