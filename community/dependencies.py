"""
FastAPI dependencies for the community application.

Provides dependency injection for all services.
"""

from typing import Annotated, Optional

from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from common.auth import AuthProvider, JWTAuth
from common.channels import ChannelProvider, SlackChannelProvider
from community.config import Settings, settings
from community.middleware.auth import AuthMiddleware
from community.services.groups.group_service import GroupService
from community.services.groups.membership_import import MembershipImporter
from community.services.identity.identity_service import IdentityService
from community.services.pairing.pairing_service import PairingService
from community.services.sessions.session_service import SessionService


# ─────────────────────────────────────────────────────────────────
# Global service instances
# ─────────────────────────────────────────────────────────────────

# Auth
_auth_provider: Optional[AuthProvider] = None
_auth_middleware: Optional[AuthMiddleware] = None

# Channels
_channel_provider: Optional[ChannelProvider] = None

# Community
_identity_service: Optional[IdentityService] = None
_pairing_service: Optional[PairingService] = None
_group_service: Optional[GroupService] = None
_membership_importer: Optional[MembershipImporter] = None
_session_service: Optional[SessionService] = None


# ─────────────────────────────────────────────────────────────────
# Initialization
# ─────────────────────────────────────────────────────────────────

def init_auth_services(identity_service: IdentityService, app_settings: Settings) -> None:
    global _auth_provider, _auth_middleware

    _auth_provider = JWTAuth(
        secret=app_settings.JWT_SECRET,
        algorithm=app_settings.JWT_ALGORITHM,
        access_token_expire_minutes=app_settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES,
    )
    _auth_middleware = AuthMiddleware(_auth_provider, identity_service)


def init_community_services(
    db: AsyncIOMotorDatabase,
    channel_provider: ChannelProvider,
    app_settings: Settings,
) -> None:
    global _identity_service, _pairing_service, _group_service
    global _membership_importer, _session_service

    _identity_service = IdentityService(db, channel_provider)
    _pairing_service = PairingService(
        db,
        channel_provider,
        _identity_service,
        claim_ttl_seconds=app_settings.CHANNEL_CLAIM_TTL_SECONDS,
        claim_wait_seconds=app_settings.CHANNEL_CLAIM_WAIT_SECONDS,
    )
    _group_service = GroupService(
        db,
        channel_provider,
        _identity_service,
        claim_ttl_seconds=app_settings.CHANNEL_CLAIM_TTL_SECONDS,
        claim_wait_seconds=app_settings.CHANNEL_CLAIM_WAIT_SECONDS,
    )
    _membership_importer = MembershipImporter(_group_service, _identity_service)
    _session_service = SessionService(db, channel_provider)


def create_channel_provider(app_settings: Settings) -> ChannelProvider:
    return SlackChannelProvider(
        bot_token=app_settings.SLACK_BOT_TOKEN,
        base_url=app_settings.SLACK_API_BASE_URL,
        timeout=app_settings.SLACK_TIMEOUT_SECONDS,
    )


def init_all_services(
    db: AsyncIOMotorDatabase,
    channel_provider: Optional[ChannelProvider] = None,
    app_settings: Settings = settings,
) -> None:
    """
    Initialize all services at application startup.

    Args:
        db: Main MongoDB database connection
        channel_provider: Channel provider (Slack from settings if omitted)
        app_settings: Application settings
    """
    global _channel_provider
    _channel_provider = channel_provider or create_channel_provider(app_settings)

    init_community_services(db, _channel_provider, app_settings)
    init_auth_services(_identity_service, app_settings)


# ─────────────────────────────────────────────────────────────────
# Auth getters
# ─────────────────────────────────────────────────────────────────

def get_auth_middleware() -> AuthMiddleware:
    if _auth_middleware is None:
        raise RuntimeError("Auth services not initialized.")
    return _auth_middleware


async def require_auth(
    request: Request,
    auth_middleware: Annotated[AuthMiddleware, Depends(get_auth_middleware)]
) -> dict:
    """Dependency that requires authentication."""
    return await auth_middleware.require_auth(request)


async def require_admin(
    request: Request,
    auth_middleware: Annotated[AuthMiddleware, Depends(get_auth_middleware)]
) -> dict:
    """Dependency that requires a platform admin."""
    return await auth_middleware.require_admin(request)


# ─────────────────────────────────────────────────────────────────
# Service getters
# ─────────────────────────────────────────────────────────────────

def get_channel_provider() -> ChannelProvider:
    if _channel_provider is None:
        raise RuntimeError("Channel provider not initialized.")
    return _channel_provider


def get_identity_service() -> IdentityService:
    if _identity_service is None:
        raise RuntimeError("Community services not initialized.")
    return _identity_service


def get_pairing_service() -> PairingService:
    if _pairing_service is None:
        raise RuntimeError("Community services not initialized.")
    return _pairing_service


def get_group_service() -> GroupService:
    if _group_service is None:
        raise RuntimeError("Community services not initialized.")
    return _group_service


def get_membership_importer() -> MembershipImporter:
    if _membership_importer is None:
        raise RuntimeError("Community services not initialized.")
    return _membership_importer


def get_session_service() -> SessionService:
    if _session_service is None:
        raise RuntimeError("Community services not initialized.")
    return _session_service
