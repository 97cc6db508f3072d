"""
Authentication middleware for protected routes.

Validates bearer tokens and attaches the user document to requests.
"""

import logging
from typing import Optional

from fastapi import Request

from common.auth import AuthProvider
from common.utils.exceptions import UnauthorizedException, ForbiddenException
from community.services.identity.identity_service import IdentityService, is_platform_admin

logger = logging.getLogger(__name__)


class AuthMiddleware:
    """
    Middleware that validates the token and attaches user to request.
    """

    def __init__(self, auth_provider: AuthProvider, identity_service: IdentityService):
        """
        Initialize AuthMiddleware.

        Args:
            auth_provider: Token verification
            identity_service: Resolves the token subject to a user document
        """
        self._auth_provider = auth_provider
        self._identity_service = identity_service

    async def authenticate_token(self, token: Optional[str]) -> dict:
        """
        Resolve a raw token to an active user document.

        Raises:
            UnauthorizedException: Missing, invalid or expired token, or unknown user
            ForbiddenException: User is suspended
        """
        if not token:
            raise UnauthorizedException(
                message="Authentication required",
                code="AUTH_REQUIRED"
            )

        try:
            claims = await self._auth_provider.verify_token(token)
        except ValueError as e:
            logger.debug(f"Token rejected: {e}")
            raise UnauthorizedException(
                message="Invalid or expired token",
                code="INVALID_TOKEN"
            )

        user = await self._identity_service.get_user_document(claims.get("sub", ""))
        if not user:
            raise UnauthorizedException(
                message="Invalid or expired token",
                code="INVALID_TOKEN"
            )

        if user.get("status") == "suspended":
            raise ForbiddenException(
                message="Account suspended",
                code="ACCOUNT_SUSPENDED"
            )

        return user

    async def require_auth(self, request: Request) -> dict:
        """
        Validate request is authenticated.

        Side Effects:
            - Attaches user to request.state.user
        """
        user = await self.authenticate_token(self._extract_token(request))
        request.state.user = user
        return user

    async def require_admin(self, request: Request) -> dict:
        """Validate request is authenticated by a platform admin."""
        user = await self.require_auth(request)

        if not is_platform_admin(user):
            raise ForbiddenException(
                message="Admin access required",
                code="ADMIN_REQUIRED"
            )

        return user

    def _extract_token(self, request: Request) -> Optional[str]:
        """
        Extract bearer token from Authorization header.

        Expected format: "Authorization: Bearer <token>"
        """
        auth_header = request.headers.get("Authorization")

        if not auth_header:
            return None

        parts = auth_header.split()

        if len(parts) != 2:
            return None

        scheme, token = parts

        if scheme.lower() != "bearer":
            return None

        return token
