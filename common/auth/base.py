"""
Abstract authentication provider interface.

Defines the contract that token-based auth providers must implement.
Credentials and profiles live in the external identity store; this
service only issues (for tooling and tests) and verifies access tokens.

Example:
    from common.auth import AuthProvider, JWTAuth

    def get_auth_provider(settings) -> AuthProvider:
        return JWTAuth(secret=settings.JWT_SECRET)
"""

from abc import ABC, abstractmethod
from typing import Dict, Any


class AuthProvider(ABC):
    """
    Abstract authentication provider.

    Implement this interface for different token strategies.
    """

    @abstractmethod
    async def create_token(
        self,
        user_id: str,
        **claims: Any,
    ) -> str:
        """
        Create an access token for a user.

        Args:
            user_id: Subject of the token
            **claims: Additional claims to embed

        Returns:
            Encoded token string
        """
        pass

    @abstractmethod
    async def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Verify and decode a token.

        Args:
            token: Encoded token string

        Returns:
            Decoded claims, including ``sub``

        Raises:
            ValueError: If the token is invalid or expired
        """
        pass

