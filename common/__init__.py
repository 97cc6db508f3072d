"""
Common library for reusable infrastructure components.

This package provides generic modules that can be used across
multiple projects:

- database: Async MongoDB connection using Motor
- auth: Pluggable token authentication (JWT)
- channels: Pluggable chat channel providers (Slack)
- utils: Standard responses and exceptions
- config: Base settings class
"""

from common.database import MongoDB
from common.auth import AuthProvider, JWTAuth
from common.channels import ChannelProvider, SlackChannelProvider
from common.utils import (
    success_response,
    APIException,
    UnauthorizedException,
    ForbiddenException,
    NotFoundException,
    ConflictException,
    ValidationException,
    RemoteServiceException,
)
from common.config import BaseAppSettings

__all__ = [
    # Database
    "MongoDB",
    # Auth
    "AuthProvider",
    "JWTAuth",
    # Channels
    "ChannelProvider",
    "SlackChannelProvider",
    # Utils
    "success_response",
    "APIException",
    "UnauthorizedException",
    "ForbiddenException",
    "NotFoundException",
    "ConflictException",
    "ValidationException",
    "RemoteServiceException",
    # Config
    "BaseAppSettings",
]
