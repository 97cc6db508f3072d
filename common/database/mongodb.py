"""
MongoDB connection manager built on Motor.

Services receive the raw ``AsyncIOMotorDatabase`` and address collections
by name (see ``community.database.collections``). The client is created
timezone aware, so every datetime read back is UTC.

Example:
    from common.database import MongoDB

    db = MongoDB()
    await db.connect(
        uri="mongodb://localhost:27017",
        database_name="community",
    )
    pairs = db.db["buddypairs"]
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

logger = logging.getLogger(__name__)


class MongoDB:
    """Owns the Motor client for the lifetime of the application."""

    def __init__(self):
        self._client: Optional[AsyncIOMotorClient] = None
        self._database_name: Optional[str] = None
        self._connected: bool = False

    async def connect(
        self,
        uri: str,
        database_name: str,
        server_selection_timeout_ms: int = 5000,
    ) -> None:
        """
        Connect and ping the server.

        Args:
            uri: MongoDB connection string
            database_name: Database holding the community collections
            server_selection_timeout_ms: How long to wait for a server

        Raises:
            Exception: Whatever Motor raises when the ping fails
        """
        # credentials stay out of the log
        host = uri.split("@")[-1]
        logger.info(f"Connecting to MongoDB: {host}")

        try:
            self._client = AsyncIOMotorClient(
                uri,
                serverSelectionTimeoutMS=server_selection_timeout_ms,
                tz_aware=True,
            )
            self._database_name = database_name

            await self._client.admin.command("ping")
            self._connected = True
            logger.info(f"Connected to MongoDB database: {database_name}")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def disconnect(self) -> None:
        if self._client:
            logger.info(f"Disconnecting from MongoDB database: {self._database_name}")
            self._client.close()
            self._client = None
            self._database_name = None
            self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def db(self) -> AsyncIOMotorDatabase:
        """The connected database."""
        if not self._client or not self._database_name:
            raise RuntimeError("Database not connected")
        return self._client[self._database_name]
