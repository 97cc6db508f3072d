"""Buddy pairing services."""

from community.services.pairing.pairing_service import PairingService

__all__ = [
    "PairingService",
]
