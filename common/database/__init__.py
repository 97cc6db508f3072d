"""
Database module - Async MongoDB connection using Motor.
"""

from common.database.mongodb import MongoDB
from common.database.object_ids import to_object_id

__all__ = [
    "MongoDB",
    "to_object_id",
]
