"""
ObjectId helpers.
"""

from bson import ObjectId

from common.utils.exceptions import NotFoundException


def to_object_id(value, message: str = "Not found", code: str = "NOT_FOUND") -> ObjectId:
    """
    Convert a path/body id to an ObjectId.

    An id that cannot be an ObjectId cannot match any document, so it is
    reported as not found instead of surfacing a bson error.
    """
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(str(value)):
        raise NotFoundException(message=message, code=code)
    return ObjectId(str(value))
