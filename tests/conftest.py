"""Shared test fixtures for community backend tests."""

import copy
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

def make_collection():
    collection = AsyncMock()
    # Motor's find() and aggregate() return cursors synchronously (not
    # coroutines), so use MagicMock for them. Async methods like find_one,
    # insert_one, update_one etc. stay as AsyncMock.
    collection.find = MagicMock()
    collection.aggregate = MagicMock()
    return collection

def cursor_of(docs):
    """A Motor-like cursor whose to_list returns docs."""
    cursor = MagicMock()
    cursor.sort = MagicMock(return_value=cursor)
    cursor.limit = MagicMock(return_value=cursor)
    cursor.to_list = AsyncMock(return_value=list(docs))
    return cursor

@pytest.fixture
def sample_user_id():
    return str(ObjectId())

@pytest.fixture
def mock_collection():
    return make_collection()

@pytest.fixture
def collections():
    """One mock collection per name, created on first access."""
    return {}

@pytest.fixture
def mock_db(collections):
    def _get(name):
        if name not in collections:
            collections[name] = make_collection()
        return collections[name]

    db = MagicMock()
    db.__getitem__ = MagicMock(side_effect=_get)
    return db

@pytest.fixture
def mock_provider():
    provider = AsyncMock()
    provider.create_channel = AsyncMock(return_value="C0001")
    provider.invite_member = AsyncMock(return_value=True)
    provider.remove_member = AsyncMock(return_value=True)
    provider.post_message = AsyncMock(return_value="1700000000.000100")
    provider.edit_message = AsyncMock(return_value=True)
    provider.delete_message = AsyncMock(return_value=True)
    provider.fetch_messages = AsyncMock(return_value=[])
    provider.get_message = AsyncMock(return_value=None)
    provider.lookup_user_by_email = AsyncMock(return_value=None)
    provider.post_session_reminder = AsyncMock(return_value=True)
    return provider

@pytest.fixture
def mock_identity_service():
    service = MagicMock()
    service.get_users = AsyncMock(return_value={})
    service.get_user = AsyncMock(return_value=None)
    service.find_by_email = AsyncMock(return_value=None)
    service.find_by_emails = AsyncMock(return_value={})
    service.get_external_id = AsyncMock(return_value=None)
    service.get_external_ids = AsyncMock(return_value={})
    return service

def make_user(role=None, **fields):
    now = datetime.now(timezone.utc)
    user = {
        "_id": ObjectId(),
        "email": fields.pop("email", f"user{ObjectId()}@example.com"),
        "profile": {"firstName": fields.pop("first_name", "Ana"), "lastName": "Berg"},
        "createdAt": now,
    }
    if role:
        user["role"] = role
    user.update(fields)
    return user

@pytest.fixture
def learner():
    return make_user(email="ana@example.com")

@pytest.fixture
def admin_user():
    return make_user(role="admin", email="admin@example.com", first_name="Ada")

@pytest.fixture
def make_cursor():
    return cursor_of

@pytest.fixture
def user_factory():
    return make_user

# ─────────────────────────────────────────────────────────────────
# In-memory collections
# ─────────────────────────────────────────────────────────────────

def _lookup(doc, path):
    value = doc
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value

def _matches(doc, query):
    for key, expected in query.items():
        if key == "$or":
            if not any(_matches(doc, q) for q in expected):
                return False
            continue
        actual = _lookup(doc, key)
        if isinstance(expected, dict):
            if "$ne" in expected and actual == expected["$ne"]:
                return False
            if "$in" in expected and actual not in expected["$in"]:
                return False
            if "$lt" in expected and (actual is None or not actual < expected["$lt"]):
                return False
        elif actual != expected:
            return False
    return True

class InMemoryCollection:
    """Just enough of a Motor collection for stateful service flows."""

    def __init__(self):
        self.docs = {}
        self.insert_one = AsyncMock(side_effect=self._insert_one)
        self.find_one = AsyncMock(side_effect=self._find_one)
        self.find_one_and_update = AsyncMock(side_effect=self._find_one_and_update)
        self.update_one = AsyncMock(side_effect=self._update_one)
        self.delete_many = AsyncMock(side_effect=self._delete_many)
        self.find = MagicMock(side_effect=self._find)

    async def _insert_one(self, doc):
        doc.setdefault("_id", ObjectId())
        if doc["_id"] in self.docs:
            raise DuplicateKeyError("E11000 duplicate key error")
        self.docs[doc["_id"]] = copy.deepcopy(doc)
        return MagicMock(inserted_id=doc["_id"])

    async def _find_one(self, query):
        for doc in self.docs.values():
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def _find(self, query, projection=None):
        return cursor_of(
            copy.deepcopy(doc) for doc in self.docs.values() if _matches(doc, query)
        )

    async def _find_one_and_update(self, query, update, return_document=None):
        for doc in self.docs.values():
            if _matches(doc, query):
                doc.update(copy.deepcopy(update["$set"]))
                return copy.deepcopy(doc)
        return None

    async def _update_one(self, query, update):
        for doc in self.docs.values():
            if _matches(doc, query):
                doc.update(copy.deepcopy(update["$set"]))
                return MagicMock(modified_count=1)
        return MagicMock(modified_count=0)

    async def _delete_many(self, query):
        doomed = [k for k, doc in self.docs.items() if _matches(doc, query)]
        for key in doomed:
            del self.docs[key]
        return MagicMock(deleted_count=len(doomed))


@pytest.fixture
def memory_collection():
    """Factory for in-memory collections."""
    return InMemoryCollection
