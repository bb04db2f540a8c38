"""
pytest configuration and shared fixtures for the HydroZen API tests.

Key concern: tests must not require a live MongoDB, Gemini key, Firebase
project or email relay. We achieve this by:
  1. Setting every *_MOCK_MODE env var before the app is imported, so the
     Gemini client, telemetry store, object store and notifier all answer
     with canned data.
  2. Overriding get_db with an in-memory FakeDB that emulates the handful
     of Motor calls the ledger makes ($inc upserts, unique indexes, sorted
     cursors).
  3. Hanging mock-mode clients on app.state directly. ASGITransport does
     not run the lifespan, so nothing external is ever constructed.
"""

import os
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from httpx import ASGITransport, AsyncClient
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("AI_MOCK_MODE", "true")
os.environ.setdefault("TELEMETRY_MOCK_MODE", "true")
os.environ.setdefault("STORAGE_MOCK_MODE", "true")
os.environ.setdefault("NOTIFICATION_MOCK_MODE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-do-not-use-in-production")


# ── In-memory Motor stand-in ──────────────────────────────────────────────────

class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self._limit = None

    def sort(self, key, direction=1):
        self._docs.sort(key=lambda d: d.get(key, 0), reverse=direction == DESCENDING)
        return self

    def limit(self, n):
        self._limit = n
        return self

    async def __aiter__(self):
        docs = self._docs if self._limit is None else self._docs[: self._limit]
        for doc in docs:
            yield doc


class FakeCollection:
    """
    Just enough of AsyncIOMotorCollection for the ledger.

    Add an operation name to `fail_on` to make it raise PyMongoError, e.g.
        fake_db["points_history"].fail_on.add("insert_one")
    """

    _OPERATORS = {
        "$ne": lambda value, arg: value != arg,
        "$gt": lambda value, arg: value is not None and value > arg,
        "$gte": lambda value, arg: value is not None and value >= arg,
        "$lt": lambda value, arg: value is not None and value < arg,
        "$lte": lambda value, arg: value is not None and value <= arg,
        "$in": lambda value, arg: value in arg,
    }

    def __init__(self):
        self.docs = []
        self.fail_on = set()
        self._unique = []

    def _maybe_fail(self, op):
        if op in self.fail_on:
            raise PyMongoError(f"injected {op} failure")

    @classmethod
    def _matches(cls, doc, query):
        for key, expected in (query or {}).items():
            value = doc.get(key)
            if isinstance(expected, dict) and expected and all(op.startswith("$") for op in expected):
                if not all(cls._OPERATORS[op](value, arg) for op, arg in expected.items()):
                    return False
            elif value != expected:
                return False
        return True

    def _first(self, query):
        return next((d for d in self.docs if self._matches(d, query)), None)

    def _check_unique(self, doc):
        for fields in self._unique:
            key = tuple(doc.get(f) for f in fields)
            if any(tuple(d.get(f) for f in fields) == key for d in self.docs if d is not doc):
                raise DuplicateKeyError(f"E11000 duplicate key error: {dict(zip(fields, key))}")

    @staticmethod
    def _apply(doc, update, inserting=False):
        for field, amount in update.get("$inc", {}).items():
            doc[field] = doc.get(field, 0) + amount
        for field, value in update.get("$set", {}).items():
            doc[field] = value
        if inserting:
            for field, value in update.get("$setOnInsert", {}).items():
                doc[field] = value

    def _upsert(self, query, update):
        # Like MongoDB, only the equality parts of the filter seed the new document
        doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
        doc["_id"] = ObjectId()
        self._apply(doc, update, inserting=True)
        self._check_unique(doc)
        self.docs.append(doc)
        return doc

    async def create_index(self, keys, unique=False, **_kwargs):
        if unique:
            self._unique.append(tuple(field for field, _ in keys))
        return "_".join(field for field, _ in keys)

    async def insert_one(self, doc):
        self._maybe_fail("insert_one")
        doc = {**doc}
        doc.setdefault("_id", ObjectId())
        if any(d["_id"] == doc["_id"] for d in self.docs):
            raise DuplicateKeyError(f"E11000 duplicate key error: _id {doc['_id']}")
        self._check_unique(doc)
        self.docs.append(doc)
        result = MagicMock()
        result.inserted_id = doc["_id"]
        return result

    async def find_one(self, query=None, *_args):
        self._maybe_fail("find_one")
        doc = self._first(query)
        return dict(doc) if doc else None

    def find(self, query=None, *_args):
        self._maybe_fail("find")
        return FakeCursor([dict(d) for d in self.docs if self._matches(d, query)])

    async def find_one_and_update(self, query, update, upsert=False, return_document=False, **_kwargs):
        self._maybe_fail("find_one_and_update")
        doc = self._first(query)
        if doc is None:
            if not upsert:
                return None
            doc = self._upsert(query, update)
            return dict(doc) if return_document else None
        before = dict(doc)
        self._apply(doc, update)
        return dict(doc) if return_document else before

    async def update_one(self, query, update, upsert=False):
        self._maybe_fail("update_one")
        result = MagicMock()
        result.upserted_id = None
        doc = self._first(query)
        if doc is None:
            result.matched_count = 0
            if upsert:
                result.upserted_id = self._upsert(query, update)["_id"]
            return result
        self._apply(doc, update)
        result.matched_count = 1
        return result

    async def delete_one(self, query):
        self._maybe_fail("delete_one")
        doc = self._first(query)
        if doc is not None:
            self.docs.remove(doc)
        result = MagicMock()
        result.deleted_count = 0 if doc is None else 1
        return result

    async def count_documents(self, query):
        self._maybe_fail("count_documents")
        return sum(1 for d in self.docs if self._matches(d, query))

    def aggregate(self, pipeline):
        """$match plus a single-bucket $group with $sum accumulators."""
        self._maybe_fail("aggregate")
        docs = [dict(d) for d in self.docs]
        for stage in pipeline:
            if "$match" in stage:
                docs = [d for d in docs if self._matches(d, stage["$match"])]
            elif "$group" in stage:
                grouping = dict(stage["$group"])
                group = {"_id": grouping.pop("_id")}
                for field, accumulator in grouping.items():
                    operand = accumulator["$sum"]
                    if isinstance(operand, str):
                        group[field] = sum(d.get(operand[1:], 0) for d in docs)
                    else:
                        group[field] = operand * len(docs)
                docs = [group] if docs else []
        return FakeCursor(docs)


class FakeDB:
    def __init__(self):
        self._cols = {}

    def __getitem__(self, name):
        if name not in self._cols:
            self._cols[name] = FakeCollection()
        return self._cols[name]


CATALOG = [
    {"_id": "novice-reporter", "name": "Novice Reporter", "description": "First verified leak", "points_required": 50},
    {"_id": "active-citizen", "name": "Active Citizen", "description": "200 points", "points_required": 200},
    {"_id": "water-guardian", "name": "Water Guardian", "description": "500 points", "points_required": 500},
]


@pytest.fixture()
async def fake_db():
    """FakeDB with the production indexes and the achievement catalog."""
    from hydrozen.core.database import ensure_indexes

    db = FakeDB()
    await ensure_indexes(db)
    for doc in CATALOG:
        await db["achievements"].insert_one(doc)
    return db


@pytest.fixture()
def ledger(fake_db):
    from hydrozen.services.ledger import IncentiveLedger

    return IncentiveLedger(fake_db)


# ── Auth ──────────────────────────────────────────────────────────────────────

def auth_headers(user_id="user-1", expires=None):
    from hydrozen.core.security import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user_id, expires)}"}


@pytest.fixture()
def auth():
    return auth_headers()


@pytest.fixture()
def expired_auth():
    return auth_headers(expires=timedelta(seconds=-5))


# ── App client ────────────────────────────────────────────────────────────────

@pytest.fixture()
def app_state():
    """
    Mock-mode clients on app.state, the way the lifespan would build them.

    Tests may replace any attribute (e.g. object_store) before calling the API.
    """
    from hydrozen.ai.gemini_client import GeminiClient
    from hydrozen.ai.leak_verifier import ImageVerdictClient
    from hydrozen.core.rate_limit import limiter
    from hydrozen.main import app
    from hydrozen.services.notifier import Notifier
    from hydrozen.services.object_store import ObjectStore
    from hydrozen.services.telemetry_store import TelemetryStore

    limiter.reset()
    app.state.telemetry_store = TelemetryStore(None, base_url="", node_paths={}, mock_mode=True)
    app.state.object_store = ObjectStore(None, bucket="", mock_mode=True)
    app.state.verdict_client = ImageVerdictClient(GeminiClient(mock_mode=True), None, timeout=5)
    app.state.notifier = Notifier(None, webhook_url="", recipient="ops@example.org", mock_mode=True)
    yield app.state


@pytest.fixture()
async def client(fake_db, app_state):
    """
    HTTPX async test client wired to the FastAPI app and the FakeDB.

    Usage:
        async def test_something(client, auth):
            response = await client.get("/api/v1/rewards/stats", headers=auth)
            assert response.status_code == 200
    """
    from hydrozen.core.database import get_db
    from hydrozen.main import app

    app.dependency_overrides[get_db] = lambda: fake_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
