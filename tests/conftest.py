import copy
import os
import shutil
import tempfile

# Settings are read once and cached, so the environment must be set before
# any application module is imported.
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="course-uploads-"))
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.pop("ADMIN_USERNAME", None)
os.environ.pop("ADMIN_PASSWORD", None)

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from config import get_settings
from database import get_db
from main import app
from uploads import ensure_directory


class FakeInsertResult:
    def __init__(self, inserted_id):
        self.inserted_id = inserted_id


class FakeUpdateResult:
    def __init__(self, matched_count):
        self.matched_count = matched_count


class FakeCursor:
    def __init__(self, collection, docs):
        self._collection = collection
        self._docs = docs

    def limit(self, n):
        return FakeCursor(self._collection, self._docs[:n])

    def __aiter__(self):
        self._collection._check()
        self._iter = iter(self._docs)
        return self

    async def __anext__(self):
        try:
            return copy.deepcopy(next(self._iter))
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """Just enough of a motor collection for the application code."""

    def __init__(self):
        self.docs = []
        self.unique = set()
        self.fail = False

    def _check(self):
        if self.fail:
            raise ServerSelectionTimeoutError("store unavailable")

    @staticmethod
    def _matches(doc, filter_dict):
        return all(doc.get(k) == v for k, v in filter_dict.items())

    async def create_index(self, key, unique=False):
        self._check()
        if unique:
            self.unique.add(key)
        return f"{key}_1"

    async def insert_one(self, doc):
        self._check()
        for key in self.unique:
            if any(d.get(key) == doc.get(key) for d in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key error: {key}")
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        self.docs.append(doc)
        return FakeInsertResult(doc["_id"])

    async def find_one(self, filter_dict):
        self._check()
        for doc in self.docs:
            if self._matches(doc, filter_dict):
                return copy.deepcopy(doc)
        return None

    def find(self, filter_dict=None):
        return FakeCursor(self, [d for d in self.docs if self._matches(d, filter_dict or {})])

    async def update_one(self, filter_dict, update):
        self._check()
        for doc in self.docs:
            if self._matches(doc, filter_dict):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return FakeUpdateResult(1)
        return FakeUpdateResult(0)


class FakeDatabase:
    def __init__(self):
        self._collections = {}

    def __getitem__(self, name):
        return self._collections.setdefault(name, FakeCollection())


@pytest.fixture
def fake_db():
    db = FakeDatabase()
    # Mirrors database.ensure_indexes
    db["user"].unique.add("email")
    db["admin"].unique.add("username")
    return db


@pytest.fixture(autouse=True)
def upload_dir():
    directory = ensure_directory(get_settings().upload_dir)
    yield directory
    for entry in directory.iterdir():
        if entry.is_dir():
            shutil.rmtree(entry)
        else:
            entry.unlink()


@pytest.fixture
def client(fake_db):
    app.dependency_overrides[get_db] = lambda: fake_db
    yield TestClient(app)
    app.dependency_overrides.clear()
