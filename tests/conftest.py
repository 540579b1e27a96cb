"""Shared test fixtures."""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from fitjourney.cloud.auth import NotLoggedInError
from fitjourney.cloud.codec import decode_fields, encode_fields
from fitjourney.cloud.store import DocumentStore, RemoteDocument, RemoteStoreError
from fitjourney.config import Settings
from fitjourney.container import build_services
from fitjourney.db.engine import import_models
from fitjourney.models.workout import Exercise

# Import all models so SQLModel.metadata knows about them
import_models()

USER_ID = "user-1"


class FakeAuth:
    """Signed-in user stand-in for FirebaseAuth."""

    def __init__(self, user_id: Optional[str] = USER_ID):
        self.user_id = user_id
        self.deleted = False

    def current_user_id(self) -> str:
        if self.user_id is None:
            raise NotLoggedInError("No signed-in user")
        return self.user_id

    def id_token(self) -> str:
        return "test-token"

    def delete_account(self) -> None:
        self.deleted = True
        self.user_id = None


class FakeDocumentStore(DocumentStore):
    """In-memory DocumentStore.

    Payloads go through the Firestore codec so tests see the same types a
    real pull would (dates as ISO strings, enums as values).

    Knobs:
        fail: set of (collection, doc_id) whose writes raise RemoteStoreError
        gate: asyncio.Event every write waits on, to hold a sync mid-drain
    """

    def __init__(self):
        self.collections: Dict[Tuple[str, str], Dict[str, Tuple[Dict[str, Any], datetime]]] = {}
        self.writes: List[Tuple[str, str, str]] = []
        self.deletes: List[Tuple[str, str, str]] = []
        self.fail: Set[Tuple[str, str]] = set()
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    def _collection(self, user_id: str, collection: str):
        return self.collections.setdefault((user_id, collection), {})

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)

    def put(self, user_id: str, collection: str, doc_id: str, data: Dict[str, Any],
            updated: Optional[datetime] = None) -> None:
        """Seed a document directly (no write is recorded)."""
        self._collection(user_id, collection)[doc_id] = (
            decode_fields(encode_fields(data)), updated or datetime.utcnow()
        )

    def count(self, user_id: str, collection: str) -> int:
        return len(self.collections.get((user_id, collection), {}))

    def data(self, user_id: str, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        stored = self.collections.get((user_id, collection), {}).get(doc_id)
        return dict(stored[0]) if stored else None

    async def set_document(self, user_id, collection, doc_id, data):
        await self._wait()
        if (collection, doc_id) in self.fail:
            raise RemoteStoreError(f"write to {collection}/{doc_id} rejected", status=503)
        docs = self._collection(user_id, collection)
        merged = dict(docs[doc_id][0]) if doc_id in docs else {}
        merged.update(decode_fields(encode_fields(data)))
        docs[doc_id] = (merged, datetime.utcnow())
        self.writes.append((user_id, collection, doc_id))

    async def get_document(self, user_id, collection, doc_id):
        await asyncio.sleep(0)
        return self.data(user_id, collection, doc_id)

    async def delete_document(self, user_id, collection, doc_id):
        await self._wait()
        if (collection, doc_id) in self.fail:
            raise RemoteStoreError(f"delete of {collection}/{doc_id} rejected", status=503)
        self._collection(user_id, collection).pop(doc_id, None)
        self.deletes.append((user_id, collection, doc_id))

    async def list_documents(self, user_id, collection, updated_since=None, limit=None):
        await asyncio.sleep(0)
        docs = [
            RemoteDocument(id=doc_id, data=dict(data))
            for doc_id, (data, updated) in sorted(self._collection(user_id, collection).items())
            if updated_since is None or updated > updated_since
        ]
        return docs[:limit] if limit else docs

    async def count_documents(self, user_id, collection):
        await asyncio.sleep(0)
        return self.count(user_id, collection)

    async def delete_documents(self, user_id, collection, doc_ids):
        await asyncio.sleep(0)
        docs = self._collection(user_id, collection)
        for doc_id in doc_ids:
            docs.pop(doc_id, None)
            self.deletes.append((user_id, collection, doc_id))

    async def close(self):
        self.closed = True


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine):
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="settings")
def settings_fixture(tmp_path) -> Settings:
    return Settings(
        database_url="sqlite://",
        firebase_api_key="test-key",
        firebase_project_id="test-project",
        session_dir=tmp_path / "session",
    )


@pytest.fixture(name="auth")
def auth_fixture() -> FakeAuth:
    return FakeAuth()


@pytest.fixture(name="store")
def store_fixture() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture(name="services")
def services_fixture(engine, store, auth, settings):
    """Full service graph around the in-memory DB and the fake store."""
    return build_services(engine=engine, store=store, auth=auth, settings=settings)


@pytest.fixture(name="exercises")
def exercises_fixture(engine) -> Dict[str, int]:
    """A small exercise catalogue; returns name -> id."""
    with Session(engine) as s:
        rows = [
            Exercise(name="Bench Press", muscle_group="Chest"),
            Exercise(name="Squat", muscle_group="Legs"),
            Exercise(name="Deadlift", muscle_group="Back"),
        ]
        for row in rows:
            s.add(row)
        s.commit()
        return {row.name: row.id for row in rows}
