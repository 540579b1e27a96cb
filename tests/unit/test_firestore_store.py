"""Tests for the Firestore REST DocumentStore (httpx.MockTransport, no network)."""
import json
from datetime import datetime

import httpx
import pytest

from fitjourney.cloud.firestore import FirestoreDocumentStore
from fitjourney.cloud.store import RemoteStoreError

PROJECT = "test-project"
DOCS = f"projects/{PROJECT}/databases/(default)/documents"
USER = "user-1"


class StubAuth:
    def id_token(self) -> str:
        return "token-123"


def _store(handler) -> FirestoreDocumentStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FirestoreDocumentStore(PROJECT, StubAuth(), http_client=client)


def _doc(doc_id: str, fields: dict) -> dict:
    return {"name": f"{DOCS}/users/{USER}/workout/{doc_id}", "fields": fields}


class TestSetDocument:
    @pytest.mark.asyncio
    async def test_commits_upsert_with_server_timestamp(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"writeResults": [{}]})

        store = _store(handler)
        await store.set_document(USER, "workout", "12", {"notes": "legs", "duration_minutes": 45})

        (request,) = seen
        assert request.method == "POST"
        assert request.url.path.endswith(f"{DOCS}:commit")
        assert request.headers["Authorization"] == "Bearer token-123"
        (write,) = json.loads(request.content)["writes"]
        assert write["update"]["name"] == f"{DOCS}/users/{USER}/workout/12"
        assert write["update"]["fields"]["duration_minutes"] == {"integerValue": "45"}
        assert write["updateMask"]["fieldPaths"] == ["duration_minutes", "notes"]
        assert write["updateTransforms"] == [
            {"fieldPath": "last_updated", "setToServerValue": "REQUEST_TIME"}
        ]

    @pytest.mark.asyncio
    async def test_http_error_raises_remote_store_error(self):
        store = _store(lambda r: httpx.Response(403, json={"error": {"message": "denied"}}))
        with pytest.raises(RemoteStoreError) as exc_info:
            await store.set_document(USER, "goal", "1", {"status": "active"})
        assert exc_info.value.status == 403
        assert "denied" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error_raises_remote_store_error(self):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        with pytest.raises(RemoteStoreError):
            await _store(handler).set_document(USER, "goal", "1", {"status": "active"})


class TestReads:
    @pytest.mark.asyncio
    async def test_get_document_decodes_fields(self):
        store = _store(lambda r: httpx.Response(200, json=_doc("7", {
            "current_streak": {"integerValue": "4"},
        })))
        assert await store.get_document(USER, "streak", USER) == {"current_streak": 4}

    @pytest.mark.asyncio
    async def test_get_missing_document_returns_none(self):
        store = _store(lambda r: httpx.Response(404, json={"error": {"message": "not found"}}))
        assert await store.get_document(USER, "streak", USER) is None

    @pytest.mark.asyncio
    async def test_list_documents_follows_page_tokens(self):
        pages = {
            None: {"documents": [_doc("1", {})], "nextPageToken": "p2"},
            "p2": {"documents": [_doc("2", {"notes": {"stringValue": "x"}})]},
        }

        def handler(request):
            return httpx.Response(200, json=pages[request.url.params.get("pageToken")])

        docs = await _store(handler).list_documents(USER, "workout")
        assert [d.id for d in docs] == ["1", "2"]
        assert docs[1].data == {"notes": "x"}

    @pytest.mark.asyncio
    async def test_list_missing_collection_is_empty(self):
        store = _store(lambda r: httpx.Response(404, json={}))
        assert await store.list_documents(USER, "workout") == []

    @pytest.mark.asyncio
    async def test_updated_since_uses_run_query(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[
                {"readTime": "2025-01-01T00:00:00Z"},
                {"document": _doc("3", {})},
            ])

        docs = await _store(handler).list_documents(
            USER, "workout", updated_since=datetime(2025, 1, 1, 12)
        )
        assert [d.id for d in docs] == ["3"]
        assert seen[0].url.path.endswith(f"users/{USER}:runQuery")
        where = json.loads(seen[0].content)["structuredQuery"]["where"]["fieldFilter"]
        assert where["field"]["fieldPath"] == "last_updated"
        assert where["op"] == "GREATER_THAN"

    @pytest.mark.asyncio
    async def test_count_documents_uses_aggregation(self):
        store = _store(lambda r: httpx.Response(200, json=[
            {"result": {"aggregateFields": {"count": {"integerValue": "10"}}}}
        ]))
        assert await store.count_documents(USER, "workout") == 10


class TestDeletes:
    @pytest.mark.asyncio
    async def test_delete_documents_batches_in_one_commit(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={})

        await _store(handler).delete_documents(USER, "workout", ["1", "2"])
        assert seen == [{"writes": [
            {"delete": f"{DOCS}/users/{USER}/workout/1"},
            {"delete": f"{DOCS}/users/{USER}/workout/2"},
        ]}]

    @pytest.mark.asyncio
    async def test_delete_missing_document_is_not_an_error(self):
        await _store(lambda r: httpx.Response(404, json={})).delete_document(USER, "goal", "9")

    @pytest.mark.asyncio
    async def test_delete_collection_in_bounded_batches(self):
        remaining = [str(i) for i in range(5)]
        commits = []

        def handler(request):
            if request.method == "GET":
                size = int(request.url.params["pageSize"])
                return httpx.Response(200, json={"documents": [_doc(i, {}) for i in remaining[:size]]})
            writes = json.loads(request.content)["writes"]
            commits.append(len(writes))
            for write in writes:
                remaining.remove(write["delete"].rsplit("/", 1)[-1])
            return httpx.Response(200, json={})

        deleted = await _store(handler).delete_collection(USER, "workout", batch_size=2)
        assert deleted == 5
        assert commits == [2, 2, 1]
        assert remaining == []


@pytest.mark.asyncio
async def test_close_leaves_injected_client_open():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    store = FirestoreDocumentStore(PROJECT, StubAuth(), http_client=client)
    await store.close()
    assert not client.is_closed
    await client.aclose()
