"""
Firestore REST implementation of DocumentStore.

Talks to the Cloud Firestore v1 REST API with httpx, authenticated by the
signed-in user's Firebase ID token:

    users/{uid}/{collection}/{doc_id}          one document per local row
    users/{uid}:runQuery                       incremental pulls (last_updated)
    users/{uid}:runAggregationQuery            remote counts for diagnostics
    documents:commit                           upserts and batched deletes

Every write stamps ``last_updated`` with the server's request time, which
is what the incremental pull filters on.

FirebaseAuth is synchronous (it may refresh the token over the network),
so the token is fetched in the thread pool to keep the event loop free.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from fitjourney.cloud.codec import decode_fields, decode_value, encode_fields, encode_value
from fitjourney.cloud.store import DocumentStore, RemoteDocument, RemoteStoreError

logger = logging.getLogger(__name__)

BASE_URL = "https://firestore.googleapis.com/v1"
LAST_UPDATED = "last_updated"
PAGE_SIZE = 300


class FirestoreDocumentStore(DocumentStore):
    """
    Per-user Firestore collections over REST.

    Usage:
        store = FirestoreDocumentStore(project_id, auth)
        await store.set_document(uid, "workout", "12", payload)
        docs = await store.list_documents(uid, "workout", updated_since=since)
        await store.close()
    """

    def __init__(
        self,
        project_id: str,
        auth,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Args:
            project_id: Firebase/GCP project id.
            auth: FirebaseAuth (anything with an ``id_token()`` method).
            http_client: Injected client, e.g. one built on httpx.MockTransport.
            timeout: HTTP timeout in seconds when we create our own client.
        """
        self._project_id = project_id
        self._auth = auth
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    # ── Paths ─────────────────────────────────────────────────────────────────

    @property
    def database_path(self) -> str:
        return f"projects/{self._project_id}/databases/(default)/documents"

    def _user_path(self, user_id: str) -> str:
        return f"{self.database_path}/users/{user_id}"

    def _doc_path(self, user_id: str, collection: str, doc_id: str) -> str:
        return f"{self._user_path(user_id)}/{collection}/{doc_id}"

    # ── HTTP ──────────────────────────────────────────────────────────────────

    async def _headers(self) -> Dict[str, str]:
        loop = asyncio.get_event_loop()
        token = await loop.run_in_executor(None, self._auth.id_token)
        return {"Authorization": f"Bearer {token}"}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send one request; map transport errors and HTTP errors to RemoteStoreError.

        A 404 is returned to the caller instead of raised.
        """
        headers = await self._headers()
        try:
            resp = await self._http.request(
                method, f"{BASE_URL}/{path}", headers=headers, **kwargs
            )
        except httpx.HTTPError as exc:
            raise RemoteStoreError(f"{method} {path}: {exc}") from exc
        if resp.status_code == 404:
            return resp
        if resp.status_code >= 400:
            raise RemoteStoreError(
                f"{method} {path} failed with {resp.status_code}: {_error_message(resp)}",
                status=resp.status_code,
            )
        return resp

    async def _commit(self, writes: List[Dict[str, Any]]) -> None:
        await self._request("POST", f"{self.database_path}:commit", json={"writes": writes})

    # ── DocumentStore ─────────────────────────────────────────────────────────

    async def set_document(
        self, user_id: str, collection: str, doc_id: str, data: Dict[str, Any]
    ) -> None:
        fields = {k: v for k, v in data.items() if k != LAST_UPDATED}
        await self._commit([
            {
                "update": {
                    "name": self._doc_path(user_id, collection, doc_id),
                    "fields": encode_fields(fields),
                },
                "updateMask": {"fieldPaths": sorted(fields)},
                "updateTransforms": [
                    {"fieldPath": LAST_UPDATED, "setToServerValue": "REQUEST_TIME"}
                ],
            }
        ])

    async def get_document(
        self, user_id: str, collection: str, doc_id: str
    ) -> Optional[Dict[str, Any]]:
        resp = await self._request("GET", self._doc_path(user_id, collection, doc_id))
        if resp.status_code == 404:
            return None
        return decode_fields(resp.json().get("fields", {}))

    async def delete_document(self, user_id: str, collection: str, doc_id: str) -> None:
        # Firestore answers 200 for missing documents; a 404 is tolerated anyway.
        await self._request("DELETE", self._doc_path(user_id, collection, doc_id))

    async def delete_documents(self, user_id: str, collection: str, doc_ids: List[str]) -> None:
        if not doc_ids:
            return
        await self._commit([
            {"delete": self._doc_path(user_id, collection, doc_id)} for doc_id in doc_ids
        ])

    async def list_documents(
        self,
        user_id: str,
        collection: str,
        updated_since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[RemoteDocument]:
        if updated_since is not None:
            return await self._query_updated_since(user_id, collection, updated_since, limit)

        docs: List[RemoteDocument] = []
        page_token = None
        while True:
            params: Dict[str, Any] = {"pageSize": min(limit, PAGE_SIZE) if limit else PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            resp = await self._request(
                "GET", f"{self._user_path(user_id)}/{collection}", params=params
            )
            if resp.status_code == 404:
                break
            body = resp.json()
            docs.extend(_to_remote_document(d) for d in body.get("documents", []))
            page_token = body.get("nextPageToken")
            if not page_token or (limit and len(docs) >= limit):
                break
        return docs[:limit] if limit else docs

    async def count_documents(self, user_id: str, collection: str) -> int:
        body = {
            "structuredAggregationQuery": {
                "structuredQuery": {"from": [{"collectionId": collection}]},
                "aggregations": [{"alias": "count", "count": {}}],
            }
        }
        resp = await self._request(
            "POST", f"{self._user_path(user_id)}:runAggregationQuery", json=body
        )
        if resp.status_code == 404:
            return 0
        for item in resp.json():
            result = item.get("result")
            if result:
                return int(decode_value(result["aggregateFields"]["count"]))
        return 0

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ── Internal helpers ──────────────────────────────────────────────────────

    async def _query_updated_since(
        self, user_id: str, collection: str, since: datetime, limit: Optional[int]
    ) -> List[RemoteDocument]:
        query: Dict[str, Any] = {
            "from": [{"collectionId": collection}],
            "where": {
                "fieldFilter": {
                    "field": {"fieldPath": LAST_UPDATED},
                    "op": "GREATER_THAN",
                    "value": encode_value(since),
                }
            },
        }
        if limit:
            query["limit"] = limit
        resp = await self._request(
            "POST", f"{self._user_path(user_id)}:runQuery", json={"structuredQuery": query}
        )
        if resp.status_code == 404:
            return []
        # runQuery streams one item per result; items without "document" only carry readTime
        return [_to_remote_document(item["document"]) for item in resp.json() if "document" in item]


def _to_remote_document(doc: Dict[str, Any]) -> RemoteDocument:
    return RemoteDocument(
        id=doc["name"].rsplit("/", 1)[-1],
        data=decode_fields(doc.get("fields", {})),
    )


def _error_message(resp: httpx.Response) -> str:
    try:
        return resp.json().get("error", {}).get("message", resp.text)
    except (ValueError, AttributeError):
        return resp.text
