"""
Remote document store interface.

Documents live per user under ``users/{user_id}/{collection}/{doc_id}``,
with collections named after the local tables. Writes are upserts keyed by
document id, so pushing the same row twice leaves one document.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class RemoteStoreError(RuntimeError):
    """A remote read or write failed (network, quota, permissions...)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass
class RemoteDocument:
    id: str
    data: Dict[str, Any]


class DocumentStore(ABC):
    """Async per-user document collections."""

    @abstractmethod
    async def set_document(
        self, user_id: str, collection: str, doc_id: str, data: Dict[str, Any]
    ) -> None:
        """Create or merge-update a document."""

    @abstractmethod
    async def get_document(
        self, user_id: str, collection: str, doc_id: str
    ) -> Optional[Dict[str, Any]]:
        """Return the document's fields, or None if it does not exist."""

    @abstractmethod
    async def delete_document(self, user_id: str, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""

    @abstractmethod
    async def list_documents(
        self,
        user_id: str,
        collection: str,
        updated_since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[RemoteDocument]:
        """List documents, optionally only those with last_updated > updated_since."""

    @abstractmethod
    async def count_documents(self, user_id: str, collection: str) -> int:
        ...

    @abstractmethod
    async def delete_documents(self, user_id: str, collection: str, doc_ids: List[str]) -> None:
        """Delete several documents in one batch."""

    async def delete_collection(self, user_id: str, collection: str, batch_size: int = 100) -> int:
        """Delete every document in a collection, ``batch_size`` at a time.

        Returns:
            Number of documents deleted.
        """
        deleted = 0
        while True:
            docs = await self.list_documents(user_id, collection, limit=batch_size)
            if not docs:
                break
            await self.delete_documents(user_id, collection, [d.id for d in docs])
            deleted += len(docs)
            logger.info("Deleted %d documents from %s/%s", len(docs), user_id, collection)
            if len(docs) < batch_size:
                break
        return deleted

    async def close(self) -> None:
        return None
