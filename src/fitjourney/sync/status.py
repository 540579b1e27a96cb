"""
Sync status snapshots and the broadcast channel that carries them.

The engine publishes an immutable SyncStatus on every state transition
(Idle -> Syncing -> Success | Failed -> Idle). Observers subscribe to a
StatusChannel; each subscription holds a single slot, so a slow observer
only ever sees the newest status, and a late subscriber immediately gets
the current one.

    sub = channel.subscribe()
    async for status in sub:
        print(status.state, status.last_error)
"""
import asyncio
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Set


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncStatus:
    state: SyncState = SyncState.IDLE
    last_attempt: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def is_in_progress(self) -> bool:
        return self.state == SyncState.SYNCING

    def evolve(self, **changes) -> "SyncStatus":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["is_in_progress"] = self.is_in_progress
        return data


class StatusSubscription:
    """One observer's view of a StatusChannel."""

    def __init__(self, channel: "StatusChannel", queue: asyncio.Queue):
        self._channel = channel
        self._queue = queue

    async def get(self) -> SyncStatus:
        """Wait for the next status not yet seen by this subscriber."""
        return await self._queue.get()

    def close(self) -> None:
        self._channel._unsubscribe(self._queue)

    def __aiter__(self):
        return self

    async def __anext__(self) -> SyncStatus:
        return await self.get()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class StatusChannel:
    """Latest-value broadcast of SyncStatus to any number of subscribers."""

    def __init__(self, initial: Optional[SyncStatus] = None):
        self._latest = initial or SyncStatus()
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def latest(self) -> SyncStatus:
        return self._latest

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, status: SyncStatus) -> None:
        self._latest = status
        for queue in self._subscribers:
            _put_latest(queue, status)

    def subscribe(self) -> StatusSubscription:
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        queue.put_nowait(self._latest)
        self._subscribers.add(queue)
        return StatusSubscription(self, queue)

    def _unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)


def _put_latest(queue: asyncio.Queue, status: SyncStatus) -> None:
    # single slot: an unread older status is replaced
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(status)
