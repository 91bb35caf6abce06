"""In-memory store of ingestion workflows, one per browser session."""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from stock_intake.ingestion.errors import IngestionError
from stock_intake.ingestion.workflow import IngestionWorkflow

logger = logging.getLogger(__name__)


class SessionNotFoundError(IngestionError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Ingestion session not found: {session_id}")
        self.session_id = session_id


@dataclass
class _Entry:
    workflow: IngestionWorkflow
    last_used: float
    lock: threading.Lock = field(default_factory=threading.Lock)


class SessionStore:
    """Thread-safe registry of workflows.

    Each workflow has its own lock; ``use`` holds it for the duration of a
    request so concurrent requests on one session run one after the other.
    Sessions idle for longer than ``ttl_seconds`` are dropped when a new one is
    created, unless a request is using them.
    """

    def __init__(
        self, ttl_seconds: float = 3600.0, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, factory: Callable[[], IngestionWorkflow]) -> IngestionWorkflow:
        self.expire()
        workflow = factory()
        with self._lock:
            self._sessions[workflow.session_id] = _Entry(workflow, self._clock())
        return workflow

    @contextmanager
    def use(self, session_id: str) -> Iterator[IngestionWorkflow]:
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is not None:
                entry.last_used = self._clock()
        if entry is None:
            raise SessionNotFoundError(session_id)
        with entry.lock:
            try:
                yield entry.workflow
            finally:
                entry.last_used = self._clock()

    def delete(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise SessionNotFoundError(session_id)

    def expire(self) -> list[str]:
        """Drop idle sessions and return their ids."""
        cutoff = self._clock() - self.ttl_seconds
        with self._lock:
            expired = [
                session_id
                for session_id, entry in self._sessions.items()
                if entry.last_used < cutoff and not entry.lock.locked()
            ]
            for session_id in expired:
                del self._sessions[session_id]
        if expired:
            logger.info(f"Expired {len(expired)} idle ingestion sessions")
        return expired

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
