from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Set

from botocore.exceptions import BotoCoreError, ClientError

from .settings import S

logger = logging.getLogger(__name__)


class IndexStatus(str, Enum):
    UNKNOWN = "unknown"
    CREATING = "creating"
    ACTIVE = "active"
    MISSING = "missing"


_DESCRIBE_STATUS = {
    "ACTIVE": IndexStatus.ACTIVE,
    "CREATING": IndexStatus.CREATING,
    "UPDATING": IndexStatus.CREATING,
    "DELETING": IndexStatus.MISSING,
}


def is_missing_index_error(exc: ClientError) -> bool:
    err = exc.response.get("Error", {})
    return err.get("Code") == "ValidationException" and "specified index" in (err.get("Message") or "")


def is_index_not_ready_error(exc: ClientError) -> bool:
    """Query against an index that exists but is still backfilling."""
    err = exc.response.get("Error", {})
    return err.get("Code") == "ValidationException" and "backfilling" in (err.get("Message") or "")


class IndexRegistry:
    """
    Tracks readiness of the table's global secondary indexes.

    Polled once at startup; indexes that are not ACTIVE are re-polled at most
    every ``poll_seconds`` when a caller asks about them. Before the first poll
    every index is UNKNOWN and callers attempt the query optimistically.
    """

    def __init__(
        self,
        names: Iterable[str],
        *,
        poll_seconds: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._names = tuple(names)
        self._poll_seconds = poll_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._states: Dict[str, IndexStatus] = {name: IndexStatus.UNKNOWN for name in self._names}
        self._checked_at: Optional[float] = None
        # Indexes seen backfilling by a query rather than by describe_table.
        self._seen_backfilling: Set[str] = set()

    def refresh(self, table: Any) -> Dict[str, IndexStatus]:
        resp = table.meta.client.describe_table(TableName=table.name)
        described = {
            gsi.get("IndexName"): gsi.get("IndexStatus", "")
            for gsi in resp.get("Table", {}).get("GlobalSecondaryIndexes", []) or []
        }
        states = {}
        for name in self._names:
            if name in described:
                states[name] = _DESCRIBE_STATUS.get(described[name], IndexStatus.CREATING)
            else:
                states[name] = IndexStatus.MISSING
        with self._lock:
            self._states.update(states)
            self._checked_at = self._clock()
            self._seen_backfilling.clear()
        for name, state in states.items():
            if state is not IndexStatus.ACTIVE:
                logger.warning("Index %s on %s is %s; lookups will scan", name, table.name, state.value)
        return dict(states)

    def status(self, name: str) -> IndexStatus:
        with self._lock:
            return self._states.get(name, IndexStatus.UNKNOWN)

    def _repoll_due(self, name: str) -> bool:
        with self._lock:
            state = self._states.get(name, IndexStatus.UNKNOWN)
            if state in (IndexStatus.ACTIVE, IndexStatus.UNKNOWN) or self._checked_at is None:
                return False
            return self._clock() - self._checked_at >= self._poll_seconds

    def should_query(self, name: str, table: Any) -> bool:
        if self._repoll_due(name):
            try:
                self.refresh(table)
            except (BotoCoreError, ClientError) as exc:
                logger.warning("Could not re-poll index status for %s: %s", name, exc)
                with self._lock:
                    self._checked_at = self._clock()
                    # Without describe_table the only way to learn a backfill finished is to query again.
                    for seen in self._seen_backfilling:
                        self._states[seen] = IndexStatus.UNKNOWN
                    self._seen_backfilling.clear()
        return self.status(name) in (IndexStatus.ACTIVE, IndexStatus.UNKNOWN)

    def mark_missing(self, name: str) -> None:
        with self._lock:
            self._states[name] = IndexStatus.MISSING
            if self._checked_at is None:
                self._checked_at = self._clock()

    def mark_creating(self, name: str) -> None:
        with self._lock:
            self._states[name] = IndexStatus.CREATING
            self._seen_backfilling.add(name)
            if self._checked_at is None:
                self._checked_at = self._clock()

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return {name: state.value for name, state in self._states.items()}


INDEXES = IndexRegistry((S.gsi1_name, S.gsi2_name), poll_seconds=S.index_poll_seconds)
