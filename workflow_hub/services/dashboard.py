"""
Live views over the change feed.

A LiveTable is a dashboard's local cache: loaded by a full refetch, then
kept current by merging insert/update/delete events by primary key.
Updates replace the cached record wholesale.
"""
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .realtime import ChangeFeed, Subscription


Row = Dict[str, Any]


@dataclass(frozen=True)
class StatusCounts:
    pending: int = 0
    flagged: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "pending": self.pending,
            "flagged": self.flagged,
            "completed": self.completed,
            "failed": self.failed,
        }


def status_counts(rows: Iterable[Any]) -> StatusCounts:
    """Count payment requests per status. Accepts dicts or ORM rows."""
    tally = {"pending": 0, "flagged": 0, "completed": 0, "failed": 0}
    for row in rows:
        status = row.get("status") if isinstance(row, dict) else getattr(row, "status", None)
        if status in tally:
            tally[status] += 1
    return StatusCounts(**tally)


class LiveTable:
    def __init__(self, table: str, key: str = "id", visible: Optional[Callable[[Row], bool]] = None):
        self.table = table
        self.key = key
        self._visible = visible
        self._rows: Dict[str, Row] = {}
        self._lock = threading.Lock()
        self._subscription: Optional[Subscription] = None

    def attach(self, feed: ChangeFeed) -> Subscription:
        self._subscription = feed.subscribe(
            self.table,
            on_insert=self._on_upsert,
            on_update=self._on_upsert,
            on_delete=self._on_delete,
        )
        return self._subscription

    def detach(self, feed: ChangeFeed) -> None:
        if self._subscription is not None:
            feed.unsubscribe(self._subscription)
            self._subscription = None

    def load(self, rows: Iterable[Row]) -> None:
        """Replace the cache with a full refetch."""
        with self._lock:
            self._rows = {}
            for row in rows:
                if self._accepts(row):
                    self._rows[str(row[self.key])] = dict(row)
            self._changed()

    def _accepts(self, row: Row) -> bool:
        return self._visible is None or self._visible(row)

    def _on_upsert(self, row: Row) -> None:
        with self._lock:
            key = str(row[self.key])
            if self._accepts(row):
                self._rows[key] = dict(row)
            else:
                self._rows.pop(key, None)
            self._changed()

    def _on_delete(self, row: Row) -> None:
        with self._lock:
            self._rows.pop(str(row[self.key]), None)
            self._changed()

    def _changed(self) -> None:
        """Hook run under the lock after every cache change."""

    def get(self, key: Any) -> Optional[Row]:
        with self._lock:
            row = self._rows.get(str(key))
            return dict(row) if row is not None else None

    def rows(self) -> List[Row]:
        with self._lock:
            return [dict(r) for r in self._rows.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


class PaymentBoard(LiveTable):
    """Payment requests visible to one dashboard, with status counters.

    Counters are recomputed under the cache lock, so a snapshot always
    pairs a record set with the counts derived from exactly that set.
    """

    def __init__(self, visible: Optional[Callable[[Row], bool]] = None):
        self._counts = StatusCounts()
        super().__init__("payments", visible=visible)

    def _changed(self) -> None:
        self._counts = status_counts(self._rows.values())

    @property
    def counts(self) -> StatusCounts:
        with self._lock:
            return self._counts

    def snapshot(self) -> Tuple[List[Row], StatusCounts]:
        with self._lock:
            return [dict(r) for r in self._rows.values()], self._counts
