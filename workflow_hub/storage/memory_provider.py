import threading
import time
from typing import Any, Dict, Optional, Tuple

from .provider import KeyValueStore


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store; sessions are lost on restart."""

    def __init__(self) -> None:
        # key -> (value, expires_at)
        self._items: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str, now: float) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._items.get(key)
        if entry is None:
            return None
        if entry[1] is not None and entry[1] <= now:
            return None
        return entry

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._live(key, time.time())
            return entry[0] if entry else None

    def set(self, key: str, value: Any, expires_at: Optional[float] = None) -> None:
        now = time.time()
        with self._lock:
            self._items = {k: e for k, e in self._items.items() if e[1] is None or e[1] > now}
            self._items[key] = (value, expires_at)

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key, time.time()) is not None

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
