"""
Local filesystem key-value store for development.
Keeps every key in a single JSON document so sessions survive a restart.
"""
import json
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .provider import KeyValueStore


class JsonFileKeyValueStore(KeyValueStore):
    """JSON file backed store. Whole-document rewrite on every change.

    Each key maps to {"value": ..., "expires_at": unix-ts-or-null}.
    """

    def __init__(self, path: str = "var/sessions.json"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return {}
        return json.loads(raw)

    def _write(self, items: Dict[str, Dict[str, Any]]) -> None:
        # Atomic replace: readers never see a partial document
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(items, sort_keys=True, default=str), encoding="utf-8")
        tmp.replace(self.path)

    @staticmethod
    def _expired(entry: Dict[str, Any], now: float) -> bool:
        expires_at = entry.get("expires_at")
        return expires_at is not None and expires_at <= now

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._read().get(key)
        if entry is None or self._expired(entry, time.time()):
            return None
        return entry.get("value")

    def set(self, key: str, value: Any, expires_at: Optional[float] = None) -> None:
        now = time.time()
        with self._lock:
            items = {k: e for k, e in self._read().items() if not self._expired(e, now)}
            items[key] = {"value": value, "expires_at": expires_at}
            self._write(items)

    def exists(self, key: str) -> bool:
        with self._lock:
            entry = self._read().get(key)
        return entry is not None and not self._expired(entry, time.time())

    def delete(self, key: str) -> None:
        with self._lock:
            items = self._read()
            if key in items:
                del items[key]
                self._write(items)
