from typing import Any, Optional


class KeyValueStore:
    """Small key-value interface for session records.

    `expires_at` is a unix timestamp; an expired key reads as missing and
    is dropped the next time the store is written.
    """

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any, expires_at: Optional[float] = None) -> None:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
