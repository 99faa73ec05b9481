from ..config import settings
from .provider import KeyValueStore
from .local_provider import JsonFileKeyValueStore
from .memory_provider import MemoryKeyValueStore


def build_session_store() -> KeyValueStore:
    kind = (settings.session_store or "memory").lower()
    if kind == "file":
        return JsonFileKeyValueStore(settings.session_store_path)
    if kind == "memory":
        return MemoryKeyValueStore()
    raise RuntimeError(f"Unknown SESSION_STORE '{settings.session_store}' (expected memory|file)")


session_store: KeyValueStore = build_session_store()
