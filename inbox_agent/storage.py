"""Per-agent key/value storage.

Every agent instance owns one store. Values are JSON-compatible
(dicts, lists, strings, numbers, booleans, None) and are copied on the
way in and out, so callers can mutate what they read without touching
stored state.

Firestore Structure:
    inbox_agents/{instance_id}/kv/{key} -> {"value": ...}

File Storage (dev mode):
    agent_store/{instance_id}.json -> {key: value, ...}

Environment Variables:
    INBOX_AGENT_STORE_FORCE_FILE: Set to "1" to use local file storage (dev mode)
    INBOX_AGENT_STORE_DIR: Directory for file-based storage (default: agent_store/)
    INBOX_AGENT_STORE_COLLECTION: Firestore root collection (default: inbox_agents)

Compound read-modify-write sequences must hold ``store.lock``. The lock
is re-entrant so helpers that take it can call each other.
"""
from __future__ import annotations

import copy
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .firestore import get_firestore_client

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when a value cannot be persisted."""


def _force_file_fallback() -> bool:
    """Check if file-based storage should be used (dev mode)."""
    return os.getenv("INBOX_AGENT_STORE_FORCE_FILE", "0") == "1"


def _storage_dir() -> Path:
    """Return the directory for file-based storage."""
    default_dir = Path(__file__).resolve().parents[1] / "agent_store"
    return Path(os.getenv("INBOX_AGENT_STORE_DIR", str(default_dir)))


def _collection_name() -> str:
    return os.getenv("INBOX_AGENT_STORE_COLLECTION", "inbox_agents")


class KeyValueStore:
    """Base class for per-instance storage backends."""

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        self.lock = threading.RLock()

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def put(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Apply ``fn`` to the stored value and write the result back.

        Runs under the instance lock so concurrent updates to the same
        instance are never interleaved.
        """
        with self.lock:
            current = self.get(key, default)
            updated = fn(current)
            self.put(key, updated)
            return updated


class MemoryKeyValueStore(KeyValueStore):
    """In-process store, used by tests and ephemeral agents."""

    def __init__(self, instance_id: str = "memory"):
        super().__init__(instance_id)
        self._data: Dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        with self.lock:
            if key not in self._data:
                return copy.deepcopy(default)
            return copy.deepcopy(self._data[key])

    def put(self, key: str, value: Any) -> None:
        with self.lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self.lock:
            self._data.pop(key, None)


class FileKeyValueStore(KeyValueStore):
    """One JSON document per instance on the local filesystem."""

    def __init__(self, instance_id: str, directory: Optional[Path] = None):
        super().__init__(instance_id)
        self.directory = Path(directory) if directory else _storage_dir()
        self._cache: Optional[Dict[str, Any]] = None

    @property
    def path(self) -> Path:
        return self.directory / f"{self.instance_id}.json"

    def _load(self) -> Dict[str, Any]:
        if self._cache is not None:
            return self._cache
        if not self.path.exists():
            self._cache = {}
            return self._cache
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._cache = data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Could not read store file {self.path}: {e}")
            self._cache = {}
        return self._cache

    def _flush(self, data: Dict[str, Any]) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".json.tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to write {self.path}: {e}") from e
        self._cache = data

    def get(self, key: str, default: Any = None) -> Any:
        with self.lock:
            data = self._load()
            if key not in data:
                return copy.deepcopy(default)
            return copy.deepcopy(data[key])

    def put(self, key: str, value: Any) -> None:
        with self.lock:
            data = dict(self._load())
            data[key] = copy.deepcopy(value)
            self._flush(data)

    def delete(self, key: str) -> None:
        with self.lock:
            data = self._load()
            if key in data:
                self._flush({k: v for k, v in data.items() if k != key})


class FirestoreKeyValueStore(KeyValueStore):
    """Firestore-backed store, one document per key."""

    def __init__(self, instance_id: str, db=None, collection: Optional[str] = None):
        super().__init__(instance_id)
        self._db = db if db is not None else get_firestore_client()
        self.collection = collection or _collection_name()

    def _doc(self, key: str):
        return (
            self._db.collection(self.collection)
            .document(self.instance_id)
            .collection("kv")
            .document(key.replace("/", "_"))
        )

    def get(self, key: str, default: Any = None) -> Any:
        doc = self._doc(key).get()
        if not doc.exists:
            return copy.deepcopy(default)
        return (doc.to_dict() or {}).get("value", copy.deepcopy(default))

    def put(self, key: str, value: Any) -> None:
        try:
            self._doc(key).set({"value": value})
        except Exception as e:
            raise StorageError(f"Firestore write failed for {key}: {e}") from e

    def delete(self, key: str) -> None:
        self._doc(key).delete()


def open_store(instance_id: str) -> KeyValueStore:
    """Open the store for an agent instance.

    Uses Firestore unless file storage is forced; falls back to the
    local file store when the Firestore client cannot be created.
    """
    if _force_file_fallback():
        return FileKeyValueStore(instance_id)

    try:
        return FirestoreKeyValueStore(instance_id)
    except Exception as e:
        logger.warning(f"Firestore unavailable, falling back to local store: {e}")
        return FileKeyValueStore(instance_id)
