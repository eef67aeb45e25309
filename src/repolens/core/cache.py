"""Expiring response cache for AI-backed operations.

The cache is an optimisation, never a correctness requirement: malformed
payloads, quota overruns and I/O failures all degrade to a cache miss on
read and a no-op on write.

Storage is pluggable through the small ``KeyValueStorage`` protocol.  Two
implementations ship with repolens:

- ``MemoryStorage``: process-local dict, the ``RepoLens`` default.
- ``FileStorage``: one JSON file per key under ``~/.repolens/cache``.

Both are capacity-bounded and raise ``StorageQuotaError`` when a write would
exceed the configured number of bytes.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Protocol

from ..errors import StorageQuotaError

logger = logging.getLogger(__name__)

CACHE_PREFIX = "repolens_cache_"
DEFAULT_TTL = 24 * 60 * 60  # seconds
DEFAULT_MAX_BYTES = 5 * 1024 * 1024

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")
_SAFE_FILENAME = re.compile(r"[A-Za-z0-9_]{1,200}")


class CacheKind(str, Enum):
    """Operation kinds that own cache entries."""
    EXPLANATION = "explanation"
    DIAGRAM = "diagram"
    CODE_QA = "code_qa"
    FUNCTION = "function"


# ---------------------------------------------------------------------------
# Storage backends
# ---------------------------------------------------------------------------

class KeyValueStorage(Protocol):
    """Synchronous string key-value storage."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """In-memory storage with a total byte budget."""

    def __init__(self, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self.max_bytes = max_bytes
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        used = sum(len(v) for k, v in self._items.items() if k != key)
        if used + len(value) > self.max_bytes:
            raise StorageQuotaError(
                f"Storing {len(value)} bytes would exceed the {self.max_bytes} byte quota"
            )
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


class FileStorage:
    """One file per key inside *directory*, bounded by *max_bytes* in total."""

    def __init__(self, directory: Path, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self.directory = Path(directory)
        self.max_bytes = max_bytes

    def _path(self, key: str) -> Path:
        # Hash keys that are not usable as a file name as-is.
        if _SAFE_FILENAME.fullmatch(key):
            return self.directory / f"{key}.json"
        return self.directory / f"{hashlib.sha256(key.encode('utf-8')).hexdigest()}.json"

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        used = sum(
            p.stat().st_size for p in self.directory.glob("*.json") if p != path
        )
        size = len(value.encode("utf-8"))
        if used + size > self.max_bytes:
            raise StorageQuotaError(
                f"Storing {size} bytes would exceed the {self.max_bytes} byte quota"
            )
        path.write_text(value, encoding="utf-8")

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def clear(self) -> int:
        """Delete every cache file; return how many were removed."""
        if not self.directory.exists():
            return 0
        removed = 0
        for path in self.directory.glob("*.json"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed


# ---------------------------------------------------------------------------
# Response cache
# ---------------------------------------------------------------------------

class ResponseCache:
    """Time-bounded cache in front of a ``KeyValueStorage``.

    Entries are stored as ``{"value": ..., "stored_at": <epoch seconds>}``
    and treated as absent once older than *ttl*, at which point they are
    evicted lazily on the next read.
    """

    def __init__(
        self,
        storage: KeyValueStorage | None = None,
        *,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage: KeyValueStorage = storage if storage is not None else MemoryStorage()
        self.ttl = ttl
        self._clock = clock

    def get(self, key: str) -> Any | None:
        full_key = CACHE_PREFIX + key
        try:
            raw = self.storage.get_item(full_key)
            if raw is None:
                return None
            entry = json.loads(raw)
            stored_at = float(entry["stored_at"])
            value = entry["value"]
        except (OSError, ValueError, TypeError, KeyError, StorageQuotaError) as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

        if self._clock() - stored_at > self.ttl:
            logger.debug("Cache entry %s expired", key)
            self._remove(full_key)
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps({"value": value, "stored_at": self._clock()})
            self.storage.set_item(CACHE_PREFIX + key, payload)
        except (OSError, TypeError, ValueError, StorageQuotaError) as exc:
            logger.warning("Cache write skipped for %s (likely quota exceeded): %s", key, exc)

    def _remove(self, full_key: str) -> None:
        try:
            self.storage.remove_item(full_key)
        except OSError as exc:
            logger.debug("Cache eviction failed for %s: %s", full_key, exc)

    @staticmethod
    def generate_key(scope: str, path: str, kind: CacheKind | str) -> str:
        """Stable key for ``(repository, logical path, operation kind)``.

        Leading/trailing whitespace and slashes are ignored and the scope is
        case-insensitive, so cosmetic differences upstream map to the same
        entry.  The readable part replaces non-alphanumerics with ``_``; the
        digest suffix keeps distinct inputs (``a/b`` vs ``a_b``) apart.
        """
        kind_value = kind.value if isinstance(kind, CacheKind) else str(kind)
        norm_scope = scope.strip().strip("/").lower()
        norm_path = path.strip().strip("/") or "root"
        digest = hashlib.sha256(
            "\x00".join((norm_scope, norm_path, kind_value)).encode("utf-8")
        ).hexdigest()[:12]
        readable = "_".join(
            _NON_ALNUM.sub("_", part) for part in (norm_scope, kind_value, norm_path)
        )
        return f"{readable}_{digest}"
