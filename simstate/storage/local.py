"""
Local State Cache
=================

Client-side key-value tier holding serialized SimulationState values.

KEYS:
- "simulation_state_<sessionId>" for persisted runs
- "simulation_state_preview" for the ephemeral preview slot

Values are JSON strings. The cache stores text only; parsing (and
treating unparseable text as absent) is the persistence manager's job.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import quote, unquote
import logging
import os
import tempfile

from ..contracts.base import PREVIEW_SESSION_ID

logger = logging.getLogger(__name__)

STORAGE_KEY_PREFIX = "simulation_state_"

# Auxiliary per-act caches written by the preview UI; cleared with the slot
PREVIEW_CACHE_PREFIXES = ("preview-act-", "c2Justification:preview:")

_FILE_SUFFIX = ".json"


def storage_key(session_id: Optional[str]) -> str:
    """Cache key for a run; ephemeral runs share the preview slot."""
    return f"{STORAGE_KEY_PREFIX}{session_id or PREVIEW_SESSION_ID}"


# =============================================================================
# CACHE INTERFACE (Dependency Inversion)
# =============================================================================

class LocalStateCache:
    """
    Abstract local cache interface.

    Implementations may raise OSError on I/O failure; the persistence
    manager treats that as a degraded, non-fatal path.
    """

    def get(self, key: str) -> Optional[str]:
        """Stored text for key, or None."""
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        """Store text under key, replacing any previous value."""
        raise NotImplementedError

    def remove(self, key: str) -> None:
        """Delete key if present."""
        raise NotImplementedError

    def keys(self) -> List[str]:
        """All keys currently stored."""
        raise NotImplementedError

    def remove_prefixed(self, *prefixes: str) -> List[str]:
        """Delete every key starting with one of the prefixes."""
        removed = [k for k in self.keys() if k.startswith(prefixes)]
        for key in removed:
            self.remove(key)
        return removed


# =============================================================================
# IN-MEMORY CACHE (Reference Implementation)
# =============================================================================

class InMemoryStateCache(LocalStateCache):
    """
    In-memory implementation of the local cache.
    Suitable for testing and single-process use.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._values.keys())


# =============================================================================
# FILE-BASED CACHE
# =============================================================================

class FileStateCache(LocalStateCache):
    """
    File-based implementation of the local cache.

    One file per key inside storage_dir. Keys are percent-encoded into
    file names so separators like ':' are safe on every platform.
    Writes go through a temp file and os.replace, so a reader never sees
    a half-written value.
    """

    def __init__(self, storage_dir: str):
        self._storage_dir = storage_dir
        os.makedirs(storage_dir, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self._storage_dir, quote(key, safe="") + _FILE_SUFFIX)

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()

    def set(self, key: str, value: str) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self._storage_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(value)
            os.replace(tmp_path, self._path(key))
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def remove(self, key: str) -> None:
        path = self._path(key)
        if os.path.exists(path):
            os.remove(path)

    def keys(self) -> List[str]:
        return sorted(
            unquote(name[:-len(_FILE_SUFFIX)])
            for name in os.listdir(self._storage_dir)
            if name.endswith(_FILE_SUFFIX)
        )


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class LocalCacheConfig:
    """Configuration for the local cache tier."""
    backend_type: str = "memory"  # "memory" or "file"
    storage_dir: Optional[str] = None


def create_cache(config: Optional[LocalCacheConfig] = None) -> LocalStateCache:
    """Create cache backend based on configuration."""
    config = config or LocalCacheConfig()
    if config.backend_type == "file" and config.storage_dir:
        logger.debug("Using file state cache at %s", config.storage_dir)
        return FileStateCache(config.storage_dir)
    return InMemoryStateCache()
