"""
Storage Layer

RESPONSIBILITY: Hold serialized simulation state in two tiers
ALLOWED INPUTS: SimulationState values, session identifiers
OUTPUTS: Stored / fetched states

WHAT THIS LAYER MUST NOT DO:
============================
- Derive or patch state (the fold owns that)
- Decide fallback policy between tiers (the persistence manager owns that)
- Retry failed remote calls

TIERS:
======
1. Remote (authoritative): HTTP store, one snapshot per session
2. Local (cache): key-value text store, survives a lost connection
"""

from .local import (
    PREVIEW_CACHE_PREFIXES,
    STORAGE_KEY_PREFIX,
    FileStateCache,
    InMemoryStateCache,
    LocalCacheConfig,
    LocalStateCache,
    create_cache,
    storage_key,
)
from .remote import (
    HttpRemoteStateStore,
    InMemoryRemoteStateStore,
    RemoteStateStore,
    RemoteStoreConfig,
    RemoteStoreError,
)

__all__ = [
    'PREVIEW_CACHE_PREFIXES',
    'STORAGE_KEY_PREFIX',
    'FileStateCache',
    'HttpRemoteStateStore',
    'InMemoryRemoteStateStore',
    'InMemoryStateCache',
    'LocalCacheConfig',
    'LocalStateCache',
    'RemoteStateStore',
    'RemoteStoreConfig',
    'RemoteStoreError',
    'create_cache',
    'storage_key',
]
