"""
Remote State Store
==================

Authoritative server-side tier.

CONTRACT:
=========
- GET  {base_url}/sim/{sessionId}/state
    200 → {"status": "success", "data": {"state": <SimulationState>}}
    404 → no state recorded yet (NOT an error)
- POST {base_url}/sim/{sessionId}/state/snapshot
    body {"stateSnapshot": <SimulationState>}; response body ignored

FAILURE STATES:
- Network errors, timeouts, 5xx and undecodable bodies raise
  RemoteStoreError. The store never retries; the caller decides what
  a failure means.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from ..contracts.base import ErrorCode
from ..contracts.state import SimulationState


class RemoteStoreError(Exception):
    """Remote tier unreachable or returned something unusable."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.REMOTE_UNAVAILABLE,
        status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


# =============================================================================
# STORE INTERFACE (Dependency Inversion)
# =============================================================================

class RemoteStateStore:
    """
    Abstract remote store interface.
    """

    async def fetch_state(self, session_id: str) -> Optional[SimulationState]:
        """Authoritative state for a session, or None if none exists yet."""
        raise NotImplementedError

    async def save_snapshot(self, session_id: str, state: SimulationState) -> None:
        """Upsert the snapshot for a session. Safe to repeat."""
        raise NotImplementedError


# =============================================================================
# IN-MEMORY STORE (Reference Implementation)
# =============================================================================

class InMemoryRemoteStateStore(RemoteStateStore):
    """
    In-process stand-in for the server.
    Suitable for testing and offline runs.
    """

    def __init__(self):
        self._snapshots: Dict[str, SimulationState] = {}
        self.save_count: int = 0

    async def fetch_state(self, session_id: str) -> Optional[SimulationState]:
        return self._snapshots.get(session_id)

    async def save_snapshot(self, session_id: str, state: SimulationState) -> None:
        self._snapshots[session_id] = state
        self.save_count += 1

    def get(self, session_id: str) -> Optional[SimulationState]:
        return self._snapshots.get(session_id)


# =============================================================================
# HTTP STORE
# =============================================================================

@dataclass
class RemoteStoreConfig:
    """Configuration for the HTTP remote store."""
    base_url: str = "http://localhost:3001/api"
    timeout_seconds: float = 30.0
    auth_token: Optional[str] = None
    user_agent: str = "SimState/1.0"


class HttpRemoteStateStore(RemoteStateStore):
    """
    Remote store speaking the simulation state HTTP contract.

    GUARANTEES:
    ===========
    1. One client per request - no connection held across calls
    2. 404 on read maps to None
    3. Every other failure raises RemoteStoreError
    """

    def __init__(
        self,
        config: Optional[RemoteStoreConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._config = config or RemoteStoreConfig()
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {
            'User-Agent': self._config.user_agent,
            'Content-Type': 'application/json',
        }
        if self._config.auth_token:
            headers['Authorization'] = f"Bearer {self._config.auth_token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout_seconds,
            headers=self._headers(),
            transport=self._transport
        )

    async def fetch_state(self, session_id: str) -> Optional[SimulationState]:
        try:
            async with self._client() as client:
                response = await client.get(f"/sim/{session_id}/state")
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"State fetch failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise RemoteStoreError(
                f"State fetch returned HTTP {response.status_code}",
                status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteStoreError(
                "State fetch returned a non-JSON body",
                code=ErrorCode.REMOTE_MALFORMED_RESPONSE,
                status_code=response.status_code
            ) from e

        if not isinstance(body, dict) or body.get("status") != "success":
            return None

        try:
            return SimulationState.from_dict(body["data"]["state"])
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteStoreError(
                f"State fetch returned an invalid state: {e}",
                code=ErrorCode.REMOTE_MALFORMED_RESPONSE,
                status_code=response.status_code
            ) from e

    async def save_snapshot(self, session_id: str, state: SimulationState) -> None:
        try:
            async with self._client() as client:
                response = await client.post(
                    f"/sim/{session_id}/state/snapshot",
                    json={"stateSnapshot": state.to_dict()}
                )
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"Snapshot sync failed: {e}") from e

        if response.status_code >= 400:
            raise RemoteStoreError(
                f"Snapshot sync returned HTTP {response.status_code}",
                status_code=response.status_code
            )
