"""
Simulation Event Contract

The single event type recorded in a participant's log. Events are the
source of truth; decisions and branches are derived from them.

WIRE FORMAT:
============
    {"timestamp": "<ISO-8601>", "type": "decision", "act": 1,
     "payload": {"optionId": "B"}}
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .base import EventType, Timestamp


@dataclass(frozen=True)
class SimulationEvent:
    """
    IMMUTABLE entry in a participant's event log.

    `payload` is free-form JSON. For DECISION events it carries
    `optionId` and optionally `decisionTimeMs` / `confidence`.
    """
    timestamp: Timestamp
    event_type: EventType
    act: int
    payload: Dict[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        # Detach from the caller's dict so later edits can't leak in
        object.__setattr__(self, 'payload', dict(self.payload))

    @staticmethod
    def decision(
        act: int,
        option_id: str,
        timestamp: Timestamp,
        **extra: Any
    ) -> SimulationEvent:
        """Factory for a decision event."""
        payload: Dict[str, Any] = {"optionId": option_id}
        payload.update(extra)
        return SimulationEvent(
            timestamp=timestamp,
            event_type=EventType.DECISION,
            act=act,
            payload=payload
        )

    @staticmethod
    def act_started(act: int, timestamp: Timestamp) -> SimulationEvent:
        """Factory for an act-started marker."""
        return SimulationEvent(
            timestamp=timestamp,
            event_type=EventType.ACT_STARTED,
            act=act
        )

    @property
    def option_id(self) -> Optional[str]:
        """Option code for decision events, None when absent or not a string."""
        value = self.payload.get("optionId")
        return value if isinstance(value, str) else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.to_iso(),
            "type": self.event_type.value,
            "act": self.act,
            "payload": dict(self.payload),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> SimulationEvent:
        """
        Parse a wire-format event.

        Raises ValueError / KeyError / TypeError on malformed input;
        callers decide whether that means "corrupt" or "reject".
        """
        act = data["act"]
        if not isinstance(act, int) or isinstance(act, bool):
            raise ValueError(f"Event act must be an integer, got {act!r}")

        timestamp = data["timestamp"]
        if not isinstance(timestamp, str):
            raise TypeError(f"Event timestamp must be an ISO string, got {timestamp!r}")

        payload = data.get("payload") or {}
        if not isinstance(payload, Mapping):
            raise ValueError("Event payload must be an object")

        return SimulationEvent(
            timestamp=Timestamp.from_iso(timestamp),
            event_type=EventType(data["type"]),
            act=act,
            payload=dict(payload)
        )
