from __future__ import annotations
from dataclasses import dataclass
import hashlib
import json

from .events import SimulationEvent


@dataclass(frozen=True)
class LogSequence:
    """
    Immutable sequence position in the log.
    """
    value: int

    def next(self) -> 'LogSequence':
        return LogSequence(self.value + 1)

    def __lt__(self, other: 'LogSequence') -> bool:
        return self.value < other.value

    def __le__(self, other: 'LogSequence') -> bool:
        return self.value <= other.value


def compute_entry_hash(
    sequence: LogSequence,
    event: SimulationEvent,
    previous_hash: str
) -> str:
    """Hash of one log position, chained to the previous entry."""
    hash_content = (
        f"{sequence.value}|"
        f"{event.timestamp.to_iso()}|"
        f"{event.event_type.value}|"
        f"{event.act}|"
        f"{json.dumps(event.payload, sort_keys=True, default=str)}|"
        f"{previous_hash}"
    )
    return hashlib.sha256(hash_content.encode()).hexdigest()


@dataclass(frozen=True)
class LogEntry:
    """
    Immutable log entry.
    INVARIANTS:
    - Once written, never modified.
    - Entries form a hash chain for integrity verification.
    """
    sequence: LogSequence
    event: SimulationEvent
    previous_hash: str
    entry_hash: str

    @staticmethod
    def create(
        sequence: LogSequence,
        event: SimulationEvent,
        previous_hash: str
    ) -> 'LogEntry':
        """Factory for deterministic entry creation."""
        return LogEntry(
            sequence=sequence,
            event=event,
            previous_hash=previous_hash,
            entry_hash=compute_entry_hash(sequence, event, previous_hash)
        )
