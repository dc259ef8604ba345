"""
Simulation Event Log
====================

Append-only event storage with sequence numbering.

INVARIANTS:
- No updates or deletes - append only
- Every entry has monotonic sequence number
- Hash chain for integrity verification
- Deterministic replay: same entries → same hash

This is the SOURCE OF TRUTH for a participant run.
State is DERIVED from this log, never stored separately.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple

from ..contracts.base import Error, ErrorCode
from ..contracts.events import SimulationEvent
from ..contracts.temporal import LogEntry, LogSequence, compute_entry_hash


@dataclass(frozen=True)
class LogState:
    """
    Immutable snapshot of log state.

    Captures the head of the chain so two logs can be compared cheaply.
    """
    head_sequence: LogSequence
    head_hash: str
    entry_count: int

    @staticmethod
    def empty() -> 'LogState':
        return LogState(
            head_sequence=LogSequence(0),
            head_hash="",
            entry_count=0
        )


class SimulationEventLog:
    """
    Append-only event log for one participant run.

    GUARANTEES:
    ===========
    1. NO updates - entries are immutable once written
    2. NO deletes - log only grows
    3. Deterministic - same events in same order → same head hash
    4. Verifiable - hash chain ensures integrity

    Sequence numbers record arrival order. Derivation orders by event
    timestamp instead (see state_machine), so the two may differ when
    client and server histories are merged.
    """

    def __init__(self, events: Optional[Iterable[SimulationEvent]] = None):
        # Internal storage (append-only list)
        self._entries: List[LogEntry] = []
        self._sequence_counter = LogSequence(0)
        self._head_hash = ""

        for event in events or ():
            self.append(event)

    @property
    def state(self) -> LogState:
        """Get current log state (immutable snapshot)."""
        return LogState(
            head_sequence=self._sequence_counter,
            head_hash=self._head_hash,
            entry_count=len(self._entries)
        )

    @property
    def head_hash(self) -> str:
        """Hash of the newest entry; empty string for an empty log."""
        return self._head_hash

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, event: SimulationEvent) -> LogEntry:
        """
        Append event to log.

        This is the ONLY write operation.
        Returns the created entry for caller reference.
        """
        new_sequence = self._sequence_counter.next()

        entry = LogEntry.create(
            sequence=new_sequence,
            event=event,
            previous_hash=self._head_hash
        )

        # Append to log (this is the only mutation)
        self._entries.append(entry)
        self._sequence_counter = new_sequence
        self._head_hash = entry.entry_hash

        return entry

    def replay(
        self,
        from_seq: Optional[LogSequence] = None,
        until_seq: Optional[LogSequence] = None
    ) -> Iterator[LogEntry]:
        """
        Replay entries in sequence order.

        Args:
            from_seq: Start from this sequence (inclusive), None = start
            until_seq: Stop at this sequence (inclusive), None = end
        """
        start = (from_seq.value if from_seq else 1)
        end = (until_seq.value if until_seq else len(self._entries))

        for entry in self._entries:
            if entry.sequence.value < start:
                continue
            if entry.sequence.value > end:
                break
            yield entry

    def events(self, until_seq: Optional[LogSequence] = None) -> Tuple[SimulationEvent, ...]:
        """Events in arrival order, optionally truncated at a sequence."""
        return tuple(entry.event for entry in self.replay(until_seq=until_seq))

    def get_entry(self, sequence: LogSequence) -> Optional[LogEntry]:
        """Get specific entry by sequence number."""
        if sequence.value < 1 or sequence.value > len(self._entries):
            return None
        return self._entries[sequence.value - 1]

    def verify_integrity(self) -> Tuple[bool, Optional[Error]]:
        """
        Verify hash chain integrity.

        Returns (is_valid, error) tuple.
        Error contains details if integrity check fails.
        """
        expected_previous = ""

        for entry in self._entries:
            if entry.previous_hash != expected_previous:
                return (False, Error.create(
                    ErrorCode.STRUCTURAL_INCONSISTENCY,
                    f"Hash chain broken at sequence {entry.sequence.value}",
                    expected_hash=expected_previous,
                    actual_hash=entry.previous_hash
                ))
            recomputed = compute_entry_hash(entry.sequence, entry.event, entry.previous_hash)
            if recomputed != entry.entry_hash:
                return (False, Error.create(
                    ErrorCode.STRUCTURAL_INCONSISTENCY,
                    f"Corrupt entry at sequence {entry.sequence.value}: hash mismatch"
                ))
            expected_previous = entry.entry_hash

        return (True, None)
