"""
Logical Clock for Event Stamping
================================

Injectable clock that stamps new simulation events.

The fold itself never reads time; only the persistence manager does,
and only through this clock. Tests and replays pass a pre-recorded
tick sequence so every stamped event is reproducible.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List
from pathlib import Path
import json

from ..contracts.base import Timestamp


class ClockExhausted(Exception):
    """Raised when replay clock runs out of ticks."""
    pass


@dataclass
class LogicalClock:
    """
    Injectable clock for event timestamps.

    MODES:
    ======
    1. LIVE mode: Uses real system time, logs all ticks
    2. REPLAY mode: Uses pre-recorded tick sequence
    """
    _ticks: List[datetime] = field(default_factory=list)
    _current_index: int = 0
    _is_live: bool = True

    def now(self) -> Timestamp:
        """
        Get current logical time.

        In LIVE mode: reads system time and logs it
        In REPLAY mode: returns next tick from recorded sequence
        """
        if self._is_live:
            current = datetime.now(timezone.utc)
            self._ticks.append(current)
            self._current_index = len(self._ticks)
            return Timestamp(value=current)

        if self._current_index >= len(self._ticks):
            raise ClockExhausted(
                f"Replay clock exhausted at index {self._current_index}. "
                f"Original execution had {len(self._ticks)} ticks."
            )
        tick = self._ticks[self._current_index]
        self._current_index += 1
        return Timestamp(value=tick)

    def tick_count(self) -> int:
        """Number of ticks recorded/consumed."""
        return self._current_index

    def is_live(self) -> bool:
        return self._is_live

    @classmethod
    def live(cls) -> 'LogicalClock':
        """Create clock in LIVE mode (uses system time)."""
        return cls(_is_live=True)

    @classmethod
    def from_ticks(cls, ticks: Iterable[datetime]) -> 'LogicalClock':
        """Create clock in REPLAY mode from an explicit tick sequence."""
        return cls(
            _ticks=[Timestamp(value=t).value for t in ticks],
            _current_index=0,
            _is_live=False
        )

    @classmethod
    def from_log(cls, tick_log_path: Path) -> 'LogicalClock':
        """Create clock in REPLAY mode from a tick log written by save_log()."""
        with open(tick_log_path, 'r') as f:
            data = json.load(f)

        return cls.from_ticks(datetime.fromisoformat(t) for t in data['ticks'])

    def save_log(self, tick_log_path: Path) -> None:
        """Save tick log for future replay."""
        tick_log_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'version': '1.0',
            'mode': 'live' if self._is_live else 'replay',
            'tick_count': len(self._ticks),
            'ticks': [t.isoformat() for t in self._ticks]
        }

        with open(tick_log_path, 'w') as f:
            json.dump(data, f, indent=2)

    def __repr__(self) -> str:
        mode = "LIVE" if self._is_live else "REPLAY"
        return f"LogicalClock({mode}, ticks={len(self._ticks)}, index={self._current_index})"
