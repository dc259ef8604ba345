"""
Forensic Reporter CLI
=====================

Offline verification of exported simulation runs.
Works on JSON files directly; never contacts a storage tier.

COMMANDS:
- replay:  Rebuild state from an exported event list
- verify:  Re-fold a stored snapshot and check it reproduces itself
- log:     Dump the hash-chained event log of a snapshot or event list

USAGE:
    python -m simstate.forensic [COMMAND] [ARGS]
"""
import argparse
import json
import sys
from typing import Any, List, Optional, Sequence

from .contracts.base import SimulationMode
from .contracts.events import SimulationEvent
from .contracts.state import SimulationState
from .domain.serialization import dumps
from .temporal.event_log import SimulationEventLog
from .temporal.replay import ReplayEngine, verify_snapshot
from .temporal.state_machine import StateRebuilder


def load_json(path: str) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def load_events(data: Any) -> List[SimulationEvent]:
    """Accept a bare event list or any object carrying an "events" list."""
    raw = data.get("events", []) if isinstance(data, dict) else data
    if not isinstance(raw, list):
        raise ValueError("Expected a list of events")
    return [SimulationEvent.from_dict(e) for e in raw]


def cmd_replay(args) -> int:
    """Rebuild state from an event list."""
    print(f"[*] Replaying events from: {args.events_file}", file=sys.stderr)
    try:
        events = load_events(load_json(args.events_file))
    except (OSError, ValueError, KeyError, TypeError) as e:
        print(f"[FAIL] Could not load events: {e}", file=sys.stderr)
        return 1

    log = SimulationEventLog(events)
    rebuilder = StateRebuilder(
        args.participant, args.session, SimulationMode(args.mode), args.started_at
    )
    engine = ReplayEngine(log, rebuilder)

    result = engine.replay_full()
    if not result.success:
        print(f"[FAIL] Replay failed: {result.error.message}", file=sys.stderr)
        return 1

    is_deterministic, diff = engine.verify_determinism()
    if not is_deterministic:
        print(f"[FAIL] {diff}", file=sys.stderr)
        return 1

    print(dumps(result.state.to_dict(), indent=2))
    print(f"[INFO] {len(log)} events, decided acts: {list(result.newly_decided_acts)}", file=sys.stderr)
    print(f"[INFO] State hash: {result.state.state_hash}", file=sys.stderr)
    return 0


def cmd_verify(args) -> int:
    """Verify a stored snapshot re-folds to itself."""
    print(f"[*] Verifying snapshot: {args.snapshot_file}")
    try:
        data = load_json(args.snapshot_file)
        # Accept either the bare state or a sync request body
        if isinstance(data, dict) and "stateSnapshot" in data:
            data = data["stateSnapshot"]
        state = SimulationState.from_dict(data)
    except (OSError, ValueError, KeyError, TypeError) as e:
        print(f"[FAIL] Could not load snapshot: {e}")
        return 1

    errors = verify_snapshot(state)
    if errors:
        for error in errors:
            print(f"[FAIL] {error.code.name}: {error.message}")
        return 1

    log = SimulationEventLog(state.events)
    is_valid, error = log.verify_integrity()
    if not is_valid:
        print(f"[FAIL] {error.message}")
        return 1

    print(f"[PASS] Snapshot reproduces from {len(log)} events.")
    print(f"[INFO] State hash: {state.state_hash}")
    print(f"[INFO] HEAD Hash: {log.head_hash}")
    return 0


def cmd_log(args) -> int:
    """Dump linear log."""
    try:
        events = load_events(load_json(args.source_file))
    except (OSError, ValueError, KeyError, TypeError) as e:
        print(f"[FAIL] Could not load events: {e}")
        return 1

    log = SimulationEventLog(events)
    print("SEQ | TIME                | TYPE         | ACT | HASH        | OPTION")
    print("-" * 80)
    for entry in log.replay():
        event = entry.event
        print(
            f"{entry.sequence.value:<4}| {event.timestamp.to_iso()[:19]} | "
            f"{event.event_type.value:<12} | {event.act:<3} | "
            f"{entry.entry_hash[:8]}... | {event.option_id or '-'}"
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Simulation state forensic reporter")
    subparsers = parser.add_subparsers(dest="command")

    replay_parser = subparsers.add_parser("replay", help="Rebuild state from events")
    replay_parser.add_argument("events_file", help="JSON file with an event list")
    replay_parser.add_argument("--participant", default="forensic", help="Participant id")
    replay_parser.add_argument("--session", default=None, help="Session id (omit for preview)")
    replay_parser.add_argument(
        "--mode",
        default=SimulationMode.NO_ASSISTANCE.value,
        choices=[m.value for m in SimulationMode],
        help="Assistance condition"
    )
    replay_parser.add_argument(
        "--started-at", default="1970-01-01T00:00:00+00:00", help="Run start (ISO-8601)"
    )

    verify_parser = subparsers.add_parser("verify", help="Verify a stored snapshot")
    verify_parser.add_argument("snapshot_file", help="JSON file with a state snapshot")

    log_parser = subparsers.add_parser("log", help="Dump hash-chained log")
    log_parser.add_argument("source_file", help="JSON snapshot or event list")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "replay":
        return cmd_replay(args)
    elif args.command == "verify":
        return cmd_verify(args)
    elif args.command == "log":
        return cmd_log(args)

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
