import json
from datetime import datetime, date
from enum import Enum
from typing import Any

from ..contracts.base import Timestamp
from ..contracts.state import SimulationState


class StateJSONEncoder(json.JSONEncoder):
    """
    JSON Encoder for simulation contracts.

    RULES:
    1. Dates MUST be ISO 8601 strings (UTC).
    2. Enums MUST use their .value.
    3. Sets -> Lists (sorted for determinism).
    4. Contract types serialize through their own to_dict().
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Timestamp):
            return obj.to_iso()
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(list(obj))
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        if hasattr(obj, "__dataclass_fields__"):
            from dataclasses import asdict
            return asdict(obj)

        return super().default(obj)


def dumps(obj: Any, **kwargs: Any) -> str:
    """Canonical JSON: sorted keys, contract-aware encoder."""
    kwargs.setdefault("sort_keys", True)
    return json.dumps(obj, cls=StateJSONEncoder, **kwargs)


def dumps_state(state: SimulationState) -> str:
    """Serialize a state for a cache value or a request body."""
    return dumps(state.to_dict())


def loads_state(raw: str) -> SimulationState:
    """
    Parse a serialized state.

    Raises ValueError (json.JSONDecodeError included), KeyError or
    TypeError when the text is not a valid state.
    """
    return SimulationState.from_dict(json.loads(raw))
