"""JSON encoding shared by the cache backends."""
import json
from typing import Any


def to_jsonable(value: Any) -> Any:
    """Convert domain results into JSON-compatible structures.

    Domain models expose `to_dict()`; lists, tuples and dicts are converted
    element-wise and anything else is passed through unchanged.
    """
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    return value


def dumps(value: Any) -> str:
    return json.dumps(to_jsonable(value), separators=(",", ":"))
