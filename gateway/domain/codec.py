"""Flat record codec shared by the enqueue and dequeue paths.

Streams and hashes only carry strings, so nested payment records are flattened
into ``parent.child`` keys on the way in and rebuilt on the way out.
"""
from typing import Any, Dict, List, Mapping, Sequence, Union

DELIMITER = "."


def flatten(data: Mapping[str, Any], prefix: str = "", delimiter: str = DELIMITER) -> Dict[str, str]:
    result: Dict[str, str] = {}

    for key, value in data.items():
        new_key = str(key) if prefix == "" else f"{prefix}{delimiter}{key}"

        if isinstance(value, Mapping) and value:
            result.update(flatten(value, new_key, delimiter))
        elif isinstance(value, (list, tuple)) and value:
            result.update(flatten({str(i): item for i, item in enumerate(value)}, new_key, delimiter))
        elif value is None or isinstance(value, (Mapping, list, tuple)):
            # None and empty containers have no string form worth keeping
            result[new_key] = ""
        else:
            result[new_key] = str(value)

    return result


def to_field_list(flat: Mapping[str, str]) -> List[str]:
    """Render a flat record as an alternating name/value list."""
    result: List[str] = []
    for key, value in flat.items():
        result.append(key)
        result.append(value)
    return result


def from_field_list(pairs: Sequence[str]) -> Dict[str, str]:
    """Pair up an alternating name/value list. A trailing name with no value is dropped."""
    result: Dict[str, str] = {}
    for i in range(0, len(pairs) - 1, 2):
        result[pairs[i]] = pairs[i + 1]
    return result


def decode_fields(raw: Union[Mapping[str, str], Sequence[str], None]) -> Dict[str, str]:
    if not raw:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    return from_field_list(list(raw))


def unflatten(flat: Union[Mapping[str, str], Sequence[str]], delimiter: str = DELIMITER) -> Dict[str, Any]:
    result: Dict[str, Any] = {}

    for key, value in decode_fields(flat).items():
        node = result
        *parents, leaf = key.split(delimiter)
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[leaf] = value

    return result
