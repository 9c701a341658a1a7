"""
Canonical JSON for signatures and hashes.

An issuer signs, and the verifier re-hashes, the same public signals and user
context. Both sides must therefore produce identical bytes for equal values,
whatever key order or container type the holder's wallet used.
"""

import json
import math
from collections.abc import Mapping
from typing import Any

_SCALARS = (str, int, bool, type(None))


def _normalize(value: Any, path: str = "$") -> Any:
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, float):
        # NaN and infinities have no JSON spelling both sides agree on
        if not math.isfinite(value):
            raise ValueError(f"{path}: non-finite number")
        return value
    if isinstance(value, Mapping):
        out = {}
        for key in sorted(value, key=_key_order(path)):
            out[key] = _normalize(value[key], f"{path}.{key}")
        return out
    if isinstance(value, (list, tuple)):
        return [_normalize(item, f"{path}[{i}]") for i, item in enumerate(value)]
    raise ValueError(f"{path}: cannot canonicalize {type(value).__name__}")


def _key_order(path: str):
    def key(k):
        if not isinstance(k, str):
            raise ValueError(f"{path}: object keys must be strings, got {type(k).__name__}")
        return k
    return key


def canonicalize(obj: Any) -> bytes:
    """
    Encode obj as canonical JSON bytes.

    Keys are sorted by code point, separators carry no whitespace, output is
    UTF-8 without ASCII escaping and array order is kept. Sets are rejected
    rather than silently ordered.

    Raises:
        ValueError: naming the JSON path of the first offending value
    """
    return json.dumps(
        _normalize(obj), separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


def canonicalize_str(obj: Any) -> str:
    return canonicalize(obj).decode("utf-8")
