"""
Fast JSON utilities backed by orjson.

orjson refuses integers wider than 64 bits, and auction prices are Q96
fixed-point values (and amounts are wei), so every big integer is rendered
as a decimal string before encoding.

Usage:
    from ccabot.core.json_utils import dumps, loads

    log.info(dumps({"event": "bid_submitted", "amount": 2 * 10**18}))
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import orjson

_INT64_MIN = -(1 << 63)
_UINT64_MAX = (1 << 64) - 1


def _coerce(obj: Any) -> Any:
    if isinstance(obj, bool) or obj is None:
        return obj
    if isinstance(obj, int):
        if _INT64_MIN <= obj <= _UINT64_MAX:
            return obj
        return str(obj)
    if isinstance(obj, Enum):
        return obj.name
    if isinstance(obj, (bytes, bytearray)):
        return "0x" + bytes(obj).hex()
    if isinstance(obj, dict):
        return {str(k): _coerce(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [_coerce(v) for v in obj]
    return obj


def dumps(obj: Any) -> str:
    """JSON encode to string."""
    return orjson.dumps(_coerce(obj), default=str).decode("utf-8")


def dumps_bytes(obj: Any, pretty: bool = False) -> bytes:
    """JSON encode to bytes, optionally indented for files meant for humans."""
    option = orjson.OPT_INDENT_2 if pretty else 0
    return orjson.dumps(_coerce(obj), default=str, option=option)


def loads(s: str | bytes) -> Any:
    """JSON decode."""
    return orjson.loads(s)
