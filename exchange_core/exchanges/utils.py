# -*- coding: utf-8 -*-
"""
Shared helpers for adapters: dict merging, safe field access, time formatting.
"""

import copy
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional


def deep_extend(*dicts: Optional[Mapping]) -> Dict:
    """
    Recursively merge mappings left to right (later wins).

    Nested dicts are merged, every other value is replaced. Inputs are not
    mutated.
    """
    result: Dict = {}
    for d in dicts:
        if not d:
            continue
        for key, value in d.items():
            if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
                result[key] = deep_extend(result[key], value)
            elif isinstance(value, Mapping):
                result[key] = deep_extend(value)
            else:
                result[key] = copy.copy(value)
    return result


def safe_value(d: Optional[Mapping], key, default=None):
    if d is None:
        return default
    value = d.get(key) if isinstance(d, Mapping) else None
    return default if value is None else value


def safe_string(d: Optional[Mapping], key, default: Optional[str] = None) -> Optional[str]:
    value = safe_value(d, key)
    return default if value is None else str(value)


def safe_float(d: Optional[Mapping], key, default: Optional[float] = None) -> Optional[float]:
    value = safe_value(d, key)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def safe_integer(d: Optional[Mapping], key, default: Optional[int] = None) -> Optional[int]:
    value = safe_value(d, key)
    if value is None:
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def iso8601(timestamp_ms: Optional[float]) -> Optional[str]:
    """Milliseconds since epoch -> '2018-09-02T08:31:38.645Z'"""
    if timestamp_ms is None:
        return None
    dt = datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{int(timestamp_ms) % 1000:03d}Z"


def title_case_header(name: str) -> str:
    """'content-type' -> 'Content-Type'"""
    return "-".join(word.capitalize() for word in name.split("-"))
