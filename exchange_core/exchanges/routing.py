# -*- coding: utf-8 -*-
"""
Static REST routing table

Each adapter declares its endpoints once:

    API = {
        "public": {"get": ["getorderbook", "getinstruments"]},
        "private": {"post": ["buy", "sell"]},
    }

build_routing_table() turns that into an explicit map
    "public_get_getorderbook" -> Route(path="getorderbook", category="public", http_method="GET")
consumed by BaseExchange.call(); nothing is generated at runtime.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping
from urllib.parse import urlencode

_PARAM_PATTERN = re.compile(r"\{([\w-]+)\}")
_SPLIT_PATTERN = re.compile(r"[^a-zA-Z0-9]")


@dataclass(frozen=True)
class Route:
    """One REST endpoint"""
    path: str
    category: str  # "public", "private", ...
    http_method: str  # "GET", "POST", ...


def operation_name(category: str, http_method: str, path: str) -> str:
    """
    Canonical operation name for an endpoint.

    Example:
        >>> operation_name("public", "get", "get_tradingview_chart_data")
        'public_get_get_tradingview_chart_data'
        >>> operation_name("private", "get", "order/{id}")
        'private_get_order_id'
    """
    parts = [p.lower() for p in _SPLIT_PATTERN.split(path.strip()) if p]
    return "_".join([category, http_method.lower()] + parts)


def build_routing_table(api: Mapping[str, Mapping[str, List[str]]]) -> Dict[str, Route]:
    """
    Args:
        api: {category: {http_method: [path, ...]}}

    Returns:
        {operation_name: Route}

    Raises:
        ValueError: two endpoints collapse onto the same operation name
    """
    table: Dict[str, Route] = {}
    for category, methods in (api or {}).items():
        for http_method, paths in methods.items():
            for path in paths:
                path = path.strip()
                name = operation_name(category, http_method, path)
                route = Route(path=path, category=category, http_method=http_method.upper())
                if name in table and table[name] != route:
                    raise ValueError(f"Duplicate operation name {name}: {table[name]} vs {route}")
                table[name] = route
    return table


def extract_params(path: str) -> List[str]:
    """Placeholder names in a path template ('order/{id}' -> ['id'])"""
    return _PARAM_PATTERN.findall(path)


def implode_params(path: str, params: Mapping[str, Any]) -> str:
    """Substitute {name} placeholders present in params; unknown ones are kept as-is"""
    def _replace(match):
        key = match.group(1)
        return str(params[key]) if key in params else match.group(0)
    return _PARAM_PATTERN.sub(_replace, path)


def omit(params: Mapping[str, Any], keys) -> Dict[str, Any]:
    keys = set(keys)
    return {k: v for k, v in params.items() if k not in keys}


def url_with_query(path: str, params: Mapping[str, Any]) -> str:
    """Implode placeholders, then append remaining params as a query string"""
    result = implode_params(path, params)
    query = omit(params, extract_params(path))
    if query:
        result += "?" + urlencode(query)
    return result
