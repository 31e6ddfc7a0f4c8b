"""
Service-name grammar shared by the flow loader and the mock layer.

A function route is a non-empty, dotted token made of lower-case letters,
digits, '.', '_' and '-'. It may not start or end with a separator and may
not contain an empty segment ("..").
"""
from __future__ import annotations

import re

_ROUTE_PATTERN = re.compile(r"^[a-z0-9]+(?:[._-]+[a-z0-9]+)*$")


def valid_service_name(route: str) -> bool:
    """Return True when route is usable as a function or monitor route."""
    if not isinstance(route, str) or not route:
        return False
    if ".." in route:
        return False
    return bool(_ROUTE_PATTERN.match(route))
