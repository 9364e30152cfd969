"""Turn SQL view response bodies into ``CanonicalTable``.

DHIS2 returns SQL view data in several shapes depending on version and
endpoint.  Detection is an ordered list of explicit checks; the first shape
that matches wins:

1. ``{"listGrid": {"headers": [...], "rows": [[...]]}}``
2. ``{"headers": [...], "rows": [[...]]}``
3. ``{"data": [{...}, ...]}``
4. ``[{...}, ...]``

Shapes 3 and 4 are row-object shapes and are only tried after the grid
shapes.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import Any

from dhis2_sqlview.errors import UnrecognizedResponseShape
from dhis2_sqlview.models import CanonicalTable, Scalar


class ResponseShape(StrEnum):
    """Recognized response layouts, in detection order."""

    LIST_GRID = "listGrid"
    GRID = "grid"
    WRAPPED_OBJECTS = "data"
    BARE_OBJECTS = "array"


def _is_grid(candidate: Any) -> bool:
    if not isinstance(candidate, Mapping):
        return False
    rows = candidate.get("rows")
    return isinstance(candidate.get("headers"), list) and (rows is None or isinstance(rows, list))


def _is_object_list(candidate: Any) -> bool:
    return isinstance(candidate, list) and all(isinstance(item, Mapping) for item in candidate)


def _describe_keys(raw: Any) -> list[str]:
    if isinstance(raw, Mapping):
        return sorted(str(key) for key in raw)
    return [f"<{type(raw).__name__}>"]


def detect_shape(raw: Any) -> ResponseShape | None:
    """Return which known shape ``raw`` has, or ``None``."""
    if isinstance(raw, Mapping):
        if _is_grid(raw.get("listGrid")):
            return ResponseShape.LIST_GRID
        if _is_grid(raw):
            return ResponseShape.GRID
        if _is_object_list(raw.get("data")):
            return ResponseShape.WRAPPED_OBJECTS
        return None
    if _is_object_list(raw):
        return ResponseShape.BARE_OBJECTS
    return None


def _cell(value: Any) -> Scalar:
    if value is None or isinstance(value, str | int | float | bool):
        return value
    return json.dumps(value, sort_keys=True)


def _header_names(headers: Sequence[Any]) -> list[str]:
    names: list[str] = []
    seen: set[str] = set()
    for index, header in enumerate(headers):
        if isinstance(header, Mapping):
            name = header.get("name") or header.get("column")
        elif isinstance(header, str):
            name = header
        else:
            name = None
        name = str(name) if name else f"col_{index}"
        if name in seen:
            suffix = index
            while f"{name}_{suffix}" in seen:
                suffix += 1
            name = f"{name}_{suffix}"
        seen.add(name)
        names.append(name)
    return names


def _from_grid(grid: Mapping[str, Any]) -> CanonicalTable:
    headers = _header_names(grid["headers"])
    rows = []
    for raw_row in grid.get("rows") or []:
        values = list(raw_row) if isinstance(raw_row, Sequence) and not isinstance(raw_row, str) else [raw_row]
        values += [None] * (len(headers) - len(values))
        rows.append({name: _cell(value) for name, value in zip(headers, values, strict=False)})
    return CanonicalTable(headers=tuple(headers), rows=tuple(rows))


def _from_objects(items: Sequence[Mapping[str, Any]]) -> CanonicalTable:
    headers: dict[str, None] = {}
    for item in items:
        for key in item:
            headers.setdefault(str(key), None)
    names = list(headers)
    rows = [{name: _cell(item.get(name)) for name in names} for item in items]
    return CanonicalTable(headers=tuple(names), rows=tuple(rows))


def normalize(raw: Any, page: int | None = None) -> CanonicalTable:
    """Normalize one response body.

    Args:
        raw: Decoded JSON body.
        page: Page number, only used for error reporting.

    Returns:
        CanonicalTable with headers in declared (or first-seen) order and
        missing cells filled with ``None``.

    Raises:
        UnrecognizedResponseShape: If the body matches no known shape.
    """
    shape = detect_shape(raw)
    if shape is ResponseShape.LIST_GRID:
        return _from_grid(raw["listGrid"])
    if shape is ResponseShape.GRID:
        return _from_grid(raw)
    if shape is ResponseShape.WRAPPED_OBJECTS:
        return _from_objects(raw["data"])
    if shape is ResponseShape.BARE_OBJECTS:
        return _from_objects(raw)
    raise UnrecognizedResponseShape(_describe_keys(raw), page=page)
