# DHIS2 SQL View MCP Server
# File: normalize.py
# Version: v1

"""Normalise SQL view response payloads into columns + records.

DHIS2 returns SQL view data in several envelope shapes depending on version
and deployment:

- ``{"listGrid": {"headers": [...], "rows": [[...]]}}`` (also ``grid``)
- ``{"headers": [...], "rows": [[...]]}``
- ``[{...}, {...}]``
- ``{"data": [...]}``

Each shape is a small function returning a NormalizedPage or None; they are
tried in order. A payload no variant recognises degrades to an empty page
and is logged, never raised: a zero-row page is a valid outcome.

Grid-style headers keep their order and repeated names get a numeric suffix
(``name``, ``name_1``). Record-style pages have no column order of their own,
so their columns are the first record's keys, sorted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class NormalizedPage:
    columns: List[str]
    rows: List[Dict[str, Any]]
    shape: str


def header_name(header: Any, index: int) -> str:
    """Column name for one header: name, column, displayName, else synthetic."""
    if isinstance(header, str) and header:
        return header
    if isinstance(header, dict):
        for attr in ("name", "column", "displayName"):
            value = header.get(attr)
            if value:
                return str(value)
    return f"Column_{index}"


def _unique_names(names: Sequence[str]) -> List[str]:
    """Suffix repeated names (``name``, ``name_1``, ...) so no cell is lost."""
    taken = set(names)
    seen: set = set()
    unique: List[str] = []
    for name in names:
        if name not in seen:
            seen.add(name)
            unique.append(name)
            continue
        n = 1
        while f"{name}_{n}" in taken or f"{name}_{n}" in seen:
            n += 1
        candidate = f"{name}_{n}"
        seen.add(candidate)
        unique.append(candidate)
    return unique


def _header_names(headers: Sequence[Any], raw_rows: Sequence[Any] = ()) -> List[str]:
    names = [header_name(h, i) for i, h in enumerate(headers)]
    if not names and raw_rows and isinstance(raw_rows[0], (list, tuple)):
        names = [f"Column_{i}" for i in range(len(raw_rows[0]))]
    # Joins commonly return two columns with the same name.
    return _unique_names(names)


def _grid_rows(columns: List[str], raw_rows: Sequence[Any]) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    width = len(columns)
    for raw in raw_rows:
        if isinstance(raw, dict):
            rows.append({col: raw.get(col) for col in columns})
            continue
        if not isinstance(raw, (list, tuple)):
            continue
        cells = list(raw[:width]) + [None] * max(0, width - len(raw))
        rows.append(dict(zip(columns, cells)))
    return rows


def project_rows(rows: Sequence[Dict[str, Any]], columns: Sequence[str]) -> List[Dict[str, Any]]:
    """Re-key records onto a fixed column list (missing keys become None)."""
    return [{col: row.get(col) for col in columns} for row in rows]


def _records_page(records: Sequence[Any], shape: str) -> NormalizedPage:
    dicts = [{str(k): v for k, v in r.items()} for r in records if isinstance(r, dict)]
    if not dicts:
        return NormalizedPage(columns=[], rows=[], shape=shape)

    # Records carry no column order of their own; sort the first record's keys.
    columns = sorted(dicts[0].keys())
    return NormalizedPage(columns=columns, rows=project_rows(dicts, columns), shape=shape)


def _from_grid(payload: Any) -> Optional[NormalizedPage]:
    if not isinstance(payload, dict):
        return None

    grid = payload.get("listGrid")
    if not isinstance(grid, dict):
        grid = payload.get("grid")
    if not isinstance(grid, dict):
        return None

    headers = grid.get("headers") or []
    raw_rows = grid.get("rows") or []
    if not isinstance(headers, list) or not isinstance(raw_rows, list):
        return None

    columns = _header_names(headers, raw_rows)
    if not columns and raw_rows and isinstance(raw_rows[0], dict):
        return _records_page(raw_rows, shape="grid")

    return NormalizedPage(columns=columns, rows=_grid_rows(columns, raw_rows), shape="grid")


def _from_flat(payload: Any) -> Optional[NormalizedPage]:
    if not isinstance(payload, dict):
        return None

    raw_rows = payload.get("rows")
    if not isinstance(raw_rows, list):
        return None

    headers = payload.get("headers")
    if not isinstance(headers, list):
        headers = []

    columns = _header_names(headers, raw_rows)
    if not columns and raw_rows and isinstance(raw_rows[0], dict):
        return _records_page(raw_rows, shape="flat")

    return NormalizedPage(columns=columns, rows=_grid_rows(columns, raw_rows), shape="flat")


def _from_array(payload: Any) -> Optional[NormalizedPage]:
    if not isinstance(payload, list):
        return None
    return _records_page(payload, shape="array")


def _from_wrapped(payload: Any) -> Optional[NormalizedPage]:
    if not isinstance(payload, dict):
        return None

    data = payload.get("data")
    if not isinstance(data, list):
        return None

    headers = payload.get("headers")
    if isinstance(headers, list) and headers and any(isinstance(r, (list, tuple)) for r in data):
        columns = _header_names(headers)
        return NormalizedPage(columns=columns, rows=_grid_rows(columns, data), shape="wrapped")

    return _records_page(data, shape="wrapped")


def _from_object(payload: Any) -> Optional[NormalizedPage]:
    if not isinstance(payload, dict) or not payload:
        return None

    record = {str(k): v for k, v in payload.items()}
    columns = sorted(record.keys())
    return NormalizedPage(columns=columns, rows=project_rows([record], columns), shape="object")


_VARIANTS: List[Callable[[Any], Optional[NormalizedPage]]] = [
    _from_grid,
    _from_flat,
    _from_array,
    _from_wrapped,
    _from_object,
]


def normalize(payload: Any) -> NormalizedPage:
    """Convert one raw payload into a NormalizedPage.

    Never raises; unknown or empty payloads produce an empty page.
    """
    for variant in _VARIANTS:
        page = variant(payload)
        if page is not None:
            return page

    if payload not in (None, {}, [], ""):
        logger.warning(
            "Unrecognised SQL view payload shape (%s); treating as empty page.",
            type(payload).__name__,
        )

    return NormalizedPage(columns=[], rows=[], shape="empty")
