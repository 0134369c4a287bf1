# DHIS2 SQL View MCP Server
# File: transform.py
# Version: v1

"""Client-side helpers over canonical rows: filter, sort, page, profile, CSV."""

from __future__ import annotations

import csv
import io
import math
import re
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

Row = Dict[str, Any]

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_BOOL_TOKENS = {"true", "false", "1", "0", "yes", "no"}


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def _matches(cell: Any, expr: str) -> bool:
    """Evaluate one filter expression against one cell.

    Supported: ``>=n``, ``<=n``, ``>n``, ``<n``, ``=text``, ``!=text``;
    anything else is a case-insensitive substring match. ``null`` or an
    empty expression matches missing values.
    """
    expr = expr.strip().lower()

    if cell is None:
        return expr in {"", "null"}

    text = str(cell).lower()

    for op in (">=", "<=", ">", "<"):
        if expr.startswith(op):
            bound = _to_float(expr[len(op):])
            value = _to_float(cell)
            if bound is None or value is None:
                return False
            if op == ">=":
                return value >= bound
            if op == "<=":
                return value <= bound
            if op == ">":
                return value > bound
            return value < bound

    if expr.startswith("!="):
        return text != expr[2:]
    if expr.startswith("="):
        return text == expr[1:]

    return expr in text


def apply_filters(rows: Sequence[Row], filters: Optional[Mapping[str, str]]) -> List[Row]:
    """Keep rows matching every column filter."""
    if not filters:
        return list(rows)
    return [
        row
        for row in rows
        if all(_matches(row.get(column), str(expr)) for column, expr in filters.items())
    ]


def sort_rows(rows: Sequence[Row], column: Optional[str], descending: bool = False) -> List[Row]:
    """Numeric-aware sort; missing values sort first ascending, last descending."""
    if not column:
        return list(rows)

    def sort_key(row: Row):
        value = row.get(column)
        if value is None:
            return (0, 0, 0.0, "")
        number = _to_float(value)
        if number is not None:
            return (1, 0, number, "")
        return (1, 1, 0.0, str(value).lower())

    return sorted(rows, key=sort_key, reverse=descending)


def paginate_rows(rows: Sequence[Row], page: int = 1, page_size: int = 50) -> Dict[str, Any]:
    page_size = max(int(page_size), 1)
    page = max(int(page), 1)
    total = len(rows)
    total_pages = math.ceil(total / page_size) if total else 0
    start = (page - 1) * page_size

    return {
        "rows": list(rows[start:start + page_size]),
        "pagination": {
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def _parse_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value)
    if not _DATE_RE.match(text):
        return None
    try:
        # Drop tz so naive and aware values stay comparable.
        return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        try:
            return datetime.strptime(text[:10], "%Y-%m-%d")
        except ValueError:
            return None


def summarize_columns(rows: Sequence[Row], columns: Sequence[str]) -> Dict[str, Dict[str, Any]]:
    """Per-column profile: inferred type, distinct/null counts, min/max/average.

    A column is numeric when more than 80% of its non-null values parse as
    numbers, boolean when every value is a boolean token, date when any
    value looks like an ISO date; otherwise text.
    """
    summary: Dict[str, Dict[str, Any]] = {}

    for column in columns:
        values = [row.get(column) for row in rows]
        non_null = [v for v in values if v is not None and v != ""]

        distinct = {str(v) for v in non_null}
        info: Dict[str, Any] = {
            "type": "text",
            "unique_values": len(distinct),
            "null_count": len(values) - len(non_null),
            "min": None,
            "max": None,
            "average": None,
        }

        if non_null:
            numbers = [n for n in (_to_float(v) for v in non_null) if n is not None]
            if numbers and len(numbers) / len(non_null) > 0.8:
                info["type"] = "numeric"
                info["min"] = min(numbers)
                info["max"] = max(numbers)
                info["average"] = sum(numbers) / len(numbers)
            elif all(isinstance(v, bool) or str(v).lower() in _BOOL_TOKENS for v in non_null):
                info["type"] = "boolean"
            else:
                dates = [d for d in (_parse_date(v) for v in non_null) if d is not None]
                if dates:
                    info["type"] = "date"
                    info["min"] = min(dates).isoformat()
                    info["max"] = max(dates).isoformat()

        summary[column] = info

    return summary


def rows_to_csv(columns: Sequence[str], rows: Sequence[Row]) -> str:
    """Render rows as CSV text with a header line."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(list(columns))
    for row in rows:
        writer.writerow(["" if row.get(c) is None else row.get(c) for c in columns])
    return buffer.getvalue()
