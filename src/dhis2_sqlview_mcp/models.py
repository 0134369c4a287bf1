# DHIS2 SQL View MCP Server
# File: models.py
# Version: v1

"""Domain models used by the DHIS2 SQL View MCP server."""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


_PLACEHOLDER_RE = re.compile(r"\$\{(\w+)\}")


class ResourceKind(str, Enum):
    STATIC = "STATIC"
    MATERIALIZED = "MATERIALIZED"
    PARAMETERIZED = "PARAMETERIZED"

    @classmethod
    def from_dhis2_type(cls, value: Optional[str]) -> Optional["ResourceKind"]:
        """Map a DHIS2 sqlView ``type`` (VIEW, MATERIALIZED_VIEW, QUERY)."""
        mapping = {
            "VIEW": cls.STATIC,
            "MATERIALIZED_VIEW": cls.MATERIALIZED,
            "QUERY": cls.PARAMETERIZED,
        }
        if not value:
            return None
        return mapping.get(str(value).upper())


@dataclass(frozen=True)
class QueryResource:
    """A DHIS2 SQL view, read-only reference fetched from the platform."""

    id: str
    kind: Optional[ResourceKind] = None
    raw_definition: str = ""
    name: Optional[str] = None
    description: Optional[str] = None
    cache_strategy: Optional[str] = None

    # Raw JSON payload from the API, for debugging / advanced use.
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False, hash=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "QueryResource":
        resource_id = payload.get("id") or payload.get("uid") or ""
        return cls(
            id=str(resource_id),
            kind=ResourceKind.from_dhis2_type(payload.get("type")),
            raw_definition=str(payload.get("sqlQuery") or ""),
            name=payload.get("displayName") or payload.get("name"),
            description=payload.get("description"),
            cache_strategy=payload.get("cacheStrategy"),
            raw=dict(payload),
        )

    @property
    def declared_parameters(self) -> List[str]:
        """``${name}`` placeholders in the query text, first-seen order."""
        seen: List[str] = []
        for match in _PLACEHOLDER_RE.finditer(self.raw_definition or ""):
            name = match.group(1)
            if name not in seen:
                seen.append(name)
        return seen

    def missing_parameters(self, parameters: Optional[Mapping[str, Any]]) -> List[str]:
        supplied = parameters or {}
        return [
            name
            for name in self.declared_parameters
            if supplied.get(name) is None or str(supplied.get(name)) == ""
        ]


@dataclass
class ExecutionOptions:
    """Per-invocation options for executing a SQL view."""

    parameters: Dict[str, Any] = field(default_factory=dict)
    result_filters: Dict[str, str] = field(default_factory=dict)
    page_size: int = 1000
    max_rows: int = 10000
    use_cache: bool = True
    cache_ttl_minutes: int = 60
    output_format: str = "json"

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {self.page_size}")
        if self.max_rows < 1:
            raise ValueError(f"max_rows must be >= 1, got {self.max_rows}")


@dataclass
class CanonicalResult:
    """Normalised tabular result of one SQL view execution.

    Every record in ``rows`` has exactly the keys in ``columns``.
    ``error`` carries the failure that cut a partial result short; it is
    never persisted.
    """

    columns: List[str]
    rows: List[Dict[str, Any]]
    execution_time_ms: int = 0
    from_cache: bool = False
    batch_count: int = 0

    # True when pages were lost to an error after page 1.
    partial: bool = False
    cancelled: bool = False
    error: Optional[Exception] = field(default=None, compare=False, repr=False)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def copy(self) -> "CanonicalResult":
        return CanonicalResult(
            columns=list(self.columns),
            rows=copy.deepcopy(self.rows),
            execution_time_ms=self.execution_time_ms,
            from_cache=self.from_cache,
            batch_count=self.batch_count,
            partial=self.partial,
            cancelled=self.cancelled,
            error=self.error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": list(self.columns),
            "rows": copy.deepcopy(self.rows),
            "row_count": self.row_count,
            "execution_time_ms": self.execution_time_ms,
            "batch_count": self.batch_count,
            "partial": self.partial,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CanonicalResult":
        columns = [str(c) for c in data["columns"]]
        rows_in = data["rows"]
        if not isinstance(rows_in, list):
            raise ValueError("rows must be a list")

        rows: List[Dict[str, Any]] = []
        for row in rows_in:
            if not isinstance(row, dict) or set(row.keys()) != set(columns):
                raise ValueError("row keys do not match columns")
            rows.append(dict(row))

        return cls(
            columns=columns,
            rows=rows,
            execution_time_ms=int(data.get("execution_time_ms") or 0),
            batch_count=int(data.get("batch_count") or 0),
            partial=bool(data.get("partial", False)),
        )


@dataclass
class CacheEntry:
    """A stored canonical result plus its derivation key and expiry.

    Timestamps are epoch seconds. ``expires_at`` of None means the entry
    never expires. ``saved`` marks entries created by an explicit save,
    which live in their own namespace keyed by a random id.
    """

    key: str
    resource_id: str
    parameters: Dict[str, Any]
    result_filters: Dict[str, str]
    result: CanonicalResult
    created_at: float
    expires_at: Optional[float] = None
    label: Optional[str] = None
    notes: Optional[str] = None
    saved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "resource_id": self.resource_id,
            "parameters": dict(self.parameters),
            "result_filters": dict(self.result_filters),
            "result": self.result.to_dict(),
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "label": self.label,
            "notes": self.notes,
            "saved": self.saved,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CacheEntry":
        expires_at = data.get("expires_at")
        return cls(
            key=str(data["key"]),
            resource_id=str(data["resource_id"]),
            parameters=dict(data.get("parameters") or {}),
            result_filters=dict(data.get("result_filters") or {}),
            result=CanonicalResult.from_dict(data["result"]),
            created_at=float(data["created_at"]),
            expires_at=float(expires_at) if expires_at is not None else None,
            label=data.get("label"),
            notes=data.get("notes"),
            saved=bool(data.get("saved", False)),
        )

    def summary(self) -> Dict[str, Any]:
        """Entry description without the row payload."""
        return {
            "key": self.key,
            "resource_id": self.resource_id,
            "parameters": dict(self.parameters),
            "result_filters": dict(self.result_filters),
            "row_count": self.result.row_count,
            "batch_count": self.result.batch_count,
            "partial": self.result.partial,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "label": self.label,
            "notes": self.notes,
            "saved": self.saved,
        }
