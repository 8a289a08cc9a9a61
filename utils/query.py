"""Reusable read patterns over the relational store.

Filters are built from small structured nodes (``Eq``, ``In``, ``Or`` ...) and
compiled to a parameterised ``WHERE`` fragment, so user input only ever travels
as bound parameters. Column names are checked against a strict identifier
pattern.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from utils.db import fetch_all, fetch_one
from utils.responses import not_found, validation_error

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

MAX_PAGE_SIZE = 100


def _column(name: str) -> str:
    if not _IDENT.match(name or ""):
        raise ValueError(f"invalid column name {name!r}")
    return name


class Node:
    def compile(self) -> Tuple[str, List[Any]]:
        raise NotImplementedError


@dataclass(frozen=True)
class Eq(Node):
    column: str
    value: Any

    def compile(self):
        return f"{_column(self.column)} = %s", [self.value]


@dataclass(frozen=True)
class Gte(Node):
    column: str
    value: Any

    def compile(self):
        return f"{_column(self.column)} >= %s", [self.value]


@dataclass(frozen=True)
class Lte(Node):
    column: str
    value: Any

    def compile(self):
        return f"{_column(self.column)} <= %s", [self.value]


class In(Node):
    def __init__(self, column: str, values: Iterable[Any]):
        self.column = column
        self.values = tuple(values)

    def __repr__(self) -> str:
        return f"In({self.column!r}, {self.values!r})"

    def compile(self):
        if not self.values:
            # Empty IN matches nothing
            return "1 = 0", []
        marks = ",".join(["%s"] * len(self.values))
        return f"{_column(self.column)} IN ({marks})", list(self.values)


@dataclass(frozen=True)
class IsNull(Node):
    column: str

    def compile(self):
        return f"{_column(self.column)} IS NULL", []


@dataclass(frozen=True)
class NotNull(Node):
    column: str

    def compile(self):
        return f"{_column(self.column)} IS NOT NULL", []


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class Contains(Node):
    """Case-insensitive substring match."""

    column: str
    term: str

    def compile(self):
        return f"LOWER({_column(self.column)}) LIKE %s", [f"%{_escape_like(self.term.lower())}%"]


class _Group(Node):
    joiner = ""

    def __init__(self, *nodes: Optional[Node]):
        self.nodes = [n for n in nodes if n is not None]

    def compile(self):
        if not self.nodes:
            return ("1 = 1" if self.joiner == "AND" else "1 = 0"), []
        parts: List[str] = []
        params: List[Any] = []
        for node in self.nodes:
            sql, p = node.compile()
            parts.append(f"({sql})" if isinstance(node, _Group) and len(node.nodes) > 1 else sql)
            params.extend(p)
        return f" {self.joiner} ".join(parts), params

    def __repr__(self) -> str:
        return f"{type(self).__name__}({', '.join(map(repr, self.nodes))})"


class And(_Group):
    joiner = "AND"


class Or(_Group):
    joiner = "OR"


def search_any(columns: Sequence[str], term: Optional[str]) -> Optional[Node]:
    """Disjunction of substring matches over the searchable columns; ``None`` when no term."""
    term = (term or "").strip()
    if not term:
        return None
    return Or(*[Contains(col, term) for col in columns])


def where_clause(node: Optional[Node]) -> Tuple[str, List[Any]]:
    if node is None:
        return "", []
    sql, params = node.compile()
    return f" WHERE {sql}", params


@dataclass(frozen=True)
class Page:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total: int) -> Dict[str, int]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": total,
            "totalPages": (total + self.limit - 1) // self.limit if self.limit else 0,
        }


def parse_page(args: Mapping[str, Any], default_limit: int = 20) -> Page:
    """Read ``page``/``limit`` query params. page >= 1, limit in [1, 100]."""
    errors = []
    try:
        page = int(args.get("page") or 1)
    except (TypeError, ValueError):
        page = 0
    try:
        limit = int(args.get("limit") or default_limit)
    except (TypeError, ValueError):
        limit = 0
    if page < 1:
        errors.append({"field": "page", "message": "page must be a positive integer"})
    if limit < 1 or limit > MAX_PAGE_SIZE:
        errors.append({"field": "limit", "message": f"limit must be between 1 and {MAX_PAGE_SIZE}"})
    if errors:
        raise validation_error(errors)
    return Page(page=page, limit=limit)


def paginate(
    conn,
    *,
    select: str,
    from_: str,
    where: Optional[Node],
    page: Page,
    order_by: str = "created_at DESC",
) -> Tuple[List[Dict[str, Any]], int]:
    """Count and slice ``[offset, offset+limit)`` under the same filters."""
    where_sql, params = where_clause(where)
    count_row = fetch_one(conn, f"SELECT COUNT(*) AS total FROM {from_}{where_sql}", params)
    total = int((count_row or {}).get("total") or 0)
    rows = fetch_all(
        conn,
        f"SELECT {select} FROM {from_}{where_sql} ORDER BY {order_by} LIMIT %s OFFSET %s",
        [*params, page.limit, page.offset],
    )
    return rows, total


def nest(row: Mapping[str, Any], fields: Mapping[str, str]) -> Optional[Dict[str, Any]]:
    """Project joined columns into a child object. Missing join target -> ``None``."""
    child = {out: row.get(col) for out, col in fields.items()}
    if all(v is None for v in child.values()):
        return None
    return child


def denormalize(
    row: Mapping[str, Any],
    parent: Mapping[str, str],
    children: Mapping[str, Mapping[str, str]],
) -> Dict[str, Any]:
    out = {key: row.get(col) for key, col in parent.items()}
    for name, fields in children.items():
        out[name] = nest(row, fields)
    return out


def resolve_latest_enrollment(conn, student_id) -> int:
    row = fetch_one(
        conn,
        "SELECT enrollment_id FROM student_enrollment WHERE student_id=%s "
        "ORDER BY enrollment_id DESC LIMIT 1",
        (student_id,),
    )
    if not row:
        raise not_found("Student not found")
    return int(row["enrollment_id"])


def enrollment_ids_for_student(conn, student_id) -> List[int]:
    rows = fetch_all(
        conn,
        "SELECT enrollment_id FROM student_enrollment WHERE student_id=%s ORDER BY enrollment_id DESC",
        (student_id,),
    )
    return [int(r["enrollment_id"]) for r in rows]


def classroom_for_enrollment(conn, enrollment_id) -> Optional[int]:
    row = fetch_one(
        conn,
        "SELECT classroom_id FROM student_enrollment WHERE enrollment_id=%s",
        (enrollment_id,),
    )
    if not row or row.get("classroom_id") is None:
        return None
    return int(row["classroom_id"])
