"""
Evidence snapshot: point-in-time measurements of data reality.

A snapshot holds null counts, orphan counts and duplicate counts keyed by
target identity. Absence of an entry means "no evidence", never "zero
violations". Snapshots are read-only once built and safe to share between
worker threads.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .errors import EvidenceFormatError
from .model import ColumnKey, RelationshipKey, Target, UniqueKey


# --------------------------------------------------------------------------------------
# Evidence records
# --------------------------------------------------------------------------------------
@dataclass(frozen=True)
class ColumnEvidence:
    schema: str
    table: str
    column: str
    row_count: Optional[int] = None
    null_count: Optional[int] = None
    physical_nullable: Optional[bool] = None
    # False when the physical catalog reports the column absent.
    exists: bool = True

    @property
    def identity(self) -> Tuple[str, ...]:
        return ColumnKey(self.schema, self.table, self.column).identity


@dataclass(frozen=True)
class ForeignKeyEvidence:
    schema: str
    table: str
    columns: Tuple[str, ...]
    ref_schema: str
    ref_table: str
    orphan_count: Optional[int] = None
    has_constraint: bool = False
    row_count: Optional[int] = None

    @property
    def identity(self) -> Tuple[str, ...]:
        return RelationshipKey(self.schema, self.table, self.columns, self.ref_schema, self.ref_table).identity


@dataclass(frozen=True)
class UniqueEvidence:
    schema: str
    table: str
    columns: Tuple[str, ...]
    duplicate_groups: Optional[int] = None
    duplicate_rows: Optional[int] = None
    physical_unique: bool = False
    row_count: Optional[int] = None

    @property
    def identity(self) -> Tuple[str, ...]:
        return UniqueKey(self.schema, self.table, self.columns, "").identity


@dataclass(frozen=True)
class EvidenceCounts:
    """Raw counts a decision was derived from; unknown counts stay None."""

    row_count: Optional[int] = None
    null_count: Optional[int] = None
    orphan_count: Optional[int] = None
    duplicate_groups: Optional[int] = None
    duplicate_rows: Optional[int] = None

    def to_dict(self) -> Dict[str, int]:
        fields = ("row_count", "null_count", "orphan_count", "duplicate_groups", "duplicate_rows")
        return {name: getattr(self, name) for name in fields if getattr(self, name) is not None}


# --------------------------------------------------------------------------------------
# Snapshot
# --------------------------------------------------------------------------------------
class EvidenceSnapshot:
    """Three read-only maps of evidence keyed by case-folded target identity."""

    def __init__(
        self,
        columns: Iterable[ColumnEvidence] = (),
        foreign_keys: Iterable[ForeignKeyEvidence] = (),
        uniques: Iterable[UniqueEvidence] = (),
        captured_at: Optional[str] = None,
    ) -> None:
        self.captured_at = captured_at
        self._columns = _index(columns, "column")
        self._foreign_keys = _index(foreign_keys, "foreign key")
        self._uniques = _index(uniques, "unique candidate")

    def column(self, key: ColumnKey) -> Optional[ColumnEvidence]:
        return self._columns.get(key.identity)

    def column_at(self, schema: str, table: str, column: str) -> Optional[ColumnEvidence]:
        return self._columns.get(ColumnKey(schema, table, column).identity)

    def foreign_key(self, key: RelationshipKey) -> Optional[ForeignKeyEvidence]:
        return self._foreign_keys.get(key.identity)

    def unique(self, key: UniqueKey) -> Optional[UniqueEvidence]:
        return self._uniques.get(key.identity)

    def __len__(self) -> int:
        return len(self._columns) + len(self._foreign_keys) + len(self._uniques)

    def counts(self) -> Dict[str, int]:
        return {
            "columns": len(self._columns),
            "foreign_keys": len(self._foreign_keys),
            "unique_candidates": len(self._uniques),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "captured_at": self.captured_at,
            "columns": [vars(c) for c in _ordered(self._columns)],
            "foreign_keys": [dict(vars(f), columns=list(f.columns)) for f in _ordered(self._foreign_keys)],
            "unique_candidates": [dict(vars(u), columns=list(u.columns)) for u in _ordered(self._uniques)],
        }

    @classmethod
    def from_dict(cls, document: Mapping[str, Any]) -> "EvidenceSnapshot":
        if not isinstance(document, Mapping):
            raise EvidenceFormatError("Evidence document must be a JSON object.")
        columns = [_column_from_dict(raw) for raw in _section(document, "columns")]
        fks = [_fk_from_dict(raw) for raw in _section(document, "foreign_keys")]
        uniques = [_unique_from_dict(raw) for raw in _section(document, "unique_candidates")]
        return cls(columns, fks, uniques, captured_at=document.get("captured_at"))


def _index(records: Iterable[Any], label: str) -> Dict[Tuple[str, ...], Any]:
    indexed: Dict[Tuple[str, ...], Any] = {}
    for record in records:
        if record.identity in indexed:
            raise EvidenceFormatError(f"Duplicate {label} evidence for {'.'.join(record.identity)}.")
        indexed[record.identity] = record
    return indexed


def _ordered(indexed: Mapping[Tuple[str, ...], Any]) -> Sequence[Any]:
    return [indexed[k] for k in sorted(indexed)]


# --------------------------------------------------------------------------------------
# Providers
# --------------------------------------------------------------------------------------
class EvidenceProvider:
    """Supplies the evidence snapshot for a set of targets, once per run."""

    def get_snapshot(self, targets: Sequence[Target]) -> EvidenceSnapshot:
        raise NotImplementedError


class SnapshotFileProvider(EvidenceProvider):
    """Reads a previously captured snapshot from a JSON document."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def get_snapshot(self, targets: Sequence[Target]) -> EvidenceSnapshot:
        try:
            document = json.loads(self.path.read_text())
        except OSError as exc:
            raise EvidenceFormatError(f"Cannot read evidence file {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise EvidenceFormatError(f"Invalid evidence JSON in {self.path}: {exc}") from exc
        return EvidenceSnapshot.from_dict(document)


# --------------------------------------------------------------------------------------
# JSON parsing helpers
# --------------------------------------------------------------------------------------
def _section(document: Mapping[str, Any], name: str) -> Sequence[Mapping[str, Any]]:
    section = document.get(name) or []
    if not isinstance(section, list) or not all(isinstance(item, Mapping) for item in section):
        raise EvidenceFormatError(f"Evidence section '{name}' must be an array of objects.")
    return section


def _text(raw: Mapping[str, Any], field: str, where: str) -> str:
    value = raw.get(field)
    if not isinstance(value, str) or not value:
        raise EvidenceFormatError(f"{where} evidence is missing '{field}'.")
    return value


def _count(raw: Mapping[str, Any], field: str, where: str) -> Optional[int]:
    value = raw.get(field)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise EvidenceFormatError(f"{where} evidence field '{field}' must be a non-negative integer, got {value!r}.")
    return value


def _columns(raw: Mapping[str, Any], where: str) -> Tuple[str, ...]:
    columns = raw.get("columns")
    if not isinstance(columns, list) or not columns or not all(isinstance(c, str) for c in columns):
        raise EvidenceFormatError(f"{where} evidence must list its columns.")
    return tuple(columns)


def _column_from_dict(raw: Mapping[str, Any]) -> ColumnEvidence:
    where = "Column"
    row_count = _count(raw, "row_count", where)
    null_count = _count(raw, "null_count", where)
    if row_count is not None and null_count is not None and null_count > row_count:
        raise EvidenceFormatError(
            f"Column evidence for {raw.get('table')}.{raw.get('column')} reports more nulls than rows."
        )
    nullable = raw.get("physical_nullable")
    return ColumnEvidence(
        schema=raw.get("schema") or "dbo",
        table=_text(raw, "table", where),
        column=_text(raw, "column", where),
        row_count=row_count,
        null_count=null_count,
        physical_nullable=None if nullable is None else bool(nullable),
        exists=bool(raw.get("exists", True)),
    )


def _fk_from_dict(raw: Mapping[str, Any]) -> ForeignKeyEvidence:
    where = "Foreign key"
    return ForeignKeyEvidence(
        schema=raw.get("schema") or "dbo",
        table=_text(raw, "table", where),
        columns=_columns(raw, where),
        ref_schema=raw.get("ref_schema") or "dbo",
        ref_table=_text(raw, "ref_table", where),
        orphan_count=_count(raw, "orphan_count", where),
        has_constraint=bool(raw.get("has_constraint", False)),
        row_count=_count(raw, "row_count", where),
    )


def _unique_from_dict(raw: Mapping[str, Any]) -> UniqueEvidence:
    where = "Unique candidate"
    groups = _count(raw, "duplicate_groups", where)
    rows = _count(raw, "duplicate_rows", where)
    if groups is not None and rows is not None and rows < groups * 2:
        raise EvidenceFormatError(
            f"Unique evidence for {raw.get('table')} reports {rows} duplicate rows across {groups} groups."
        )
    return UniqueEvidence(
        schema=raw.get("schema") or "dbo",
        table=_text(raw, "table", where),
        columns=_columns(raw, where),
        duplicate_groups=groups,
        duplicate_rows=rows,
        physical_unique=bool(raw.get("physical_unique", False)),
        row_count=_count(raw, "row_count", where),
    )
