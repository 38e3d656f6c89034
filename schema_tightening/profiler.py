"""
SQL Server evidence provider.

Reads physical catalog facts (column nullability, enforced foreign keys,
unique indexes) and runs data probes (null counts, orphan counts, duplicate
groups) for every target of a run. Identifiers are bracket-quoted and every
value is bound as a parameter. A failing probe is reported as a warning and
leaves the entry out of the snapshot, which the engine reads as missing
evidence.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError

from .evidence import ColumnEvidence, EvidenceProvider, EvidenceSnapshot, ForeignKeyEvidence, UniqueEvidence
from .model import ColumnKey, ConstraintKind, RelationshipKey, Target, UniqueKey


# --------------------------------------------------------------------------------------
# Utility helpers
# --------------------------------------------------------------------------------------
def quote_ident(name: str) -> str:
    """Safely quote SQL Server identifiers using bracket escaping.

    Any embedded closing bracket is escaped by doubling it (`]` -> `]]`).
    """
    escaped = name.replace("]", "]]")
    return f"[{escaped}]"


def qualified(schema: str, table: str) -> str:
    return f"{quote_ident(schema)}.{quote_ident(table)}"


# --------------------------------------------------------------------------------------
# SQL Server client
# --------------------------------------------------------------------------------------
class SqlServerClient:
    """Thin wrapper around SQLAlchemy with context-managed, parameterised execution."""

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None) -> None:
        if engine is None:
            if not url:
                raise ValueError("SqlServerClient needs either a SQLAlchemy URL or an engine.")
            engine = create_engine(url)
        self.engine: Engine = engine

    def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Row]:
        """Execute a statement and materialise its rows before the connection closes.

        Identifiers must be bracket-quoted by the caller; values go through params.
        """
        with self.engine.connect() as conn:
            return list(conn.execute(text(sql), params or {}).fetchall())

    def fetch_one(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[Row]:
        with self.engine.connect() as conn:
            return conn.execute(text(sql), params or {}).fetchone()

    def fetch_value(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Any:
        row = self.fetch_one(sql, params)
        return None if row is None else row[0]


# --------------------------------------------------------------------------------------
# Catalog reader
# --------------------------------------------------------------------------------------
class CatalogReader:
    """Physical catalog facts from the SQL Server system views."""

    def __init__(self, client: SqlServerClient) -> None:
        self.client = client

    def column_nullability(self, schema: str, table: str) -> Dict[str, bool]:
        """Case-folded column name -> is_nullable; empty when the table does not exist."""
        sql = """
        SELECT c.name, c.is_nullable
        FROM sys.columns c
        WHERE c.object_id = OBJECT_ID(:fqname)
        ORDER BY c.column_id
        """
        rows = self.client.fetch_all(sql, {"fqname": f"{schema}.{table}"})
        return {r[0].casefold(): bool(r[1]) for r in rows}

    def foreign_keys(self, schema: str, table: str) -> Set[Tuple[str, ...]]:
        """Enforced foreign keys as case-folded (columns..., '->', ref_schema, ref_table) tuples."""
        sql = """
        SELECT fk.name, pc.name AS column_name, rs.name AS ref_schema, rt.name AS ref_table
        FROM sys.foreign_keys fk
        JOIN sys.foreign_key_columns fkc ON fkc.constraint_object_id = fk.object_id
        JOIN sys.columns pc ON pc.object_id = fkc.parent_object_id AND pc.column_id = fkc.parent_column_id
        JOIN sys.tables rt ON rt.object_id = fkc.referenced_object_id
        JOIN sys.schemas rs ON rs.schema_id = rt.schema_id
        WHERE fk.parent_object_id = OBJECT_ID(:fqname)
        ORDER BY fk.name, fkc.constraint_column_id
        """
        grouped: Dict[str, List[Any]] = defaultdict(list)
        for name, column, ref_schema, ref_table in self.client.fetch_all(sql, {"fqname": f"{schema}.{table}"}):
            grouped[name].append((column, ref_schema, ref_table))
        found: Set[Tuple[str, ...]] = set()
        for parts in grouped.values():
            ref_schema, ref_table = parts[0][1], parts[0][2]
            found.add(
                (*(p[0].casefold() for p in parts), "->", ref_schema.casefold(), ref_table.casefold())
            )
        return found

    def unique_column_sets(self, schema: str, table: str) -> Set[Tuple[str, ...]]:
        """Key column lists of unique indexes and constraints, case-folded and sorted."""
        sql = """
        SELECT i.name, c.name AS column_name
        FROM sys.indexes i
        JOIN sys.index_columns ic ON ic.object_id = i.object_id AND ic.index_id = i.index_id
        JOIN sys.columns c ON c.object_id = ic.object_id AND c.column_id = ic.column_id
        WHERE i.object_id = OBJECT_ID(:fqname) AND i.is_unique = 1 AND ic.is_included_column = 0
        ORDER BY i.name, ic.key_ordinal
        """
        grouped: Dict[str, List[str]] = defaultdict(list)
        for name, column in self.client.fetch_all(sql, {"fqname": f"{schema}.{table}"}):
            grouped[name].append(column.casefold())
        return {tuple(sorted(cols)) for cols in grouped.values()}


# --------------------------------------------------------------------------------------
# Evidence provider
# --------------------------------------------------------------------------------------
class SqlServerEvidenceProvider(EvidenceProvider):
    """Profiles a live database once per run and returns a read-only snapshot."""

    def __init__(self, client: SqlServerClient, catalog: Optional[CatalogReader] = None) -> None:
        self.client = client
        self.catalog = catalog or CatalogReader(client)
        self._columns: Dict[Tuple[str, str], Dict[str, bool]] = {}
        self._row_counts: Dict[Tuple[str, str], Optional[int]] = {}

    def get_snapshot(self, targets: Sequence[Target]) -> EvidenceSnapshot:
        columns: List[ColumnEvidence] = []
        fks: List[ForeignKeyEvidence] = []
        uniques: List[UniqueEvidence] = []
        print(f"[INFO] Profiling {len(targets)} targets")
        for target in targets:
            try:
                if target.kind is ConstraintKind.NULLABILITY:
                    evidence = self._column_evidence(target.key)
                    if evidence is not None:
                        columns.append(evidence)
                elif target.kind is ConstraintKind.FOREIGN_KEY:
                    evidence = self._foreign_key_evidence(target)
                    if evidence is not None:
                        fks.append(evidence)
                else:
                    evidence = self._unique_evidence(target.key)
                    if evidence is not None:
                        uniques.append(evidence)
            except SQLAlchemyError as exc:
                print(f"[WARN] Profiling failed for {target.key}: {exc}")
        captured_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return EvidenceSnapshot(columns, fks, uniques, captured_at=captured_at)

    # ----------------------------------------------------------------------------------
    # Cached per-table facts
    # ----------------------------------------------------------------------------------
    def _table_columns(self, schema: str, table: str) -> Dict[str, bool]:
        key = (schema.casefold(), table.casefold())
        if key not in self._columns:
            self._columns[key] = self.catalog.column_nullability(schema, table)
        return self._columns[key]

    def _row_count(self, schema: str, table: str) -> int:
        key = (schema.casefold(), table.casefold())
        if key not in self._row_counts:
            self._row_counts[key] = int(self.client.fetch_value(f"SELECT COUNT(*) FROM {qualified(schema, table)}"))
        return self._row_counts[key]

    # ----------------------------------------------------------------------------------
    # Probes
    # ----------------------------------------------------------------------------------
    def _column_evidence(self, key: ColumnKey) -> ColumnEvidence:
        catalog_columns = self._table_columns(key.schema, key.table)
        nullable = catalog_columns.get(key.column.casefold())
        if nullable is None:
            return ColumnEvidence(key.schema, key.table, key.column, exists=False)
        rows = self._row_count(key.schema, key.table)
        column = quote_ident(key.column)
        nulls = self.client.fetch_value(f"SELECT COUNT(*) FROM {qualified(key.schema, key.table)} WHERE {column} IS NULL")
        return ColumnEvidence(key.schema, key.table, key.column, rows, int(nulls), physical_nullable=nullable)

    def _foreign_key_evidence(self, target: Target) -> Optional[ForeignKeyEvidence]:
        key: RelationshipKey = target.key
        parent = target.parent
        if parent is None or not parent.identifier_columns:
            return None
        column = key.columns[0]
        if column.casefold() not in self._table_columns(key.schema, key.table):
            return None
        parent_key = parent.identifier_columns[0]
        if parent_key.casefold() not in self._table_columns(parent.schema, parent.table):
            print(f"[WARN] Parent key {parent.schema}.{parent.table}.{parent_key} not found; skipping {key}")
            return None

        has_constraint = key.identity[2:] in self.catalog.foreign_keys(key.schema, key.table)
        orphan_sql = f"""
        SELECT COUNT(*)
        FROM {qualified(key.schema, key.table)} AS c
        WHERE c.{quote_ident(column)} IS NOT NULL
          AND NOT EXISTS (
            SELECT 1 FROM {qualified(parent.schema, parent.table)} AS p
            WHERE p.{quote_ident(parent_key)} = c.{quote_ident(column)}
          )
        """
        orphans = int(self.client.fetch_value(orphan_sql))
        return ForeignKeyEvidence(
            schema=key.schema,
            table=key.table,
            columns=key.columns,
            ref_schema=key.ref_schema,
            ref_table=key.ref_table,
            orphan_count=orphans,
            has_constraint=has_constraint,
            row_count=self._row_count(key.schema, key.table),
        )

    def _unique_evidence(self, key: UniqueKey) -> Optional[UniqueEvidence]:
        catalog_columns = self._table_columns(key.schema, key.table)
        if any(c.casefold() not in catalog_columns for c in key.columns):
            return None
        members = ", ".join(quote_ident(c) for c in key.columns)
        not_null = " AND ".join(f"{quote_ident(c)} IS NOT NULL" for c in key.columns)
        # Rows with a NULL member never collide under a filtered unique index.
        dup_sql = f"""
        SELECT COUNT(*), COALESCE(SUM(d.cnt), 0)
        FROM (
            SELECT COUNT(*) AS cnt
            FROM {qualified(key.schema, key.table)}
            WHERE {not_null}
            GROUP BY {members}
            HAVING COUNT(*) > 1
        ) AS d
        """
        row = self.client.fetch_one(dup_sql)
        groups, dup_rows = (int(row[0]), int(row[1])) if row is not None else (0, 0)
        wanted = tuple(sorted(c.casefold() for c in key.columns))
        return UniqueEvidence(
            schema=key.schema,
            table=key.table,
            columns=key.columns,
            duplicate_groups=groups,
            duplicate_rows=dup_rows,
            physical_unique=wanted in self.catalog.unique_column_sets(key.schema, key.table),
            row_count=self._row_count(key.schema, key.table),
        )
