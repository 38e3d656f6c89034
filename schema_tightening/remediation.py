"""
Remediation planning for decisions that tighten over violating data.

A plan lists alternative correction strategies with T-SQL scripts for human
review. The engine never selects an option and never executes a script:
every plan is emitted with status NOT_APPLIED.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .config import RemediationOptions
from .decisions import Decision
from .model import ColumnKey, ConstraintKind, RelationshipKey, Target, TargetKey, UniqueKey, sort_key
from .profiler import qualified, quote_ident

NOT_APPLIED = "NOT_APPLIED"


class Strategy(str, Enum):
    SENTINEL_BACKFILL = "SENTINEL_BACKFILL"
    DEFAULT_BACKFILL = "DEFAULT_BACKFILL"
    DELETE_ORPHANS = "DELETE_ORPHANS"
    REASSIGN_TO_SENTINEL_PARENT = "REASSIGN_TO_SENTINEL_PARENT"
    DELETE_DUPLICATES = "DELETE_DUPLICATES"
    SUFFIX_DUPLICATES = "SUFFIX_DUPLICATES"


@dataclass(frozen=True)
class RemediationOption:
    strategy: Strategy
    description: str
    script: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"strategy": self.strategy.value, "description": self.description, "script": self.script}


@dataclass(frozen=True)
class RemediationPlan:
    target: TargetKey
    kind: ConstraintKind
    affected_rows: Optional[int]
    options: Tuple[RemediationOption, ...]
    manual_review: bool = False
    warning: Optional[str] = None
    status: str = NOT_APPLIED

    @property
    def sort_key(self) -> Tuple[Any, ...]:
        return sort_key(self.target, self.kind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target.to_dict(),
            "kind": self.kind.value,
            "affected_rows": self.affected_rows,
            "options": [o.to_dict() for o in self.options],
            "manual_review": self.manual_review,
            "warning": self.warning,
            "status": self.status,
        }


@dataclass(frozen=True)
class RemediationContext:
    """Model facts a plan needs beyond the decision itself."""

    data_type: str = ""
    default_value: Optional[str] = None
    parent_schema: Optional[str] = None
    parent_table: Optional[str] = None
    parent_key: Optional[str] = None
    identifier_columns: Tuple[str, ...] = ()
    # (column, data_type) pairs of unique candidate members
    member_types: Tuple[Tuple[str, str], ...] = ()
    references_parent: bool = False
    unique_member: bool = False


def context_for(target: Target) -> RemediationContext:
    entity = target.entity
    identifiers = entity.identifier_columns
    if target.kind is ConstraintKind.UNIQUENESS and target.index is not None:
        members = []
        for column in target.index.columns:
            attr = entity.attribute_by_column(column)
            members.append((column, attr.data_type if attr else ""))
        return RemediationContext(identifier_columns=identifiers, member_types=tuple(members))

    attribute = target.attribute
    context = RemediationContext(
        data_type=attribute.data_type if attribute else "",
        default_value=attribute.default_value if attribute else None,
        identifier_columns=identifiers,
        references_parent=attribute is not None and attribute.reference is not None,
        unique_member=attribute is not None and bool(entity.unique_indexes_with(attribute.column)),
    )
    if target.kind is ConstraintKind.FOREIGN_KEY and target.parent is not None:
        parent_ids = target.parent.identifier_columns
        return RemediationContext(
            data_type=context.data_type,
            default_value=context.default_value,
            parent_schema=target.parent.schema,
            parent_table=target.parent.table,
            parent_key=parent_ids[0] if parent_ids else None,
            identifier_columns=identifiers,
        )
    return context


# --------------------------------------------------------------------------------------
# Type families and SQL text helpers
# --------------------------------------------------------------------------------------
_FAMILY_PATTERNS = (
    ("boolean", re.compile(r"(?i)^(boolean|bool|bit)$")),
    ("date", re.compile(r"(?i)^(date|datetime|datetime2|smalldatetime|datetimeoffset|time)(\(\d+\))?$")),
    (
        "numeric",
        re.compile(
            r"(?i)^(integer|longinteger|int|bigint|smallint|tinyint|decimal|numeric|currency|money|smallmoney|float|real)(\(.*\))?$"
        ),
    ),
    (
        "text",
        re.compile(r"(?i)^(text|email|phonenumber|phone|varchar|nvarchar|char|nchar|ntext|string)(\(.*\))?$"),
    ),
)


def type_family(data_type: str) -> Optional[str]:
    """Map an application or SQL Server type name to a sentinel family."""
    name = (data_type or "").strip()
    for family, pattern in _FAMILY_PATTERNS:
        if pattern.match(name):
            return family
    return None


def sql_literal(value: str, family: Optional[str]) -> str:
    if family in ("numeric", "boolean") and re.fullmatch(r"-?\d+(\.\d+)?", value.strip()):
        return value.strip()
    escaped = value.replace("'", "''")
    if family == "date":
        return f"'{escaped}'"
    return f"N'{escaped}'"


# --------------------------------------------------------------------------------------
# Strategy builders
# --------------------------------------------------------------------------------------
def _nullability_options(key: ColumnKey, context: RemediationContext, options: RemediationOptions) -> List[RemediationOption]:
    family = type_family(context.data_type)
    table = qualified(key.schema, key.table)
    column = quote_ident(key.column)
    found: List[RemediationOption] = []
    if context.unique_member:
        # A single fill value would turn the NULLs into duplicates.
        return found

    sentinel = options.sentinels.for_family(family)
    if sentinel is not None and not context.references_parent:
        found.append(
            RemediationOption(
                Strategy.SENTINEL_BACKFILL,
                f"Backfill NULLs with the {family} sentinel {sentinel!r}.",
                f"UPDATE {table}\nSET {column} = {sql_literal(sentinel, family)}\nWHERE {column} IS NULL;",
            )
        )
    if context.default_value is not None:
        found.append(
            RemediationOption(
                Strategy.DEFAULT_BACKFILL,
                f"Backfill NULLs with the declared default {context.default_value!r}.",
                f"UPDATE {table}\nSET {column} = {sql_literal(context.default_value, family)}\nWHERE {column} IS NULL;",
            )
        )
    return found


def _orphan_predicate(key: RelationshipKey, context: RemediationContext) -> str:
    column = quote_ident(key.columns[0])
    parent = qualified(context.parent_schema, context.parent_table)
    return (
        f"c.{column} IS NOT NULL\n"
        f"  AND NOT EXISTS (SELECT 1 FROM {parent} AS p WHERE p.{quote_ident(context.parent_key)} = c.{column})"
    )


def _foreign_key_options(
    key: RelationshipKey, context: RemediationContext, options: RemediationOptions
) -> List[RemediationOption]:
    if not context.parent_table or not context.parent_key:
        return []
    table = qualified(key.schema, key.table)
    column = quote_ident(key.columns[0])
    predicate = _orphan_predicate(key, context)
    parent = qualified(context.parent_schema, context.parent_table)
    return [
        RemediationOption(
            Strategy.DELETE_ORPHANS,
            f"Delete rows of {key.schema}.{key.table} whose {key.label} has no parent in {context.parent_schema}.{context.parent_table}.",
            f"DELETE c\nFROM {table} AS c\nWHERE {predicate};",
        ),
        RemediationOption(
            Strategy.REASSIGN_TO_SENTINEL_PARENT,
            f"Point orphaned rows at a designated sentinel row of {context.parent_schema}.{context.parent_table}.",
            f"-- Set @sentinel_parent to the key of an existing {parent} row before running.\n"
            f"UPDATE c\nSET c.{column} = @sentinel_parent\nFROM {table} AS c\nWHERE {predicate};",
        ),
    ]


def _ranked_cte(key: UniqueKey, context: RemediationContext, extra_column: Optional[str] = None) -> str:
    members = ", ".join(quote_ident(c) for c in key.columns)
    order = ", ".join(quote_ident(c) for c in context.identifier_columns) or "(SELECT NULL)"
    not_null = " AND ".join(f"{quote_ident(c)} IS NOT NULL" for c in key.columns)
    select = f"{quote_ident(extra_column)}, " if extra_column else ""
    return (
        "WITH ranked AS (\n"
        f"    SELECT {select}ROW_NUMBER() OVER (PARTITION BY {members} ORDER BY {order}) AS rn\n"
        f"    FROM {qualified(key.schema, key.table)}\n"
        f"    WHERE {not_null}\n"
        ")"
    )


def _uniqueness_options(key: UniqueKey, context: RemediationContext, options: RemediationOptions) -> List[RemediationOption]:
    found = [
        RemediationOption(
            Strategy.DELETE_DUPLICATES,
            f"Keep the first row of each duplicate group on ({', '.join(key.columns)}) and delete the rest.",
            _ranked_cte(key, context) + "\nDELETE FROM ranked WHERE rn > 1;",
        )
    ]
    text_member = next((c for c, t in context.member_types if type_family(t) == "text"), None)
    if text_member is not None:
        column = quote_ident(text_member)
        found.append(
            RemediationOption(
                Strategy.SUFFIX_DUPLICATES,
                f"Append the duplicate rank to {text_member} so every row becomes distinct.",
                _ranked_cte(key, context, text_member)
                + f"\nUPDATE ranked SET {column} = CONCAT({column}, N'_', rn) WHERE rn > 1;",
            )
        )
    return found


# --------------------------------------------------------------------------------------
# Planner
# --------------------------------------------------------------------------------------
def affected_rows(decision: Decision) -> Optional[int]:
    counts = decision.evidence
    if decision.kind is ConstraintKind.NULLABILITY:
        return counts.null_count
    if decision.kind is ConstraintKind.FOREIGN_KEY:
        return counts.orphan_count
    if counts.duplicate_rows is None or counts.duplicate_groups is None:
        return None
    # One row per group survives.
    return counts.duplicate_rows - counts.duplicate_groups


def plan_remediation(
    decision: Decision, context: RemediationContext, options: RemediationOptions
) -> Optional[RemediationPlan]:
    if not decision.requires_remediation:
        return None

    if decision.kind is ConstraintKind.NULLABILITY:
        candidates = _nullability_options(decision.target, context, options)
    elif decision.kind is ConstraintKind.FOREIGN_KEY:
        candidates = _foreign_key_options(decision.target, context, options)
    else:
        candidates = _uniqueness_options(decision.target, context, options)

    rows = affected_rows(decision)
    warning: Optional[str] = None
    if not candidates:
        warning = "No automatic remediation strategy applies; resolve the violations manually."
    elif rows is None:
        warning = "Affected row count is unknown without evidence; manual review required before remediation."
    elif rows > options.max_affected_rows:
        warning = (
            f"Estimated {rows} affected rows exceed the ceiling of {options.max_affected_rows}; "
            "manual intervention required."
        )

    manual = warning is not None
    if manual or not options.generate_scripts:
        candidates = [RemediationOption(o.strategy, o.description, None) for o in candidates]

    return RemediationPlan(
        target=decision.target,
        kind=decision.kind,
        affected_rows=rows,
        options=tuple(candidates),
        manual_review=manual,
        warning=warning,
    )
