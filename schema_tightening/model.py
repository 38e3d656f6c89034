"""
Logical model source and target identities.

The logical model describes entities, their attributes (with mandatoriness,
type, default, reference declarations) and declared unique indexes. It is
read-only for the duration of a run. Every decision target is identified by
a stable key: a column, a relationship, or a unique candidate.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import ModelFormatError


class ConstraintKind(str, Enum):
    NULLABILITY = "Nullability"
    FOREIGN_KEY = "ForeignKey"
    UNIQUENESS = "Uniqueness"

    @property
    def order(self) -> int:
        return _KIND_ORDER[self]


_KIND_ORDER = {ConstraintKind.NULLABILITY: 0, ConstraintKind.FOREIGN_KEY: 1, ConstraintKind.UNIQUENESS: 2}


# --------------------------------------------------------------------------------------
# Target keys
# --------------------------------------------------------------------------------------
@dataclass(frozen=True)
class ColumnKey:
    schema: str
    table: str
    column: str

    @property
    def label(self) -> str:
        return self.column

    @property
    def identity(self) -> Tuple[str, ...]:
        # SQL Server identifiers compare case-insensitively.
        return (self.schema.casefold(), self.table.casefold(), self.column.casefold())

    def to_dict(self) -> Dict[str, Any]:
        return {"schema": self.schema, "table": self.table, "column": self.column}

    def __str__(self) -> str:
        return f"{self.schema}.{self.table}.{self.column}"


@dataclass(frozen=True)
class RelationshipKey:
    schema: str
    table: str
    columns: Tuple[str, ...]
    ref_schema: str
    ref_table: str

    @property
    def label(self) -> str:
        return ",".join(self.columns)

    @property
    def identity(self) -> Tuple[str, ...]:
        return (
            self.schema.casefold(),
            self.table.casefold(),
            *(c.casefold() for c in self.columns),
            "->",
            self.ref_schema.casefold(),
            self.ref_table.casefold(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema": self.schema,
            "table": self.table,
            "columns": list(self.columns),
            "ref_schema": self.ref_schema,
            "ref_table": self.ref_table,
        }

    def __str__(self) -> str:
        return f"{self.schema}.{self.table}({self.label}) -> {self.ref_schema}.{self.ref_table}"


@dataclass(frozen=True)
class UniqueKey:
    schema: str
    table: str
    columns: Tuple[str, ...]
    name: str

    @property
    def label(self) -> str:
        return self.name

    @property
    def identity(self) -> Tuple[str, ...]:
        # Evidence is keyed by the column list; the index name is presentation only.
        return (self.schema.casefold(), self.table.casefold(), *(c.casefold() for c in self.columns))

    def to_dict(self) -> Dict[str, Any]:
        return {"schema": self.schema, "table": self.table, "columns": list(self.columns), "name": self.name}

    def __str__(self) -> str:
        return f"{self.schema}.{self.table}.{self.name}({','.join(self.columns)})"


TargetKey = Union[ColumnKey, RelationshipKey, UniqueKey]


def sort_key(key: TargetKey, kind: ConstraintKind) -> Tuple[Any, ...]:
    """Stable ledger ordering: schema, table, column/constraint label, kind."""
    return (
        key.schema.casefold(),
        key.table.casefold(),
        key.label.casefold(),
        kind.order,
        key.schema,
        key.table,
        key.label,
        key.identity,
    )


# --------------------------------------------------------------------------------------
# Logical model
# --------------------------------------------------------------------------------------
@dataclass(frozen=True)
class Reference:
    target_entity: str
    delete_rule: Optional[str] = None


@dataclass(frozen=True)
class Attribute:
    name: str
    column: str
    data_type: str = ""
    is_identifier: bool = False
    is_mandatory: bool = False
    default_value: Optional[str] = None
    reference: Optional[Reference] = None


@dataclass(frozen=True)
class UniqueIndex:
    name: str
    columns: Tuple[str, ...]


@dataclass(frozen=True)
class Entity:
    name: str
    schema: str
    table: str
    attributes: Tuple[Attribute, ...]
    unique_indexes: Tuple[UniqueIndex, ...] = ()
    catalog: Optional[str] = None
    module: Optional[str] = None

    def attribute_by_column(self, column: str) -> Optional[Attribute]:
        wanted = column.casefold()
        for attr in self.attributes:
            if attr.column.casefold() == wanted:
                return attr
        return None

    @property
    def identifier_columns(self) -> Tuple[str, ...]:
        return tuple(a.column for a in self.attributes if a.is_identifier)

    def column_key(self, attribute: Attribute) -> ColumnKey:
        return ColumnKey(self.schema, self.table, attribute.column)

    def unique_key(self, index: UniqueIndex) -> UniqueKey:
        return UniqueKey(self.schema, self.table, tuple(index.columns), index.name)

    def unique_indexes_with(self, column: str) -> List[UniqueIndex]:
        wanted = column.casefold()
        return [idx for idx in self.unique_indexes if wanted in (c.casefold() for c in idx.columns)]


@dataclass(frozen=True)
class Target:
    """One unit of decision: a key, its kind and the model elements it came from."""

    kind: ConstraintKind
    key: TargetKey
    entity: Entity
    attribute: Optional[Attribute] = None
    index: Optional[UniqueIndex] = None
    # Referenced entity of a foreign key target; None when the reference dangles.
    parent: Optional[Entity] = None


class LogicalModel:
    """Read-only collection of entities with case-insensitive lookup by logical name."""

    def __init__(self, entities: Sequence[Entity]) -> None:
        self.entities: Tuple[Entity, ...] = tuple(entities)
        self._by_name: Dict[str, Entity] = {}
        for entity in self.entities:
            folded = entity.name.casefold()
            if folded in self._by_name:
                raise ModelFormatError(f"Entity '{entity.name}' is declared more than once.")
            self._by_name[folded] = entity

    def entity(self, name: str) -> Optional[Entity]:
        return self._by_name.get(name.casefold())

    def relationship_key(self, entity: Entity, attribute: Attribute) -> RelationshipKey:
        if attribute.reference is None:
            raise ValueError(f"Attribute {entity.name}.{attribute.name} declares no reference.")
        target = self.entity(attribute.reference.target_entity)
        if target is None:
            # Dangling reference: only the logical target name is known.
            return RelationshipKey(entity.schema, entity.table, (attribute.column,), "", attribute.reference.target_entity)
        return RelationshipKey(entity.schema, entity.table, (attribute.column,), target.schema, target.table)

    def targets(self, scope: Any = None) -> List[Target]:
        """Enumerate every (key, kind) pair of in-scope entities.

        Lookups still run against the whole model, so a reference to an
        out-of-scope entity is not mistaken for a dangling one.
        """
        found: List[Target] = []
        for entity in self.entities:
            if scope is not None and not scope.in_scope(entity.schema, entity.table):
                continue
            for attribute in entity.attributes:
                found.append(Target(ConstraintKind.NULLABILITY, entity.column_key(attribute), entity, attribute=attribute))
                if attribute.reference is not None:
                    found.append(
                        Target(
                            ConstraintKind.FOREIGN_KEY,
                            self.relationship_key(entity, attribute),
                            entity,
                            attribute=attribute,
                            parent=self.entity(attribute.reference.target_entity),
                        )
                    )
            for index in entity.unique_indexes:
                found.append(Target(ConstraintKind.UNIQUENESS, entity.unique_key(index), entity, index=index))
        return found

    # ----------------------------------------------------------------------------------
    # Loading
    # ----------------------------------------------------------------------------------
    @classmethod
    def from_dict(cls, document: Mapping[str, Any]) -> "LogicalModel":
        if not isinstance(document, Mapping) or not isinstance(document.get("entities"), list):
            raise ModelFormatError("Model document must be an object with an 'entities' array.")
        return cls([_entity_from_dict(raw) for raw in document["entities"]])


def load_model(path: Path) -> LogicalModel:
    try:
        document = json.loads(Path(path).read_text())
    except OSError as exc:
        raise ModelFormatError(f"Cannot read model file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ModelFormatError(f"Invalid model JSON in {path}: {exc}") from exc
    return LogicalModel.from_dict(document)


def _require(raw: Mapping[str, Any], field: str, where: str) -> Any:
    value = raw.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ModelFormatError(f"{where} is missing required field '{field}'.")
    return value


def _entity_from_dict(raw: Any) -> Entity:
    if not isinstance(raw, Mapping):
        raise ModelFormatError("Every entity must be a JSON object.")
    name = _require(raw, "name", "Entity")
    where = f"Entity '{name}'"
    attributes = tuple(_attribute_from_dict(a, where) for a in raw.get("attributes") or [])
    seen = set()
    for attr in attributes:
        if attr.column.casefold() in seen:
            raise ModelFormatError(f"{where} declares column '{attr.column}' more than once.")
        seen.add(attr.column.casefold())

    indexes = []
    column_sets = set()
    for idx in raw.get("unique_indexes") or []:
        idx_name = _require(idx, "name", f"{where} unique index")
        columns = idx.get("columns")
        if not isinstance(columns, list) or not columns:
            raise ModelFormatError(f"{where} unique index '{idx_name}' must list at least one column.")
        folded = tuple(str(c).casefold() for c in columns)
        if folded in column_sets:
            raise ModelFormatError(f"{where} declares the unique column list {columns} more than once.")
        column_sets.add(folded)
        indexes.append(UniqueIndex(name=idx_name, columns=tuple(str(c) for c in columns)))

    return Entity(
        name=name,
        schema=raw.get("schema") or "dbo",
        table=_require(raw, "table", where),
        attributes=attributes,
        unique_indexes=tuple(indexes),
        catalog=raw.get("catalog"),
        module=raw.get("module"),
    )


def _attribute_from_dict(raw: Any, where: str) -> Attribute:
    if not isinstance(raw, Mapping):
        raise ModelFormatError(f"{where} has an attribute that is not a JSON object.")
    name = _require(raw, "name", f"{where} attribute")
    reference = None
    ref = raw.get("reference")
    if ref:
        reference = Reference(
            target_entity=_require(ref, "entity", f"{where} attribute '{name}' reference"),
            delete_rule=ref.get("delete_rule") or None,
        )
    default = raw.get("default")
    return Attribute(
        name=name,
        column=raw.get("column") or name,
        data_type=raw.get("data_type") or "",
        is_identifier=bool(raw.get("is_identifier", False)),
        is_mandatory=bool(raw.get("is_mandatory", False)),
        default_value=None if default is None or default == "" else str(default),
        reference=reference,
    )
