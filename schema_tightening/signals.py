"""
Signal evaluation: pure functions computing the fixed signal set of one target.

Each function reads the logical model, the evidence snapshot and the frozen
configuration and returns a SignalSet. Nothing is mutated and nothing is
printed. A target the model and evidence disagree about raises
InconsistentTargetError instead of producing signals.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional

from .config import TighteningConfig
from .errors import InconsistentTargetError
from .evidence import EvidenceCounts, EvidenceSnapshot
from .model import Attribute, Entity, LogicalModel, UniqueIndex


class SignalCode(str, Enum):
    IDENTITY = "IDENTITY"
    PHYSICAL_CONSTRAINT = "PHYSICAL_CONSTRAINT"
    MANDATORY = "MANDATORY"
    DEFAULT_PRESENT = "DEFAULT_PRESENT"
    REFERENCE_DECLARED = "REFERENCE_DECLARED"
    UNIQUE_DECLARED = "UNIQUE_DECLARED"
    DATA_NO_VIOLATIONS = "DATA_NO_VIOLATIONS"
    NULL_RATE_WITHIN_BUDGET = "NULL_RATE_WITHIN_BUDGET"
    EVIDENCE_MISSING = "EVIDENCE_MISSING"
    DELETE_RULE_IGNORE = "DELETE_RULE_IGNORE"
    CROSS_SCHEMA = "CROSS_SCHEMA"
    CROSS_CATALOG = "CROSS_CATALOG"
    SELF_REFERENCE = "SELF_REFERENCE"
    NULLABLE_MEMBER = "NULLABLE_MEMBER"


class SignalSource(str, Enum):
    MODEL = "model"
    CATALOG = "catalog"
    PROFILE = "profile"


@dataclass(frozen=True)
class Signal:
    code: SignalCode
    value: bool
    source: SignalSource
    measure: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        out: Dict[str, object] = {"code": self.code.value, "value": self.value, "source": self.source.value}
        if self.measure is not None:
            out["measure"] = self.measure
        return out


class SignalSet:
    """Immutable code -> signal mapping plus the counts the signals came from."""

    def __init__(self, signals: Iterable[Signal], counts: EvidenceCounts) -> None:
        self._signals: Mapping[SignalCode, Signal] = MappingProxyType({s.code: s for s in signals})
        self.counts = counts

    def has(self, code: SignalCode) -> bool:
        signal = self._signals.get(code)
        return signal is not None and signal.value

    def get(self, code: SignalCode) -> Optional[Signal]:
        return self._signals.get(code)

    def measure(self, code: SignalCode) -> Optional[float]:
        signal = self._signals.get(code)
        return None if signal is None else signal.measure

    def __iter__(self):
        return iter(self._signals.values())

    def __len__(self) -> int:
        return len(self._signals)

    def to_dict(self) -> Dict[str, object]:
        return {
            "signals": [self._signals[c].to_dict() for c in SignalCode if c in self._signals],
            "evidence": self.counts.to_dict(),
        }


def within_null_budget(null_count: int, row_count: int, budget: float) -> bool:
    if null_count == 0 or row_count == 0:
        return True
    if budget <= 0:
        return False
    return null_count <= row_count * budget


def _delete_rule(attribute: Attribute, config: TighteningConfig) -> str:
    rule = attribute.reference.delete_rule
    if rule is None or not rule.strip():
        rule = config.foreign_keys.missing_delete_rule
    return rule.strip().lower()


def _reference_backed(
    model: LogicalModel,
    entity: Entity,
    attribute: Attribute,
    snapshot: EvidenceSnapshot,
    config: TighteningConfig,
) -> bool:
    """True when the column's reference would itself be enforced over clean data."""
    if attribute.reference is None:
        return False
    parent = model.entity(attribute.reference.target_entity)
    if parent is None or not parent.identifier_columns:
        return False
    evidence = snapshot.foreign_key(model.relationship_key(entity, attribute))
    if evidence is None or evidence.orphan_count != 0:
        return False
    if _delete_rule(attribute, config) == "ignore":
        return False
    if evidence.has_constraint:
        return True
    fk = config.foreign_keys
    cross_schema = entity.schema.casefold() != parent.schema.casefold()
    cross_catalog = (entity.catalog or "").casefold() != (parent.catalog or "").casefold()
    return (
        fk.enable_creation
        and (fk.allow_cross_schema or not cross_schema)
        and (fk.allow_cross_catalog or not cross_catalog)
    )


def _unique_backed(entity: Entity, attribute: Attribute, snapshot: EvidenceSnapshot) -> bool:
    """True when some unique candidate over the column is free of duplicates."""
    for index in entity.unique_indexes_with(attribute.column):
        evidence = snapshot.unique(entity.unique_key(index))
        if evidence is not None and evidence.duplicate_groups == 0:
            return True
    return False


# --------------------------------------------------------------------------------------
# Per-kind signal functions
# --------------------------------------------------------------------------------------
def column_signals(
    model: LogicalModel,
    entity: Entity,
    attribute: Attribute,
    snapshot: EvidenceSnapshot,
    config: TighteningConfig,
) -> SignalSet:
    key = entity.column_key(attribute)
    evidence = snapshot.column(key)
    if evidence is not None and not evidence.exists:
        raise InconsistentTargetError(key, "column is declared by the model but absent from the physical catalog")

    missing = evidence is None or evidence.row_count is None or evidence.null_count is None
    signals = [
        Signal(SignalCode.IDENTITY, attribute.is_identifier, SignalSource.MODEL),
        Signal(
            SignalCode.PHYSICAL_CONSTRAINT,
            evidence is not None and evidence.physical_nullable is False,
            SignalSource.CATALOG,
        ),
        Signal(SignalCode.MANDATORY, attribute.is_mandatory, SignalSource.MODEL),
        Signal(SignalCode.DEFAULT_PRESENT, attribute.default_value is not None, SignalSource.MODEL),
        # Reference and unique claims count toward NOT NULL only when their own evidence is clean.
        Signal(
            SignalCode.REFERENCE_DECLARED,
            _reference_backed(model, entity, attribute, snapshot, config),
            SignalSource.PROFILE,
        ),
        Signal(SignalCode.UNIQUE_DECLARED, _unique_backed(entity, attribute, snapshot), SignalSource.PROFILE),
        Signal(SignalCode.EVIDENCE_MISSING, missing, SignalSource.PROFILE),
    ]
    if missing:
        counts = EvidenceCounts(row_count=evidence.row_count if evidence else None)
        return SignalSet(signals, counts)

    rows, nulls = evidence.row_count, evidence.null_count
    ratio = nulls / rows if rows else 0.0
    signals.append(Signal(SignalCode.DATA_NO_VIOLATIONS, nulls == 0 or rows == 0, SignalSource.PROFILE))
    signals.append(
        Signal(
            SignalCode.NULL_RATE_WITHIN_BUDGET,
            within_null_budget(nulls, rows, config.policy.null_budget),
            SignalSource.PROFILE,
            measure=ratio,
        )
    )
    return SignalSet(signals, EvidenceCounts(row_count=rows, null_count=nulls))


def relationship_signals(
    model: LogicalModel,
    entity: Entity,
    attribute: Attribute,
    snapshot: EvidenceSnapshot,
    config: TighteningConfig,
) -> SignalSet:
    key = model.relationship_key(entity, attribute)
    reference = attribute.reference
    parent = model.entity(reference.target_entity)
    if parent is None:
        raise InconsistentTargetError(key, f"reference targets unknown entity '{reference.target_entity}'")
    if not parent.identifier_columns:
        raise InconsistentTargetError(key, f"referenced entity '{parent.name}' declares no identifier")
    own = snapshot.column(entity.column_key(attribute))
    if own is not None and not own.exists:
        raise InconsistentTargetError(key, "referencing column is absent from the physical catalog")

    evidence = snapshot.foreign_key(key)
    missing = evidence is None or evidence.orphan_count is None
    signals = [
        Signal(SignalCode.REFERENCE_DECLARED, True, SignalSource.MODEL),
        Signal(SignalCode.PHYSICAL_CONSTRAINT, evidence is not None and evidence.has_constraint, SignalSource.CATALOG),
        Signal(SignalCode.DELETE_RULE_IGNORE, _delete_rule(attribute, config) == "ignore", SignalSource.MODEL),
        Signal(SignalCode.CROSS_SCHEMA, entity.schema.casefold() != parent.schema.casefold(), SignalSource.MODEL),
        Signal(
            SignalCode.CROSS_CATALOG,
            (entity.catalog or "").casefold() != (parent.catalog or "").casefold(),
            SignalSource.MODEL,
        ),
        Signal(
            SignalCode.SELF_REFERENCE,
            (entity.schema.casefold(), entity.table.casefold()) == (parent.schema.casefold(), parent.table.casefold()),
            SignalSource.MODEL,
        ),
        Signal(SignalCode.EVIDENCE_MISSING, missing, SignalSource.PROFILE),
    ]
    if missing:
        counts = EvidenceCounts(row_count=evidence.row_count if evidence else None)
        return SignalSet(signals, counts)

    signals.append(Signal(SignalCode.DATA_NO_VIOLATIONS, evidence.orphan_count == 0, SignalSource.PROFILE))
    return SignalSet(signals, EvidenceCounts(row_count=evidence.row_count, orphan_count=evidence.orphan_count))


def unique_signals(
    model: LogicalModel,
    entity: Entity,
    index: UniqueIndex,
    snapshot: EvidenceSnapshot,
    config: TighteningConfig,
) -> SignalSet:
    key = entity.unique_key(index)
    nullable_member = False
    for column in index.columns:
        attribute = entity.attribute_by_column(column)
        if attribute is None:
            raise InconsistentTargetError(key, f"unique index names undeclared column '{column}'")
        member = snapshot.column_at(entity.schema, entity.table, attribute.column)
        if member is not None and not member.exists:
            raise InconsistentTargetError(key, f"member column '{column}' is absent from the physical catalog")
        if member is not None and member.physical_nullable is not None:
            nullable_member = nullable_member or member.physical_nullable
        else:
            # Catalog silent: only identifiers are known to be non-null.
            nullable_member = nullable_member or not attribute.is_identifier

    evidence = snapshot.unique(key)
    missing = evidence is None or evidence.duplicate_groups is None
    signals = [
        Signal(SignalCode.UNIQUE_DECLARED, True, SignalSource.MODEL),
        Signal(SignalCode.PHYSICAL_CONSTRAINT, evidence is not None and evidence.physical_unique, SignalSource.CATALOG),
        Signal(SignalCode.NULLABLE_MEMBER, nullable_member, SignalSource.CATALOG),
        Signal(SignalCode.EVIDENCE_MISSING, missing, SignalSource.PROFILE),
    ]
    if missing:
        counts = EvidenceCounts(row_count=evidence.row_count if evidence else None)
        return SignalSet(signals, counts)

    signals.append(Signal(SignalCode.DATA_NO_VIOLATIONS, evidence.duplicate_groups == 0, SignalSource.PROFILE))
    return SignalSet(
        signals,
        EvidenceCounts(
            row_count=evidence.row_count,
            duplicate_groups=evidence.duplicate_groups,
            duplicate_rows=evidence.duplicate_rows,
        ),
    )
