"""
Decision evaluators for the three constraint kinds.

Each evaluator is a pure function of (target key, signal set, mode policy,
configuration) and returns exactly one Decision. The caller picks the
evaluator for a ConstraintKind through the EVALUATORS table.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import TighteningConfig
from .evidence import EvidenceCounts
from .model import ColumnKey, ConstraintKind, RelationshipKey, TargetKey, UniqueKey, sort_key
from .policy import ModePolicy
from .rationale import Rationale
from .signals import SignalCode, SignalSet

# Unique constraints over nullable members are emitted with a NOT NULL filter.
IGNORE_NULLS = "IGNORE_NULLS"


@dataclass(frozen=True)
class Decision:
    target: TargetKey
    kind: ConstraintKind
    tighten: bool
    rationale: Tuple[Rationale, ...]
    requires_remediation: bool = False
    evidence: EvidenceCounts = field(default_factory=EvidenceCounts)
    annotations: Tuple[str, ...] = ()

    @property
    def sort_key(self) -> Tuple[Any, ...]:
        return sort_key(self.target, self.kind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target.to_dict(),
            "kind": self.kind.value,
            "tighten": self.tighten,
            "rationale": [code.value for code in self.rationale],
            "requires_remediation": self.requires_remediation,
            "evidence": self.evidence.to_dict(),
            "annotations": list(self.annotations),
        }


def inconsistent_decision(target: TargetKey, kind: ConstraintKind) -> Decision:
    """Placeholder decision for a target whose signals could not be computed."""
    return Decision(target, kind, False, (Rationale.INCONSISTENT_TARGET,))


def _metadata_claim(signals: SignalSet) -> Optional[Rationale]:
    if signals.has(SignalCode.MANDATORY):
        return Rationale.MANDATORY
    if signals.has(SignalCode.REFERENCE_DECLARED):
        return Rationale.REFERENCE_DECLARED
    if signals.has(SignalCode.UNIQUE_DECLARED):
        return Rationale.UNIQUE_DECLARED
    return None


# --------------------------------------------------------------------------------------
# Nullability
# --------------------------------------------------------------------------------------
def evaluate_nullability(
    key: ColumnKey, signals: SignalSet, policy: ModePolicy, config: TighteningConfig
) -> Decision:
    kind = ConstraintKind.NULLABILITY
    counts = signals.counts

    if config.keeps_nullable(key.schema, key.table, key.column):
        return Decision(key, kind, False, (Rationale.NULLABILITY_OVERRIDE,), evidence=counts)

    missing = signals.has(SignalCode.EVIDENCE_MISSING)
    if missing and not policy.tightens_without_evidence:
        return Decision(key, kind, False, (Rationale.EVIDENCE_MISSING,), evidence=counts)

    identity = signals.has(SignalCode.IDENTITY)
    physical = signals.has(SignalCode.PHYSICAL_CONSTRAINT)
    if missing:
        # Without column evidence only a mandatory declaration vouches for the data.
        claim = Rationale.MANDATORY if signals.has(SignalCode.MANDATORY) else None
    else:
        claim = _metadata_claim(signals)

    rationale: List[Rationale] = []
    if identity:
        rationale.append(Rationale.IDENTITY)
    if physical:
        rationale.append(Rationale.PHYSICAL_CONSTRAINT)
    if claim is not None:
        rationale.append(claim)
    if signals.has(SignalCode.DEFAULT_PRESENT):
        rationale.append(Rationale.DEFAULT_PRESENT)

    if missing:
        rationale.append(Rationale.EVIDENCE_MISSING)
        if identity or physical:
            return Decision(key, kind, True, tuple(rationale), evidence=counts)
        if claim is None:
            return Decision(key, kind, False, tuple(rationale), evidence=counts)
        rationale.append(Rationale.REMEDIATE_BEFORE_TIGHTEN)
        return Decision(key, kind, True, tuple(rationale), requires_remediation=True, evidence=counts)

    if signals.has(SignalCode.DATA_NO_VIOLATIONS):
        status = Rationale.DATA_NO_VIOLATIONS
    elif signals.has(SignalCode.NULL_RATE_WITHIN_BUDGET):
        status = Rationale.NULL_BUDGET_EPSILON
    else:
        status = Rationale.DATA_HAS_VIOLATIONS
    rationale.append(status)
    data_ok = status is not Rationale.DATA_HAS_VIOLATIONS

    if identity or physical:
        # Authoritative signal contradicted by data.
        if not data_ok and policy.remediates_contradiction:
            rationale.append(Rationale.REMEDIATE_BEFORE_TIGHTEN)
            return Decision(key, kind, True, tuple(rationale), requires_remediation=True, evidence=counts)
        return Decision(key, kind, True, tuple(rationale), evidence=counts)

    if claim is None:
        return Decision(key, kind, False, tuple(rationale), evidence=counts)
    if not policy.trusts_metadata:
        rationale.append(Rationale.METADATA_NOT_TRUSTED)
        return Decision(key, kind, False, tuple(rationale), evidence=counts)
    if not policy.permits_metadata(data_ok):
        return Decision(key, kind, False, tuple(rationale), evidence=counts)
    if data_ok:
        return Decision(key, kind, True, tuple(rationale), evidence=counts)
    if claim is not Rationale.MANDATORY:
        # Remediation is planned for mandatory columns only.
        return Decision(key, kind, False, tuple(rationale), evidence=counts)
    rationale.append(Rationale.REMEDIATE_BEFORE_TIGHTEN)
    return Decision(key, kind, True, tuple(rationale), requires_remediation=True, evidence=counts)


# --------------------------------------------------------------------------------------
# Foreign key
# --------------------------------------------------------------------------------------
def _fk_blockers(signals: SignalSet, config: TighteningConfig) -> List[Rationale]:
    blockers: List[Rationale] = []
    if signals.has(SignalCode.DELETE_RULE_IGNORE):
        blockers.append(Rationale.DELETE_RULE_IGNORE)
    if signals.has(SignalCode.CROSS_SCHEMA) and not config.foreign_keys.allow_cross_schema:
        blockers.append(Rationale.CROSS_SCHEMA)
    if signals.has(SignalCode.CROSS_CATALOG) and not config.foreign_keys.allow_cross_catalog:
        blockers.append(Rationale.CROSS_CATALOG)
    if not config.foreign_keys.enable_creation:
        blockers.append(Rationale.FK_CREATION_DISABLED)
    return blockers


def evaluate_foreign_key(
    key: RelationshipKey, signals: SignalSet, policy: ModePolicy, config: TighteningConfig
) -> Decision:
    kind = ConstraintKind.FOREIGN_KEY
    counts = signals.counts
    physical = signals.has(SignalCode.PHYSICAL_CONSTRAINT)

    rationale: List[Rationale] = [Rationale.REFERENCE_DECLARED]
    blockers: List[Rationale] = []
    if physical:
        # An enforced constraint is kept whatever the scope or delete policy says.
        rationale.append(Rationale.PHYSICAL_CONSTRAINT)
    else:
        blockers = _fk_blockers(signals, config)
        rationale.extend(blockers)

    if signals.has(SignalCode.EVIDENCE_MISSING):
        rationale.append(Rationale.EVIDENCE_MISSING)
        if not policy.tightens_without_evidence or blockers:
            return Decision(key, kind, False, tuple(rationale), evidence=counts)
        if physical:
            return Decision(key, kind, True, tuple(rationale), evidence=counts)
        rationale.append(Rationale.REMEDIATE_BEFORE_TIGHTEN)
        return Decision(key, kind, True, tuple(rationale), requires_remediation=True, evidence=counts)

    clean = signals.has(SignalCode.DATA_NO_VIOLATIONS)
    rationale.append(Rationale.DATA_NO_VIOLATIONS if clean else Rationale.DATA_HAS_VIOLATIONS)

    if physical:
        if not clean and policy.remediates_contradiction:
            rationale.append(Rationale.REMEDIATE_BEFORE_TIGHTEN)
            return Decision(key, kind, True, tuple(rationale), requires_remediation=True, evidence=counts)
        return Decision(key, kind, True, tuple(rationale), evidence=counts)
    if blockers:
        return Decision(key, kind, False, tuple(rationale), evidence=counts)
    if clean:
        return Decision(key, kind, True, tuple(rationale), evidence=counts)
    if policy.remediates_mismatch:
        rationale.append(Rationale.REMEDIATE_BEFORE_TIGHTEN)
        return Decision(key, kind, True, tuple(rationale), requires_remediation=True, evidence=counts)
    return Decision(key, kind, False, tuple(rationale), evidence=counts)


# --------------------------------------------------------------------------------------
# Uniqueness
# --------------------------------------------------------------------------------------
def evaluate_uniqueness(
    key: UniqueKey, signals: SignalSet, policy: ModePolicy, config: TighteningConfig
) -> Decision:
    kind = ConstraintKind.UNIQUENESS
    counts = signals.counts
    physical = signals.has(SignalCode.PHYSICAL_CONSTRAINT)
    annotations = (IGNORE_NULLS,) if signals.has(SignalCode.NULLABLE_MEMBER) else ()

    if len(key.columns) == 1:
        enabled = config.uniqueness.enforce_single_column
    else:
        enabled = config.uniqueness.enforce_multi_column

    rationale: List[Rationale] = [Rationale.UNIQUE_DECLARED]
    if physical:
        rationale.append(Rationale.PHYSICAL_CONSTRAINT)
    blocked = not enabled and not physical
    if blocked:
        rationale.append(Rationale.UNIQUE_POLICY_DISABLED)

    def decide(tighten: bool, remediate: bool = False) -> Decision:
        return Decision(key, kind, tighten, tuple(rationale), remediate, counts, annotations)

    if signals.has(SignalCode.EVIDENCE_MISSING):
        # Duplicates cannot be ruled out; no posture grants uniqueness blind.
        rationale.append(Rationale.EVIDENCE_MISSING)
        return decide(False)

    if signals.has(SignalCode.DATA_NO_VIOLATIONS):
        rationale.append(Rationale.DATA_NO_VIOLATIONS)
        return decide(not blocked)

    rationale.append(Rationale.DATA_HAS_VIOLATIONS)
    if blocked:
        return decide(False)
    if policy.remediates_mismatch or (physical and policy.remediates_contradiction):
        rationale.append(Rationale.REMEDIATE_BEFORE_TIGHTEN)
        return decide(True, remediate=True)
    return decide(False)


Evaluator = Callable[[Any, SignalSet, ModePolicy, TighteningConfig], Decision]

EVALUATORS: Dict[ConstraintKind, Evaluator] = {
    ConstraintKind.NULLABILITY: evaluate_nullability,
    ConstraintKind.FOREIGN_KEY: evaluate_foreign_key,
    ConstraintKind.UNIQUENESS: evaluate_uniqueness,
}
