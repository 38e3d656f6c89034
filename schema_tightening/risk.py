"""Change-risk classification and opportunity category for exported decisions."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .decisions import Decision
from .rationale import DATA_STATUS_CODES, Rationale


class Category(str, Enum):
    # Authoritative metadata disagrees with data, or the model disagrees with itself.
    CONTRADICTION = "Contradiction"
    RECOMMENDATION = "Recommendation"
    # Constraint already enforced and confirmed.
    VALIDATION = "Validation"


class RiskLevel(str, Enum):
    LOW = "Low"
    MODERATE = "Moderate"
    HIGH = "High"


@dataclass(frozen=True)
class RiskAssessment:
    category: Category
    level: RiskLevel
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"category": self.category.value, "level": self.level.value, "reason": self.reason}


def data_status(decision: Decision) -> Optional[Rationale]:
    return next((code for code in decision.rationale if code in DATA_STATUS_CODES), None)


def categorize(decision: Decision) -> Category:
    codes = set(decision.rationale)
    if Rationale.INCONSISTENT_TARGET in codes:
        return Category.CONTRADICTION
    authoritative = Rationale.IDENTITY in codes or Rationale.PHYSICAL_CONSTRAINT in codes
    if authoritative and data_status(decision) is Rationale.DATA_HAS_VIOLATIONS:
        return Category.CONTRADICTION
    if decision.tighten and Rationale.PHYSICAL_CONSTRAINT in codes and not decision.requires_remediation:
        return Category.VALIDATION
    return Category.RECOMMENDATION


def assess(decision: Decision) -> RiskAssessment:
    category = categorize(decision)
    codes = set(decision.rationale)
    status = data_status(decision)

    if Rationale.INCONSISTENT_TARGET in codes:
        return RiskAssessment(category, RiskLevel.HIGH, "Model and catalog disagree about this target.")
    if decision.requires_remediation:
        return RiskAssessment(category, RiskLevel.HIGH, "Existing data must be remediated before the constraint holds.")
    if category is Category.CONTRADICTION:
        return RiskAssessment(category, RiskLevel.HIGH, "Enforced metadata is contradicted by existing data.")
    if not decision.tighten:
        return RiskAssessment(category, RiskLevel.LOW, "No schema change.")
    if Rationale.PHYSICAL_CONSTRAINT in codes:
        return RiskAssessment(category, RiskLevel.LOW, "Constraint is already enforced.")
    if status is Rationale.NULL_BUDGET_EPSILON:
        return RiskAssessment(
            category, RiskLevel.MODERATE, "Null rate is within budget; residual NULLs must be handled at deployment."
        )
    if status is Rationale.EVIDENCE_MISSING:
        return RiskAssessment(category, RiskLevel.MODERATE, "Tightened without profiling evidence.")
    return RiskAssessment(category, RiskLevel.LOW, "Profiling shows no violations.")
