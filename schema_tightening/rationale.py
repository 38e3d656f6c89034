"""Fixed vocabulary of rationale codes attached to every decision."""
from __future__ import annotations

from enum import Enum


class Rationale(str, Enum):
    # Model / catalog facts
    IDENTITY = "IDENTITY"
    PHYSICAL_CONSTRAINT = "PHYSICAL_CONSTRAINT"
    MANDATORY = "MANDATORY"
    DEFAULT_PRESENT = "DEFAULT_PRESENT"
    REFERENCE_DECLARED = "REFERENCE_DECLARED"
    UNIQUE_DECLARED = "UNIQUE_DECLARED"

    # Data status, exactly one per decision that reaches the evidence stage
    DATA_NO_VIOLATIONS = "DATA_NO_VIOLATIONS"
    DATA_HAS_VIOLATIONS = "DATA_HAS_VIOLATIONS"
    NULL_BUDGET_EPSILON = "NULL_BUDGET_EPSILON"
    EVIDENCE_MISSING = "EVIDENCE_MISSING"

    # Policy blockers
    METADATA_NOT_TRUSTED = "METADATA_NOT_TRUSTED"
    DELETE_RULE_IGNORE = "DELETE_RULE_IGNORE"
    CROSS_SCHEMA = "CROSS_SCHEMA"
    CROSS_CATALOG = "CROSS_CATALOG"
    FK_CREATION_DISABLED = "FK_CREATION_DISABLED"
    UNIQUE_POLICY_DISABLED = "UNIQUE_POLICY_DISABLED"
    NULLABILITY_OVERRIDE = "NULLABILITY_OVERRIDE"

    # Outcomes
    REMEDIATE_BEFORE_TIGHTEN = "REMEDIATE_BEFORE_TIGHTEN"
    INCONSISTENT_TARGET = "INCONSISTENT_TARGET"


# Data-status codes in the order they are checked.
DATA_STATUS_CODES = (
    Rationale.DATA_NO_VIOLATIONS,
    Rationale.NULL_BUDGET_EPSILON,
    Rationale.DATA_HAS_VIOLATIONS,
    Rationale.EVIDENCE_MISSING,
)
