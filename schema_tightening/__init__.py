"""Decide which NOT NULL, foreign key and unique constraints a migrated schema can safely enforce."""
from __future__ import annotations

from .config import DEFAULT_CONFIG, TighteningConfig
from .decisions import Decision, evaluate_foreign_key, evaluate_nullability, evaluate_uniqueness
from .engine import EngineResult, TighteningEngine
from .errors import (
    ConfigurationError,
    DuplicateDecisionError,
    EvidenceFormatError,
    InconsistentTargetError,
    ModelFormatError,
    TighteningError,
)
from .evidence import EvidenceSnapshot, SnapshotFileProvider
from .ledger import DecisionLedger
from .model import ConstraintKind, LogicalModel, load_model
from .policy import Mode, policy_for
from .rationale import Rationale

__all__ = [
    "DEFAULT_CONFIG",
    "ConfigurationError",
    "ConstraintKind",
    "Decision",
    "DecisionLedger",
    "DuplicateDecisionError",
    "EngineResult",
    "EvidenceFormatError",
    "EvidenceSnapshot",
    "InconsistentTargetError",
    "LogicalModel",
    "Mode",
    "ModelFormatError",
    "Rationale",
    "SnapshotFileProvider",
    "TighteningConfig",
    "TighteningEngine",
    "TighteningError",
    "evaluate_foreign_key",
    "evaluate_nullability",
    "evaluate_uniqueness",
    "load_model",
    "policy_for",
]
