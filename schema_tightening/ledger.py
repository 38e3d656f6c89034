"""
Decision ledger: the append-only record of one run.

Worker threads record decisions concurrently; the ledger keeps exactly one
decision per (target, kind) and exports everything in a stable order so that
identical inputs always serialize to identical bytes.
"""
from __future__ import annotations

import json
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .decisions import Decision
from .errors import DuplicateDecisionError
from .model import ConstraintKind, TargetKey, sort_key
from .remediation import RemediationPlan
from .risk import Category, assess


@dataclass(frozen=True)
class EvaluationError:
    """A target whose decision could not be computed (model or catalog inconsistency)."""

    target: TargetKey
    kind: ConstraintKind
    reason: str

    @property
    def sort_key(self) -> Tuple[Any, ...]:
        return sort_key(self.target, self.kind)

    @property
    def table(self) -> str:
        return f"{self.target.schema}.{self.target.table}"

    def to_dict(self) -> Dict[str, Any]:
        return {"target": self.target.to_dict(), "kind": self.kind.value, "reason": self.reason}


class DecisionLedger:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._decisions: Dict[Tuple[Any, ...], Decision] = {}
        self._plans: Dict[Tuple[Any, ...], RemediationPlan] = {}
        self._errors: List[EvaluationError] = []

    @staticmethod
    def _slot(target: TargetKey, kind: ConstraintKind) -> Tuple[Any, ...]:
        return (kind.value, type(target).__name__, target.identity)

    def record(self, decision: Decision, plan: Optional[RemediationPlan] = None) -> None:
        slot = self._slot(decision.target, decision.kind)
        with self._lock:
            if slot in self._decisions:
                raise DuplicateDecisionError(f"A {decision.kind.value} decision for {decision.target} already exists.")
            self._decisions[slot] = decision
            if plan is not None:
                self._plans[slot] = plan

    def record_error(self, error: EvaluationError) -> None:
        with self._lock:
            self._errors.append(error)

    def __len__(self) -> int:
        with self._lock:
            return len(self._decisions)

    def get(self, target: TargetKey, kind: ConstraintKind) -> Optional[Decision]:
        with self._lock:
            return self._decisions.get(self._slot(target, kind))

    def plan_for(self, target: TargetKey, kind: ConstraintKind) -> Optional[RemediationPlan]:
        with self._lock:
            return self._plans.get(self._slot(target, kind))

    # ----------------------------------------------------------------------------------
    # Ordered views
    # ----------------------------------------------------------------------------------
    @property
    def decisions(self) -> List[Decision]:
        with self._lock:
            return sorted(self._decisions.values(), key=lambda d: d.sort_key)

    @property
    def plans(self) -> List[RemediationPlan]:
        with self._lock:
            return sorted(self._plans.values(), key=lambda p: p.sort_key)

    @property
    def errors(self) -> List[EvaluationError]:
        with self._lock:
            return sorted(self._errors, key=lambda e: e.sort_key)

    @property
    def failed(self) -> bool:
        with self._lock:
            return bool(self._errors)

    @property
    def blocked_tables(self) -> List[str]:
        """Tables with at least one inconsistent target; downstream emission halts for them."""
        return sorted({e.table for e in self.errors}, key=lambda t: (t.casefold(), t))

    # ----------------------------------------------------------------------------------
    # Export
    # ----------------------------------------------------------------------------------
    def summary(self) -> Dict[str, Any]:
        decisions = self.decisions
        by_kind: Dict[str, Any] = {}
        for kind in ConstraintKind:
            subset = [d for d in decisions if d.kind is kind]
            histogram = Counter(code.value for d in subset for code in d.rationale)
            by_kind[kind.value] = {
                "total": len(subset),
                "tightened": sum(1 for d in subset if d.tighten),
                "requires_remediation": sum(1 for d in subset if d.requires_remediation),
                "rationale": {code: histogram[code] for code in sorted(histogram)},
            }
        return {
            "total": len(decisions),
            "tightened": sum(1 for d in decisions if d.tighten),
            "requires_remediation": sum(1 for d in decisions if d.requires_remediation),
            "errors": len(self.errors),
            "by_kind": by_kind,
        }

    @staticmethod
    def decision_record(decision: Decision, blocked: bool = False) -> Dict[str, Any]:
        record = decision.to_dict()
        record["blocked"] = blocked
        assessment = assess(decision)
        record["category"] = assessment.category.value
        record["risk"] = {"level": assessment.level.value, "reason": assessment.reason}
        return record

    def to_documents(self) -> Dict[str, Any]:
        decisions = self.decisions
        blocked = {t.casefold() for t in self.blocked_tables}
        records = [
            self.decision_record(d, f"{d.target.schema}.{d.target.table}".casefold() in blocked) for d in decisions
        ]
        return {
            "decisions": records,
            "needs_remediation": [r for r in records if r["requires_remediation"]],
            "validations": [r for r in records if r["category"] == Category.VALIDATION.value],
            "recommendations": [
                r for r in records if r["category"] == Category.RECOMMENDATION.value and r["tighten"]
            ],
            "remediation_plans": [p.to_dict() for p in self.plans],
            "errors": [e.to_dict() for e in self.errors],
            "blocked_tables": self.blocked_tables,
            "summary": self.summary(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_documents(), indent=2)
