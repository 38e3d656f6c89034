"""
Tightening engine: evaluates every target of a model against one snapshot.

The evidence provider is called once before evaluation. Targets are then
evaluated independently on a bounded thread pool, each worker computing
signals, picking the evaluator for the target's kind and recording the
decision (and remediation plan, if any) in the shared ledger. Inconsistent
targets are collected and reported after the full pass.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .config import TighteningConfig
from .decisions import EVALUATORS, Decision, inconsistent_decision
from .errors import InconsistentTargetError
from .evidence import EvidenceProvider, EvidenceSnapshot
from .ledger import DecisionLedger, EvaluationError
from .model import ConstraintKind, LogicalModel, Target
from .policy import ModePolicy, policy_for
from .remediation import RemediationPlan, context_for, plan_remediation
from .signals import SignalSet, column_signals, relationship_signals, unique_signals


@dataclass
class EngineResult:
    ledger: DecisionLedger
    snapshot: EvidenceSnapshot
    config: TighteningConfig
    target_count: int

    @property
    def errors(self) -> List[EvaluationError]:
        return self.ledger.errors

    @property
    def failed(self) -> bool:
        return self.ledger.failed

    @property
    def blocked_tables(self) -> List[str]:
        return self.ledger.blocked_tables


class TighteningEngine:
    """Applies the configured mode policy to every in-scope target of a logical model."""

    def __init__(self, model: LogicalModel, config: TighteningConfig) -> None:
        self.model = model
        self.config = config
        self.policy: ModePolicy = policy_for(config.policy.mode)

    def targets(self) -> List[Target]:
        return self.model.targets(self.config.scope)

    def run(self, provider: EvidenceProvider) -> EngineResult:
        targets = self.targets()
        snapshot = provider.get_snapshot(targets)
        return self.evaluate(targets, snapshot)

    def evaluate(self, targets: Sequence[Target], snapshot: EvidenceSnapshot) -> EngineResult:
        ledger = DecisionLedger()
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            futures = [pool.submit(self._record, ledger, target, snapshot) for target in targets]
            for future in futures:
                # Re-raises anything unexpected from a worker.
                future.result()
        return EngineResult(ledger=ledger, snapshot=snapshot, config=self.config, target_count=len(targets))

    def _record(self, ledger: DecisionLedger, target: Target, snapshot: EvidenceSnapshot) -> None:
        decision, plan, error = self.evaluate_target(target, snapshot)
        ledger.record(decision, plan)
        if error is not None:
            ledger.record_error(error)

    def evaluate_target(
        self, target: Target, snapshot: EvidenceSnapshot
    ) -> Tuple[Decision, Optional[RemediationPlan], Optional[EvaluationError]]:
        try:
            signals = self.signals_for(target, snapshot)
        except InconsistentTargetError as exc:
            error = EvaluationError(target=target.key, kind=target.kind, reason=exc.reason)
            return inconsistent_decision(target.key, target.kind), None, error

        decision = EVALUATORS[target.kind](target.key, signals, self.policy, self.config)
        plan = plan_remediation(decision, context_for(target), self.config.remediation)
        return decision, plan, None

    def signals_for(self, target: Target, snapshot: EvidenceSnapshot) -> SignalSet:
        if target.kind is ConstraintKind.NULLABILITY:
            return column_signals(self.model, target.entity, target.attribute, snapshot, self.config)
        if target.kind is ConstraintKind.FOREIGN_KEY:
            return relationship_signals(self.model, target.entity, target.attribute, snapshot, self.config)
        return unique_signals(self.model, target.entity, target.index, snapshot, self.config)
