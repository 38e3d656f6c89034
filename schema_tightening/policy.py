"""Risk postures: which signals may justify tightening and when remediation is offered."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict

from .errors import ConfigurationError


class Mode(str, Enum):
    CAUTIOUS = "Cautious"
    EVIDENCE_GATED = "EvidenceGated"
    AGGRESSIVE = "Aggressive"


class RemediationPosture(str, Enum):
    NEVER = "never"
    # Only when an authoritative signal (identity / physical constraint) is violated by data.
    ON_CONTRADICTION = "on_contradiction"
    # Whenever declared intent and data disagree.
    ON_MISMATCH = "on_mismatch"


@dataclass(frozen=True)
class ModePolicy:
    mode: Mode
    code: str
    description: str
    trusts_metadata: bool
    metadata_requires_evidence: bool
    remediation: RemediationPosture

    def permits_metadata(self, data_clean: bool) -> bool:
        """Whether Mandatory / ReferenceDeclared / UniqueDeclared may justify NOT NULL."""
        if not self.trusts_metadata:
            return False
        return data_clean or not self.metadata_requires_evidence

    @property
    def remediates_contradiction(self) -> bool:
        return self.remediation is not RemediationPosture.NEVER

    @property
    def remediates_mismatch(self) -> bool:
        return self.remediation is RemediationPosture.ON_MISMATCH

    @property
    def tightens_without_evidence(self) -> bool:
        return self.trusts_metadata and not self.metadata_requires_evidence


POLICIES: Dict[Mode, ModePolicy] = {
    Mode.CAUTIOUS: ModePolicy(
        mode=Mode.CAUTIOUS,
        code="MODE_CAUTIOUS",
        description="Tighten only on identity or an existing physical constraint; never remediate.",
        trusts_metadata=False,
        metadata_requires_evidence=True,
        remediation=RemediationPosture.NEVER,
    ),
    Mode.EVIDENCE_GATED: ModePolicy(
        mode=Mode.EVIDENCE_GATED,
        code="MODE_EVIDENCE_GATED",
        description="Trust model metadata only when profiling shows no violations.",
        trusts_metadata=True,
        metadata_requires_evidence=True,
        remediation=RemediationPosture.ON_CONTRADICTION,
    ),
    Mode.AGGRESSIVE: ModePolicy(
        mode=Mode.AGGRESSIVE,
        code="MODE_AGGRESSIVE",
        description="Trust model metadata outright and plan remediation where data disagrees.",
        trusts_metadata=True,
        metadata_requires_evidence=False,
        remediation=RemediationPosture.ON_MISMATCH,
    ),
}


def parse_mode(value: str) -> Mode:
    """Resolve a mode name such as ``EvidenceGated``, ``evidence-gated`` or ``AGGRESSIVE``."""
    if isinstance(value, Mode):
        return value
    if not isinstance(value, str):
        raise ConfigurationError(f"Tightening mode must be a string, got {value!r}.")
    normalized = value.replace("-", "").replace("_", "").replace(" ", "").lower()
    for mode in Mode:
        if mode.value.lower() == normalized:
            return mode
    choices = ", ".join(m.value for m in Mode)
    raise ConfigurationError(f"Unrecognized tightening mode '{value}'. Expected one of: {choices}.")


def policy_for(mode: Mode) -> ModePolicy:
    return POLICIES[mode]
