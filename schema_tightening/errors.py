"""Exception types raised by the tightening engine and its collaborators."""
from __future__ import annotations

from typing import Any


class TighteningError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(TighteningError, ValueError):
    """Configuration is invalid; raised before any evaluation begins."""


class ModelFormatError(TighteningError, ValueError):
    """The logical model document cannot be interpreted."""


class EvidenceFormatError(TighteningError, ValueError):
    """The evidence snapshot document cannot be interpreted."""


class InconsistentTargetError(TighteningError):
    """The model (or model vs. evidence) disagrees about a target's existence.

    Fatal for the decision of that one key only. The engine collects these and
    reports them in aggregate after the full pass.
    """

    def __init__(self, target: Any, reason: str) -> None:
        super().__init__(f"{target}: {reason}")
        self.target = target
        self.reason = reason


class DuplicateDecisionError(TighteningError):
    """A second decision was recorded for the same (target, kind) pair."""
