"""
Configuration for the tightening engine.

Defaults live in the DEFAULT_CONFIG constant below, in the same sectioned
layout a JSON configuration file uses. A run merges the defaults with an
optional file and command line overrides, then freezes the result into a
TighteningConfig. Validation happens once, up front: an invalid value fails
the run before any column is evaluated.
"""
from __future__ import annotations

import copy
import json
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional

from .errors import ConfigurationError
from .policy import Mode, parse_mode


# --------------------------------------------------------------------------------------
# Defaults
# --------------------------------------------------------------------------------------
DEFAULT_CONFIG: Dict[str, Any] = {
    "POLICY": {
        "MODE": "EvidenceGated",
        # Maximum tolerated null ratio for a NOT NULL tightening. 0 means zero tolerance.
        "NULL_BUDGET": 0.0,
    },
    "FOREIGN_KEYS": {
        "ENABLE_CREATION": True,
        "ALLOW_CROSS_SCHEMA": False,
        "ALLOW_CROSS_CATALOG": False,
        # How a reference without a delete action is treated: "ignore" (no constraint) or "protect".
        "MISSING_DELETE_RULE": "ignore",
    },
    "UNIQUENESS": {
        "ENFORCE_SINGLE_COLUMN": True,
        "ENFORCE_MULTI_COLUMN": True,
    },
    "REMEDIATION": {
        "GENERATE_SCRIPTS": True,
        # Plans touching more rows than this are downgraded to a manual review warning.
        "MAX_AFFECTED_ROWS": 100_000,
        "SENTINELS": {
            "numeric": "0",
            "text": "",
            "date": "1900-01-01",
            "boolean": "0",
        },
    },
    "OVERRIDES": {
        # Columns that must stay nullable whatever the evidence says (schema.table.column)
        "KEEP_NULLABLE": [],
    },
    "SCOPE": {
        "INCLUDE_SCHEMAS": None,  # regex or None
        "EXCLUDE_SCHEMAS": None,
        "INCLUDE_TABLES": None,
        "EXCLUDE_TABLES": None,
        # Optional explicit allowlist of fully qualified names (schema.table)
        "TABLE_ALLOWLIST": None,
    },
    "EXECUTION": {
        "MAX_WORKERS": 4,
    },
    "OUTPUT": {
        "BASE_PATH": "output",
    },
}

MISSING_DELETE_RULES = ("ignore", "protect")
TYPE_FAMILIES = ("numeric", "text", "date", "boolean")


# --------------------------------------------------------------------------------------
# Merge / load helpers
# --------------------------------------------------------------------------------------
def merge_config(base: Mapping[str, Any], overrides: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Deep-merge ``overrides`` into a copy of ``base``; nested sections merge key by key."""
    merged = copy.deepcopy(dict(base))
    for key, value in (overrides or {}).items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config_file(path: Path) -> Dict[str, Any]:
    try:
        document = json.loads(Path(path).read_text())
    except OSError as exc:
        raise ConfigurationError(f"Cannot read configuration file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid configuration JSON in {path}: {exc}") from exc
    if not isinstance(document, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a JSON object.")
    return document


def qualifies(scope_regex: Optional[str], value: str) -> bool:
    """Helper to evaluate regex filters while treating None as pass-through."""
    if scope_regex is None:
        return True
    return re.search(scope_regex, value) is not None


# --------------------------------------------------------------------------------------
# Frozen option groups
# --------------------------------------------------------------------------------------
@dataclass(frozen=True)
class PolicyOptions:
    mode: Mode
    null_budget: float


@dataclass(frozen=True)
class ForeignKeyOptions:
    enable_creation: bool
    allow_cross_schema: bool
    allow_cross_catalog: bool
    missing_delete_rule: str


@dataclass(frozen=True)
class UniquenessOptions:
    enforce_single_column: bool
    enforce_multi_column: bool


@dataclass(frozen=True)
class SentinelValues:
    numeric: str
    text: str
    date: str
    boolean: str

    def for_family(self, family: Optional[str]) -> Optional[str]:
        if family not in TYPE_FAMILIES:
            return None
        return getattr(self, family)


@dataclass(frozen=True)
class RemediationOptions:
    generate_scripts: bool
    max_affected_rows: int
    sentinels: SentinelValues


@dataclass(frozen=True)
class ScopeOptions:
    include_schemas: Optional[str] = None
    exclude_schemas: Optional[str] = None
    include_tables: Optional[str] = None
    exclude_tables: Optional[str] = None
    table_allowlist: Optional[FrozenSet[str]] = None

    def in_scope(self, schema: str, table: str) -> bool:
        fq = f"{schema}.{table}"
        if self.table_allowlist and fq.casefold() not in self.table_allowlist:
            return False
        if not qualifies(self.include_schemas, schema):
            return False
        if not qualifies(self.include_tables, table):
            return False
        if self.exclude_schemas and re.search(self.exclude_schemas, schema):
            return False
        if self.exclude_tables and re.search(self.exclude_tables, table):
            return False
        return True


@dataclass(frozen=True)
class TighteningConfig:
    """Immutable configuration passed explicitly into every evaluator call."""

    policy: PolicyOptions
    foreign_keys: ForeignKeyOptions
    uniqueness: UniquenessOptions
    remediation: RemediationOptions
    scope: ScopeOptions
    keep_nullable: FrozenSet[str]
    max_workers: int
    output_path: str

    @classmethod
    def default(cls) -> "TighteningConfig":
        return cls.from_mapping(DEFAULT_CONFIG)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "TighteningConfig":
        if not isinstance(raw, Mapping):
            raise ConfigurationError(f"Configuration must be a mapping of sections, got {type(raw).__name__}.")
        cfg = merge_config(DEFAULT_CONFIG, raw)
        for section in DEFAULT_CONFIG:
            _section(cfg, section)

        policy = cfg["POLICY"]
        fks = cfg["FOREIGN_KEYS"]
        uniq = cfg["UNIQUENESS"]
        remediation = cfg["REMEDIATION"]
        scope = cfg["SCOPE"]

        missing_rule = fks["MISSING_DELETE_RULE"]
        if not isinstance(missing_rule, str) or missing_rule.lower() not in MISSING_DELETE_RULES:
            raise ConfigurationError(
                f"FOREIGN_KEYS.MISSING_DELETE_RULE must be one of {MISSING_DELETE_RULES}, got {missing_rule!r}."
            )

        max_rows = remediation["MAX_AFFECTED_ROWS"]
        if isinstance(max_rows, bool) or not isinstance(max_rows, int) or max_rows < 0:
            raise ConfigurationError(f"REMEDIATION.MAX_AFFECTED_ROWS must be a non-negative integer, got {max_rows!r}.")

        workers = cfg["EXECUTION"]["MAX_WORKERS"]
        if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
            raise ConfigurationError(f"EXECUTION.MAX_WORKERS must be an integer of at least 1, got {workers!r}.")

        sentinels = remediation["SENTINELS"]
        if not isinstance(sentinels, Mapping):
            raise ConfigurationError(
                f"REMEDIATION.SENTINELS must map type families to values, got {type(sentinels).__name__}."
            )
        for family in TYPE_FAMILIES:
            if not isinstance(sentinels.get(family), str):
                raise ConfigurationError(f"REMEDIATION.SENTINELS.{family} must be provided as a string.")

        for key in ("INCLUDE_SCHEMAS", "EXCLUDE_SCHEMAS", "INCLUDE_TABLES", "EXCLUDE_TABLES"):
            _check_regex(f"SCOPE.{key}", scope.get(key))

        allowlist = scope.get("TABLE_ALLOWLIST")
        if allowlist is not None and (
            not isinstance(allowlist, (list, tuple)) or not all(isinstance(t, str) for t in allowlist)
        ):
            raise ConfigurationError("SCOPE.TABLE_ALLOWLIST must be a list of 'schema.table' names or null.")
        keep_nullable = cfg["OVERRIDES"].get("KEEP_NULLABLE") or []
        if not isinstance(keep_nullable, (list, tuple)) or not all(isinstance(v, str) and v.count(".") == 2 for v in keep_nullable):
            raise ConfigurationError("OVERRIDES.KEEP_NULLABLE must be a list of 'schema.table.column' names.")

        return cls(
            policy=PolicyOptions(mode=parse_mode(policy["MODE"]), null_budget=_null_budget(policy["NULL_BUDGET"])),
            foreign_keys=ForeignKeyOptions(
                enable_creation=_flag("FOREIGN_KEYS.ENABLE_CREATION", fks["ENABLE_CREATION"]),
                allow_cross_schema=_flag("FOREIGN_KEYS.ALLOW_CROSS_SCHEMA", fks["ALLOW_CROSS_SCHEMA"]),
                allow_cross_catalog=_flag("FOREIGN_KEYS.ALLOW_CROSS_CATALOG", fks["ALLOW_CROSS_CATALOG"]),
                missing_delete_rule=missing_rule.lower(),
            ),
            uniqueness=UniquenessOptions(
                enforce_single_column=_flag("UNIQUENESS.ENFORCE_SINGLE_COLUMN", uniq["ENFORCE_SINGLE_COLUMN"]),
                enforce_multi_column=_flag("UNIQUENESS.ENFORCE_MULTI_COLUMN", uniq["ENFORCE_MULTI_COLUMN"]),
            ),
            remediation=RemediationOptions(
                generate_scripts=_flag("REMEDIATION.GENERATE_SCRIPTS", remediation["GENERATE_SCRIPTS"]),
                max_affected_rows=max_rows,
                sentinels=SentinelValues(**{family: sentinels[family] for family in TYPE_FAMILIES}),
            ),
            scope=ScopeOptions(
                include_schemas=scope.get("INCLUDE_SCHEMAS"),
                exclude_schemas=scope.get("EXCLUDE_SCHEMAS"),
                include_tables=scope.get("INCLUDE_TABLES"),
                exclude_tables=scope.get("EXCLUDE_TABLES"),
                table_allowlist=frozenset(t.casefold() for t in allowlist) if allowlist else None,
            ),
            keep_nullable=frozenset(v.casefold() for v in keep_nullable),
            max_workers=workers,
            output_path=str(cfg["OUTPUT"]["BASE_PATH"]),
        )

    def keeps_nullable(self, schema: str, table: str, column: str) -> bool:
        return f"{schema}.{table}.{column}".casefold() in self.keep_nullable

    def toggles(self) -> Dict[str, Any]:
        """Flat echo of the settings that influence decisions, for reports and manifests."""
        return {
            "policy.mode": self.policy.mode.value,
            "policy.nullBudget": self.policy.null_budget,
            "foreignKeys.enableCreation": self.foreign_keys.enable_creation,
            "foreignKeys.allowCrossSchema": self.foreign_keys.allow_cross_schema,
            "foreignKeys.allowCrossCatalog": self.foreign_keys.allow_cross_catalog,
            "foreignKeys.missingDeleteRule": self.foreign_keys.missing_delete_rule,
            "uniqueness.enforceSingleColumn": self.uniqueness.enforce_single_column,
            "uniqueness.enforceMultiColumn": self.uniqueness.enforce_multi_column,
            "remediation.generateScripts": self.remediation.generate_scripts,
            "remediation.maxAffectedRows": self.remediation.max_affected_rows,
        }


def _section(cfg: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = cfg[name]
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"{name} must be a section of settings, got {value!r}.")
    return value


def _flag(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"{name} must be true or false, got {value!r}.")
    return value


def _null_budget(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"POLICY.NULL_BUDGET must be a number between 0 and 1, got {value!r}.")
    budget = float(value)
    if math.isnan(budget) or math.isinf(budget):
        raise ConfigurationError("POLICY.NULL_BUDGET must be a finite number between 0 and 1 inclusive.")
    if budget < 0 or budget > 1:
        raise ConfigurationError(f"POLICY.NULL_BUDGET must be between 0 and 1 inclusive, got {budget}.")
    return budget


def _check_regex(name: str, pattern: Optional[str]) -> None:
    if pattern is None:
        return
    try:
        re.compile(pattern)
    except (re.error, TypeError) as exc:
        raise ConfigurationError(f"{name} is not a valid regular expression: {exc}") from exc
