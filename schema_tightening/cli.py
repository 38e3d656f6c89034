"""
Command line entry point.

    python -m schema_tightening --model model.json --evidence snapshot.json
    python -m schema_tightening --model model.json --connection "mssql+pyodbc://..."

Exit status is 0 on success, 1 when any target was inconsistent and 2 when
the configuration or an input document is invalid.
"""
from __future__ import annotations

import argparse
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .artifacts import ArtifactWriter
from .config import TighteningConfig, load_config_file, merge_config
from .engine import EngineResult, TighteningEngine
from .errors import ConfigurationError, EvidenceFormatError, ModelFormatError
from .evidence import EvidenceProvider, SnapshotFileProvider
from .model import LogicalModel, load_model
from .policy import Mode
from .profiler import SqlServerClient, SqlServerEvidenceProvider

EXIT_OK = 0
EXIT_INCONSISTENT = 1
EXIT_INVALID_INPUT = 2


class Runner:
    """Orchestrates one run: profile, evaluate, persist."""

    def __init__(
        self,
        config: TighteningConfig,
        model: LogicalModel,
        provider: EvidenceProvider,
        output_root: Optional[Path] = None,
    ) -> None:
        ts = datetime.now(timezone.utc).strftime("run_%Y%m%d_%H%M%S")
        self.config = config
        self.model = model
        self.provider = provider
        self.output_root = output_root or Path(config.output_path) / ts

    def run(self) -> EngineResult:
        engine = TighteningEngine(self.model, self.config)
        print(f"[INFO] Mode {self.config.policy.mode.value}, null budget {self.config.policy.null_budget}")
        result = engine.run(self.provider)
        print(f"[INFO] Evaluated {result.target_count} targets with {self.config.max_workers} workers")

        for error in result.errors:
            print(f"[ERROR] Inconsistent {error.kind.value} target {error.target}: {error.reason}")
        for table in result.blocked_tables:
            print(f"[WARN] Emission blocked for {table}")
        for plan in result.ledger.plans:
            if plan.manual_review:
                print(f"[WARN] {plan.kind.value} {plan.target}: {plan.warning}")

        writer = ArtifactWriter(self.output_root)
        writer.write_result(result)
        writer.finalize()
        print(f"[INFO] Run complete. Artifacts at {self.output_root}")
        return result


def build_config(args: argparse.Namespace) -> TighteningConfig:
    raw: Dict[str, Any] = load_config_file(args.config) if args.config else {}
    overrides: Dict[str, Any] = {}
    if args.mode is not None:
        overrides.setdefault("POLICY", {})["MODE"] = args.mode
    if args.null_budget is not None:
        overrides.setdefault("POLICY", {})["NULL_BUDGET"] = args.null_budget
    if args.workers is not None:
        overrides["EXECUTION"] = {"MAX_WORKERS": args.workers}
    if args.output is not None:
        overrides["OUTPUT"] = {"BASE_PATH": args.output}
    return TighteningConfig.from_mapping(merge_config(raw, overrides))


def build_provider(args: argparse.Namespace) -> EvidenceProvider:
    if args.evidence:
        return SnapshotFileProvider(Path(args.evidence))
    print("[INFO] Connecting to SQL Server for profiling")
    return SqlServerEvidenceProvider(SqlServerClient(args.connection))


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="schema_tightening",
        description="Decide which NOT NULL, foreign key and unique constraints can be safely enforced.",
    )
    parser.add_argument("--model", required=True, help="Logical model JSON document.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--evidence", help="Evidence snapshot JSON document.")
    source.add_argument("--connection", help="SQLAlchemy URL of the database to profile.")
    parser.add_argument("--config", help="JSON configuration file merged over the defaults.")
    parser.add_argument("--mode", help=f"Tightening mode ({', '.join(m.value for m in Mode)}).")
    parser.add_argument("--null-budget", type=float, dest="null_budget", help="Tolerated null ratio in [0, 1].")
    parser.add_argument("--workers", type=int, help="Evaluation worker count.")
    parser.add_argument("--output", help="Base directory for run artifacts (overrides OUTPUT.BASE_PATH).")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        config = build_config(args)
        model = load_model(Path(args.model))
        result = Runner(config, model, build_provider(args)).run()
    except (ConfigurationError, ModelFormatError, EvidenceFormatError) as exc:
        print(f"[ERROR] {exc}")
        return EXIT_INVALID_INPUT
    return EXIT_INCONSISTENT if result.failed else EXIT_OK
