"""Filesystem output for both machine-readable and human-readable run artifacts."""
from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Dict, List

from .engine import EngineResult


class ArtifactWriter:
    """Writes the ledger documents, a CSV summary, a Markdown report and a manifest."""

    def __init__(self, base_path: Path) -> None:
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.manifest: Dict[str, Any] = {"artifacts": []}
        self.summary_rows: List[List[Any]] = []

    def write_json(self, name: str, obj: Any) -> Path:
        path = self.base_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(obj, indent=2, default=str))
        self.manifest["artifacts"].append(name)
        return path

    def write_result(self, result: EngineResult) -> Dict[str, Any]:
        documents = result.ledger.to_documents()
        self.write_json("decisions.json", documents["decisions"])
        self.write_json("needs-remediation.json", documents["needs_remediation"])
        self.write_json("validations.json", documents["validations"])
        self.write_json("remediation-plans.json", documents["remediation_plans"])
        if documents["errors"]:
            self.write_json("errors.json", {"errors": documents["errors"], "blocked_tables": documents["blocked_tables"]})

        for record in documents["decisions"]:
            target = record["target"]
            self.summary_rows.append(
                [
                    target["schema"],
                    target["table"],
                    _label(target),
                    record["kind"],
                    record["tighten"],
                    record["requires_remediation"],
                    record["blocked"],
                    record["category"],
                    record["risk"]["level"],
                    " ".join(record["rationale"]),
                ]
            )
        self.write_report(self.base_path / "report.md", result, documents)
        self.manifest.update(
            {
                "mode": result.config.policy.mode.value,
                "toggles": result.config.toggles(),
                "targets": result.target_count,
                "evidence": result.snapshot.counts(),
                "evidence_captured_at": result.snapshot.captured_at,
                "failed": result.failed,
                "summary": documents["summary"],
            }
        )
        return documents

    def finalize(self) -> None:
        with (self.base_path / "summary.csv").open("w", newline="") as fh:
            writer = csv.writer(fh)
            writer.writerow(
                ["schema", "table", "target", "kind", "tighten", "requires_remediation", "blocked", "category", "risk",
                 "rationale"]
            )
            for row in self.summary_rows:
                writer.writerow(row)
        self.manifest["artifacts"].extend(["summary.csv", "report.md"])
        (self.base_path / "manifest.json").write_text(json.dumps(self.manifest, indent=2, default=str))

    def write_report(self, path: Path, result: EngineResult, documents: Dict[str, Any]) -> None:
        summary = documents["summary"]
        lines = [
            f"# Schema Tightening Report ({result.config.policy.mode.value})",
            "",
            "## Settings",
        ]
        for name, value in result.config.toggles().items():
            lines.append(f"- {name}: {value}")
        lines.append("")
        lines.append("## Summary")
        lines.append(f"- Decisions: {summary['total']}")
        lines.append(f"- Tightened: {summary['tightened']}")
        lines.append(f"- Requires remediation: {summary['requires_remediation']}")
        lines.append(f"- Inconsistent targets: {summary['errors']}")
        for kind, stats in summary["by_kind"].items():
            codes = ", ".join(f"{code}={count}" for code, count in stats["rationale"].items()) or "none"
            lines.append(f"- {kind}: {stats['tightened']}/{stats['total']} tightened | rationale: {codes}")
        lines.append("")

        lines.append("## Needs Remediation")
        plans = {_plan_key(p): p for p in documents["remediation_plans"]}
        if documents["needs_remediation"]:
            for record in documents["needs_remediation"]:
                plan = plans.get(_plan_key(record))
                rows = plan["affected_rows"] if plan else None
                lines.append(
                    f"- {record['kind']} {_describe(record['target'])}: affected rows={rows} | {' '.join(record['rationale'])}"
                )
                if plan:
                    for option in plan["options"]:
                        lines.append(f"  - Option {option['strategy']}: {option['description']}")
                    if plan["warning"]:
                        lines.append(f"  - Warning: {plan['warning']}")
        else:
            lines.append("- None.")
        lines.append("")

        lines.append("## Inconsistent Targets")
        if documents["errors"]:
            for error in documents["errors"]:
                lines.append(f"- {error['kind']} {_describe(error['target'])}: {error['reason']}")
            lines.append("- Blocked tables: " + ", ".join(documents["blocked_tables"]))
        else:
            lines.append("- None.")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines))


def _label(target: Dict[str, Any]) -> str:
    if "column" in target:
        return target["column"]
    if "name" in target:
        return target["name"]
    return ",".join(target["columns"])


def _describe(target: Dict[str, Any]) -> str:
    text = f"{target['schema']}.{target['table']}.{_label(target)}"
    if "ref_table" in target:
        text += f" -> {target['ref_schema']}.{target['ref_table']}"
    return text


def _plan_key(record: Dict[str, Any]) -> str:
    return json.dumps([record["kind"], record["target"]], sort_keys=True)
