import csv
import json

import pytest

from model_builders import column, customer_order_document, fk, snapshot, unique
from schema_tightening.cli import EXIT_INCONSISTENT, EXIT_INVALID_INPUT, EXIT_OK, main


@pytest.fixture()
def inputs(tmp_path):
    model_path = tmp_path / "model.json"
    model_path.write_text(json.dumps(customer_order_document()))
    snap = snapshot(
        [
            column("Customer", "Id", 50, 0, nullable=False),
            column("Customer", "Email", 50, 0),
            column("Customer", "Name", 50, 7),
            column("CustomerOrder", "CustomerId", 80, 2),
        ],
        [fk("CustomerOrder", "CustomerId", "Customer", 4)],
        [unique("Customer", ["Email"], 0)],
    )
    evidence_path = tmp_path / "evidence.json"
    evidence_path.write_text(json.dumps(snap.to_dict()))
    return tmp_path, model_path, evidence_path


def _run_dir(root):
    runs = list((root / "out").glob("run_*"))
    assert len(runs) == 1
    return runs[0]


def test_successful_run_writes_artifacts(inputs, capsys):
    root, model_path, evidence_path = inputs
    code = main(
        ["--model", str(model_path), "--evidence", str(evidence_path), "--mode", "Aggressive",
         "--output", str(root / "out"), "--workers", "2"]
    )
    assert code == EXIT_OK

    run = _run_dir(root)
    for name in ("decisions.json", "needs-remediation.json", "validations.json", "remediation-plans.json",
                 "summary.csv", "report.md", "manifest.json"):
        assert (run / name).exists(), name
    assert not (run / "errors.json").exists()

    manifest = json.loads((run / "manifest.json").read_text())
    assert manifest["mode"] == "Aggressive"
    assert manifest["failed"] is False
    assert manifest["evidence"] == {"columns": 4, "foreign_keys": 1, "unique_candidates": 1}

    decisions = json.loads((run / "decisions.json").read_text())
    assert len(decisions) == manifest["targets"]
    plans = json.loads((run / "remediation-plans.json").read_text())
    assert plans and all(p["status"] == "NOT_APPLIED" for p in plans)

    with (run / "summary.csv").open() as fh:
        rows = list(csv.DictReader(fh))
    assert len(rows) == len(decisions)
    assert "Needs Remediation" in (run / "report.md").read_text()
    assert "[INFO] Run complete" in capsys.readouterr().out


def test_inconsistent_target_exits_with_failure(inputs):
    root, model_path, _ = inputs
    evidence_path = root / "broken.json"
    evidence_path.write_text(json.dumps(snapshot([column("Customer", "Name", None, None, exists=False)]).to_dict()))

    code = main(["--model", str(model_path), "--evidence", str(evidence_path), "--output", str(root / "out")])
    assert code == EXIT_INCONSISTENT

    errors = json.loads((_run_dir(root) / "errors.json").read_text())
    assert errors["blocked_tables"] == ["dbo.Customer"]
    assert errors["errors"][0]["kind"] == "Nullability"

    decisions = json.loads((_run_dir(root) / "decisions.json").read_text())
    for record in decisions:
        assert record["blocked"] == (record["target"]["table"] == "Customer")


@pytest.mark.parametrize(
    "extra",
    [
        ["--mode", "Reckless"],
        ["--null-budget", "1.5"],
        ["--workers", "0"],
    ],
)
def test_invalid_settings_exit_before_evaluation(inputs, extra, capsys):
    root, model_path, evidence_path = inputs
    code = main(["--model", str(model_path), "--evidence", str(evidence_path), "--output", str(root / "out")] + extra)
    assert code == EXIT_INVALID_INPUT
    assert "[ERROR]" in capsys.readouterr().out
    assert not (root / "out").exists()


def test_config_file_is_merged(inputs):
    root, model_path, evidence_path = inputs
    config_path = root / "config.json"
    config_path.write_text(json.dumps({"POLICY": {"MODE": "Cautious"}, "OUTPUT": {"BASE_PATH": str(root / "out")}}))

    assert main(["--model", str(model_path), "--evidence", str(evidence_path), "--config", str(config_path)]) == EXIT_OK
    manifest = json.loads((_run_dir(root) / "manifest.json").read_text())
    assert manifest["toggles"]["policy.mode"] == "Cautious"


def test_unreadable_model_is_invalid_input(inputs):
    root, _, evidence_path = inputs
    assert main(["--model", str(root / "missing.json"), "--evidence", str(evidence_path)]) == EXIT_INVALID_INPUT


def test_malformed_config_section_is_invalid_input(inputs, capsys):
    root, model_path, evidence_path = inputs
    config_path = root / "config.json"
    config_path.write_text(json.dumps({"POLICY": "Aggressive", "OUTPUT": {"BASE_PATH": str(root / "out")}}))

    code = main(["--model", str(model_path), "--evidence", str(evidence_path), "--config", str(config_path)])
    assert code == EXIT_INVALID_INPUT
    assert "POLICY must be a section of settings" in capsys.readouterr().out
    assert not (root / "out").exists()
