"""CLI tests for validate/report/cost commands."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from labellens.cli.app import app

HEADER = "record_id,platform,project,annotator_id,task_type,submitted_at,time_spent_seconds,experience_days,quality_score,error_flag,error_type\n"


def _write_csv(path: Path, with_invalid: bool = False) -> Path:
    lines = [HEADER]
    for i in range(6):
        err = "true,misclassification" if i < 2 else "false,none"
        lines.append(f"a{i},A,p1,ann{i % 2},bbox,2024-03-04T10:00:00,40,10,0.8,{err}\n")
    for i in range(4):
        err = "true,other" if i < 1 else "false,none"
        lines.append(f"b{i},B,p1,ann9,seg,2024-03-05T15:00:00,90,100,0.6,{err}\n")
    if with_invalid:
        lines.append("bad,B,p1,ann9,seg,2024-03-05T15:00:00,90,-5,0.6,false,none\n")
    path.write_text("".join(lines), encoding="utf-8")
    return path


@pytest.fixture
def runner():
    return CliRunner()


def test_list_reports(runner):
    res = runner.invoke(app, ["list-reports"])
    assert res.exit_code == 0
    assert "platform_error_rates" in res.stdout


def test_validate_strict_rejects_invalid(runner, tmp_path):
    path = _write_csv(tmp_path / "data.csv", with_invalid=True)
    res = runner.invoke(app, ["validate", "--input", str(path), "--policy", "strict"])
    assert res.exit_code == 1
    assert "invalid record" in res.stdout


def test_validate_skip_reports_diagnostics(runner, tmp_path):
    path = _write_csv(tmp_path / "data.csv", with_invalid=True)
    res = runner.invoke(app, ["validate", "--input", str(path), "--policy", "skip"])
    assert res.exit_code == 0
    assert "Accepted 10 record(s)" in res.stdout
    assert "Rejected 1 record(s)" in res.stdout


def test_report_writes_json(runner, tmp_path):
    path = _write_csv(tmp_path / "data.csv")
    out = tmp_path / "out" / "report.json"
    res = runner.invoke(app, ["report", "platform_error_rates", "--input", str(path), "--json", str(out)])
    assert res.exit_code == 0, res.stdout

    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload["name"] == "platform_error_rates"
    assert payload["record_count"] == 10
    assert [r["key"]["platform"] for r in payload["rows"]] == ["A", "B"]
    assert payload["rows"][0]["values"]["error_rate_pct"] == 33.33


def test_report_unknown_name(runner, tmp_path):
    path = _write_csv(tmp_path / "data.csv")
    res = runner.invoke(app, ["report", "nope", "--input", str(path)])
    assert res.exit_code == 1
    assert "UnknownReport" in res.stdout


def test_cost_from_counts(runner):
    res = runner.invoke(
        app,
        ["cost", "--total", "1000", "--errors", "150", "--annotation-unit-cost", "0.10", "--rework-unit-cost", "0.20"],
    )
    assert res.exit_code == 0
    assert "130.00" in res.stdout
    assert "23.08" in res.stdout


def test_cost_from_csv(runner, tmp_path):
    path = _write_csv(tmp_path / "data.csv")
    res = runner.invoke(app, ["cost", "--input", str(path)])
    assert res.exit_code == 0
    assert "ALL" in res.stdout


def test_cost_requires_inputs(runner):
    res = runner.invoke(app, ["cost"])
    assert res.exit_code == 1


def test_validate_writes_json(runner, tmp_path):
    path = _write_csv(tmp_path / "data.csv", with_invalid=True)
    out = tmp_path / "validation.json"
    res = runner.invoke(app, ["validate", "--input", str(path), "--policy", "skip", "--json", str(out)])
    assert res.exit_code == 0, res.stdout

    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload["policy"] == "skip"
    assert payload["accepted"] == 10
    assert payload["rejected"] == 1
    assert payload["failures"][0]["record_id"] == "bad"
    assert payload["failures"][0]["kind"] == "NegativeExperienceDays"
    assert payload["failures"][0]["field"] == "experience_days"


def test_cost_writes_json(runner, tmp_path):
    path = _write_csv(tmp_path / "data.csv")
    out = tmp_path / "cost.json"
    res = runner.invoke(
        app,
        [
            "cost",
            "--input",
            str(path),
            "--annotation-unit-cost",
            "0.10",
            "--rework-unit-cost",
            "0.20",
            "--json",
            str(out),
        ],
    )
    assert res.exit_code == 0, res.stdout

    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload["annotation_unit_cost"] == 0.10
    by_scope = {s["scope"]: s for s in payload["summaries"]}
    assert list(by_scope) == ["A", "B", "ALL"]
    assert by_scope["ALL"]["total_count"] == 10
    assert by_scope["ALL"]["total_error_count"] == 3
    assert by_scope["ALL"]["total_cost"] == 1.6


@pytest.mark.parametrize("command", [["validate"], ["report", "platform_error_rates"], ["cost"]])
def test_missing_input_file_exits_cleanly(runner, tmp_path, command):
    res = runner.invoke(app, [*command, "--input", str(tmp_path / "missing.csv")])
    assert res.exit_code == 1
    assert res.exception is None or isinstance(res.exception, SystemExit)
    assert "Cannot read" in res.stdout


def test_non_utf8_input_exits_cleanly(runner, tmp_path):
    path = tmp_path / "latin1.csv"
    path.write_bytes(HEADER.encode("utf-8") + "a1,Plateforme é,p1,ann1,bbox,2024-03-04T10:00:00,40,10,0.8,false,none\n".encode("latin-1"))
    res = runner.invoke(app, ["validate", "--input", str(path)])
    assert res.exit_code == 1
    assert "Cannot read" in res.stdout


def test_console_entry_point_runs_app(monkeypatch, capsys):
    from labellens.cli import main

    monkeypatch.setattr("sys.argv", ["labellens", "list-reports"])
    with pytest.raises(SystemExit) as exc:
        main()
    assert exc.value.code == 0
    assert "Reports" in capsys.readouterr().out
