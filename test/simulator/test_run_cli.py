"""Tests for the command-line entry point."""

from __future__ import annotations

import json

import pytest

from simulator.run import main


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "GOBANK_SIM_BASE_URL",
        "GOBANK_SIM_ADMIN_NUMBER",
        "GOBANK_SIM_ADMIN_PASSWORD",
        "GOBANK_SIM_PASSWORD",
    ):
        monkeypatch.delenv(name, raising=False)


def test_fixture_run_writes_report_and_exits_zero(tmp_path):
    output = tmp_path / "reports" / "transfer.json"
    code = main(
        [
            "--mode",
            "fixture",
            "--stages",
            "1:100ms",
            "--pacing",
            "0s",
            "--seed",
            "3",
            "--output",
            str(output),
        ]
    )

    assert code == 0
    report = json.loads(output.read_text(encoding="utf-8"))
    assert report["config"]["mode"] == "fixture"
    assert report["config"]["seed"] == 3
    assert report["result"]["all_passed"] is True
    assert report["result"]["iteration_count"] >= 1
    assert report["summary"]["failed_check_samples"] == []


def test_stages_file_overrides_stages(tmp_path):
    stages_file = tmp_path / "stages.json"
    stages_file.write_text(json.dumps({"stages": [{"target": 1, "duration": "100ms"}]}), encoding="utf-8")
    output = tmp_path / "out.json"

    code = main(
        [
            "--mode",
            "fixture",
            "--stages",
            "50:1h",
            "--stages-file",
            str(stages_file),
            "--pacing",
            "0s",
            "--output",
            str(output),
        ]
    )

    assert code == 0
    report = json.loads(output.read_text(encoding="utf-8"))
    assert [s["target"] for s in report["config"]["stages"]] == [1]


def test_failed_checks_exit_one(tmp_path):
    # Amounts above every opening balance: each transfer is refused.
    code = main(
        [
            "--mode",
            "fixture",
            "--stages",
            "1:100ms",
            "--pacing",
            "0s",
            "--amount-min",
            "5000",
            "--amount-max",
            "5001",
        ]
    )
    assert code == 1


def test_expected_rejections_exit_zero():
    code = main(
        [
            "--mode",
            "fixture",
            "--stages",
            "1:100ms",
            "--pacing",
            "0s",
            "--amount-min",
            "5000",
            "--amount-max",
            "5001",
            "--rejected-transfer",
            "expected",
        ]
    )
    assert code == 0


@pytest.mark.parametrize(
    "argv",
    [
        ["--mode", "fixture", "--stages", "ten:30s"],
        ["--mode", "fixture", "--stages", ""],
        ["--mode", "fixture", "--pacing", "soon"],
        ["--mode", "fixture", "--amount-min", "100", "--amount-max", "20"],
        ["--mode", "fixture", "--stages-file", "/nonexistent/stages.json"],
    ],
)
def test_invalid_arguments_exit_two(argv):
    assert main(argv) == 2


def test_live_mode_without_base_url_exits_two():
    assert main(["--mode", "live", "--stages", "1:10ms"]) == 2


def test_unknown_mode_is_rejected_by_argparse():
    with pytest.raises(SystemExit) as exc_info:
        main(["--mode", "staging"])
    assert exc_info.value.code == 2


def test_non_numeric_admin_number_from_env_exits_two(monkeypatch):
    monkeypatch.setenv("GOBANK_SIM_ADMIN_NUMBER", "admin")
    with pytest.raises(SystemExit) as exc_info:
        main(["--mode", "fixture", "--stages", "1:10ms"])
    assert exc_info.value.code == 2


def test_stages_file_with_non_integer_target_exits_two(tmp_path):
    stages_file = tmp_path / "stages.json"
    stages_file.write_text(json.dumps([{"target": "many", "duration": "1s"}]), encoding="utf-8")
    assert main(["--mode", "fixture", "--stages-file", str(stages_file)]) == 2
