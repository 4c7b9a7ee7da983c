"""Tests for the command-line entry point (file-backed store, no model calls)."""
from __future__ import annotations

import json

import cli


def test_tasks_empty(file_store_dir, capsys):
    assert cli.main(["--instance", "cli-test", "tasks"]) == 0
    assert json.loads(capsys.readouterr().out) == []


def test_add_then_list(file_store_dir, capsys):
    assert cli.main(["--instance", "cli-test", "add", "Pay invoice from Acme", "--date", "2026-03-12"]) == 0
    capsys.readouterr()

    assert cli.main(["--instance", "cli-test", "tasks"]) == 0
    tasks = json.loads(capsys.readouterr().out)
    assert [t["title"] for t in tasks] == ["Pay invoice from Acme"]
    assert tasks[0]["scheduledDate"] == "2026-03-12"


def test_config_update_reports_rejected_fields(file_store_dir, capsys):
    code = cli.main(["--instance", "cli-test", "config", "maxScansPerDay=24", "scanIntervalActiveMs=5"])

    out = json.loads(capsys.readouterr().out)
    assert code == 1
    assert out["config"]["maxScansPerDay"] == 24
    assert out["rejected"] == ["scanIntervalActiveMs"]


def test_accept_unknown_task(file_store_dir, capsys):
    assert cli.main(["--instance", "cli-test", "accept", "todo_missing"]) == 1
    assert "Task not found" in capsys.readouterr().err


def test_accept_non_suggestion_is_an_error(file_store_dir, capsys):
    cli.main(["--instance", "cli-test", "add", "Manual task"])
    task_id = json.loads(capsys.readouterr().out)["id"]

    assert cli.main(["--instance", "cli-test", "accept", task_id]) == 1
    assert "not suggested" in capsys.readouterr().err
