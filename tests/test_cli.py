"""Tests for CLI argument parsing and the record commands."""

import json

import pytest

from live_check import cli
from live_check.storage import ReviewStore


def test_check_parser_defaults():
    args = cli._build_parser().parse_args(["check", "r1", "r2"])
    assert args.ids == ["r1", "r2"]
    assert args.principal == "cli"
    assert args.concurrency == 3


def test_check_parser_accepts_concurrency_and_principal():
    args = cli._build_parser().parse_args(["check", "r1", "--concurrency", "7", "--principal", "ops"])
    assert args.concurrency == 7
    assert args.principal == "ops"


def test_add_parser_rejects_unknown_status():
    with pytest.raises(SystemExit):
        cli._build_parser().parse_args(["add", "r1", "https://a", "--status", "BOGUS"])


def test_inspect_parser_headful_flag():
    args = cli._build_parser().parse_args(["inspect", "https://a", "--headful"])
    assert args.headful is True
    assert args.hint is None


def test_add_and_show(tmp_path, monkeypatch, capsys):
    db_path = str(tmp_path / "reviews.db")
    monkeypatch.setattr("live_check.storage.DB_PATH", db_path)
    monkeypatch.setattr("live_check.storage.ensure_dirs", lambda: None)

    cli.cmd_add("r1", "https://maps.app.goo.gl/one", text="Great service", status="APPLIED")
    assert cli.cmd_show("r1") == 0
    out = capsys.readouterr().out
    record = json.loads(out[out.index("{"):])
    assert record["status"] == "APPLIED"
    assert record["review_text"] == "Great service"
    assert ReviewStore(db_path=db_path).count() == 1


def test_show_missing_record(tmp_path, monkeypatch):
    monkeypatch.setattr("live_check.storage.DB_PATH", str(tmp_path / "reviews.db"))
    monkeypatch.setattr("live_check.storage.ensure_dirs", lambda: None)
    assert cli.cmd_show("ghost") == 1
