"""Tests for the command-line entry point."""
from datetime import datetime, timezone

import pytest

import main
from core.config import TOKEN_ENV_VAR
from core.tracking_store import TrackingStore
from models.problem import TrackedProblem


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    db_path = tmp_path / "state" / "relay.db"
    path = tmp_path / "config.yaml"
    path.write_text(
        "dynatrace:\n"
        "  base_url: https://abc.live.dynatrace.com\n"
        "  tenant: abc\n"
        "polling:\n"
        "  interval_seconds: 60\n"
        "database:\n"
        f"  path: {db_path.as_posix()}\n"
        "connectors:\n"
        "  - name: hook\n"
        "    url: https://hooks.example.com/x\n",
        encoding="utf-8",
    )
    monkeypatch.setenv(TOKEN_ENV_VAR, "dt0c01.secret")
    return path, db_path


def seed(db_path, *problem_ids):
    store = TrackingStore.open(str(db_path))
    now = datetime.now(timezone.utc)
    for problem_id in problem_ids:
        store.insert(
            TrackedProblem(
                problem_id=problem_id,
                status="OPEN",
                title=problem_id,
                severity=None,
                first_seen_at=now,
                last_forwarded_at=now,
                last_status_change_at=now,
            )
        )
    store.close()


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        main.build_parser().parse_args([])


def test_parser_reads_config_path():
    args = main.build_parser().parse_args(["clear-cache", "--config", "/etc/relay.yaml", "--yes"])
    assert args.command == "clear-cache"
    assert args.config == "/etc/relay.yaml"
    assert args.yes is True


def test_stats_command(config_file, capsys):
    path, db_path = config_file
    seed(db_path, "P1", "P2")

    assert main.main(["stats", "--config", str(path)]) == 0

    out = capsys.readouterr().out
    assert "Total problems tracked:  2" in out
    assert "Open problems:         2" in out


def test_clear_cache_command(config_file, capsys):
    path, db_path = config_file
    seed(db_path, "P1")

    assert main.main(["clear-cache", "--yes", "--config", str(path)]) == 0

    assert "Cleared 1 problems from cache" in capsys.readouterr().out


def test_clear_cache_can_be_declined(config_file, monkeypatch):
    path, db_path = config_file
    seed(db_path, "P1")
    monkeypatch.setattr("builtins.input", lambda prompt: "n")

    assert main.main(["clear-cache", "--config", str(path)]) == 0

    store = TrackingStore.open(str(db_path))
    try:
        assert store.lookup("P1") is not None
    finally:
        store.close()


def test_configuration_errors_exit_with_status_one(tmp_path, capsys):
    assert main.main(["stats", "--config", str(tmp_path / "missing.yaml")]) == 1
    assert "Error: Configuration file not found" in capsys.readouterr().err
