"""Unit tests for session_store.cli.main.

Uses Click's test runner (CliRunner) with YAML configs for the files and
database drivers written to a temporary directory, so no external
services are required.
"""
from __future__ import annotations

import os
import time
from pathlib import Path

import pytest
from click.testing import CliRunner

from session_store.cli.main import cli
from session_store.factory import create_store
from session_store.fingerprint import make_digest

SID = "0123456789abcdef0123456789abcdef"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def files_config(tmp_path: Path, session_dir: Path) -> Path:
    path = tmp_path / "files.yaml"
    path.write_text(f"driver: files\ndirectory: {session_dir}\nmax_lifetime: 60\n")
    return path


@pytest.fixture()
def database_config(tmp_path: Path) -> Path:
    path = tmp_path / "database.yaml"
    path.write_text(f"driver: database\nurl: sqlite:///{tmp_path / 'sessions.db'}\n")
    return path


def _save(session_dir: Path, session_id: str, data: bytes) -> None:
    store = create_store("files", {"directory": session_dir})
    with store:
        store.read(session_id)
        store.write(session_id, data)


# ---------------------------------------------------------------------------
# version / describe
# ---------------------------------------------------------------------------


class TestVersionCommand:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestDescribeCommand:
    def test_lists_settings(self, runner: CliRunner, files_config: Path) -> None:
        result = runner.invoke(cli, ["describe", "--config", str(files_config)])
        assert result.exit_code == 0
        assert "files" in result.output
        assert "max_lifetime" in result.output

    def test_config_from_environment(self, runner: CliRunner, files_config: Path) -> None:
        result = runner.invoke(cli, ["describe"], env={"SESSION_STORE_CONFIG": str(files_config)})
        assert result.exit_code == 0

    def test_invalid_config_exits(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("driver: redis\nport: 0\n")
        result = runner.invoke(cli, ["describe", "--config", str(path)])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_missing_config_file(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["describe", "--config", str(tmp_path / "absent.yaml")])
        assert result.exit_code != 0


# ---------------------------------------------------------------------------
# gc
# ---------------------------------------------------------------------------


class TestGcCommand:
    def test_deletes_expired(self, runner: CliRunner, files_config: Path, session_dir: Path) -> None:
        _save(session_dir, SID, b"old")
        digest = make_digest(SID)
        past = time.time() - 3600
        os.utime(session_dir / digest[:2] / digest, (past, past))
        result = runner.invoke(cli, ["gc", "--config", str(files_config)])
        assert result.exit_code == 0
        assert "Deleted 1 expired session(s)." in result.output

    def test_max_lifetime_override(
        self, runner: CliRunner, files_config: Path, session_dir: Path
    ) -> None:
        _save(session_dir, SID, b"recent")
        result = runner.invoke(cli, ["gc", "--config", str(files_config), "--max-lifetime", "86400"])
        assert "Deleted 0 expired session(s)." in result.output


# ---------------------------------------------------------------------------
# read / destroy
# ---------------------------------------------------------------------------


class TestReadCommand:
    def test_prints_payload(self, runner: CliRunner, files_config: Path, session_dir: Path) -> None:
        _save(session_dir, SID, b"user|s:5:\"alice\";")
        result = runner.invoke(cli, ["read", SID, "--config", str(files_config)])
        assert result.exit_code == 0
        assert "alice" in result.output

    def test_raw_output(self, runner: CliRunner, files_config: Path, session_dir: Path) -> None:
        _save(session_dir, SID, b"raw-bytes")
        result = runner.invoke(cli, ["read", SID, "--config", str(files_config), "--raw"])
        assert result.exit_code == 0
        assert result.stdout_bytes == b"raw-bytes"

    def test_missing_session(self, runner: CliRunner, files_config: Path) -> None:
        result = runner.invoke(cli, ["read", SID, "--config", str(files_config)])
        assert result.exit_code == 1
        assert "No session found" in result.output


class TestDestroyCommand:
    def test_destroys(self, runner: CliRunner, files_config: Path, session_dir: Path) -> None:
        _save(session_dir, SID, b"doomed")
        result = runner.invoke(cli, ["destroy", SID, "--config", str(files_config)])
        assert result.exit_code == 0
        assert "Session destroyed" in result.output
        digest = make_digest(SID)
        assert not (session_dir / digest[:2] / digest).exists()


# ---------------------------------------------------------------------------
# validate-id
# ---------------------------------------------------------------------------


class TestValidateIdCommand:
    def test_valid(self, runner: CliRunner, files_config: Path) -> None:
        result = runner.invoke(cli, ["validate-id", SID, "--config", str(files_config)])
        assert result.exit_code == 0
        assert "Valid" in result.output

    def test_invalid(self, runner: CliRunner, files_config: Path) -> None:
        result = runner.invoke(cli, ["validate-id", "not-an-id", "--config", str(files_config)])
        assert result.exit_code == 1
        assert "Invalid" in result.output


# ---------------------------------------------------------------------------
# init-db
# ---------------------------------------------------------------------------


class TestInitDbCommand:
    def test_creates_schema(self, runner: CliRunner, database_config: Path) -> None:
        result = runner.invoke(cli, ["init-db", "--config", str(database_config)])
        assert result.exit_code == 0
        assert "Schema ready" in result.output
        assert "Sessions" in result.output

    def test_rejects_other_drivers(self, runner: CliRunner, files_config: Path) -> None:
        result = runner.invoke(cli, ["init-db", "--config", str(files_config)])
        assert result.exit_code == 1
        assert "database driver" in result.output

    def test_unreachable_database(self, runner: CliRunner, tmp_path: Path) -> None:
        config = tmp_path / "broken.yaml"
        config.write_text(f"driver: database\nurl: sqlite:///{tmp_path / 'missing' / 'sessions.db'}\n")
        result = runner.invoke(cli, ["init-db", "--config", str(config)])
        assert result.exit_code == 1
        assert "Could not create the schema" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)
