"""Integration tests for CLI commands.

Each test runs in a temp working directory so data/ is created there.
"""

import re

import pytest
import structlog
from typer.testing import CliRunner

from edusync.cli.commands import app
from edusync.config.app_config import REMOTE_URL_ENV, clear_config_cache
from edusync.state.device_state import load_device_state

runner = CliRunner()

TOKEN_LINE = re.compile(r"^[A-Za-z0-9_-]{16,}$", re.MULTILINE)


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(REMOTE_URL_ENV, raising=False)
    clear_config_cache()
    yield tmp_path
    clear_config_cache()
    # The CLI points structlog at the runner's stderr, which is gone now
    structlog.reset_defaults()


def _invoke(*args):
    return runner.invoke(app, list(args))


def _signup(name, pin="1234", *extra):
    result = _invoke("signup", name, "--pin", pin, *extra)
    assert result.exit_code == 0, result.output
    return re.search(r"user_id:\S*\s+(\S+)", result.output).group(1)


class TestInit:
    def test_init_creates_store_and_config(self, workdir):
        result = _invoke("init")
        assert result.exit_code == 0
        assert "Store ready" in result.output
        assert (workdir / "data" / "db" / "edusync.db").exists()
        assert (workdir / "data" / "config" / "edusync_v1.yaml").exists()


class TestAccounts:
    def test_signup_login_logout(self):
        user_id = _signup("Asha")

        assert _invoke("logout").exit_code == 0
        result = _invoke("login", user_id, "--pin", "0000")
        assert result.exit_code == 1
        assert "Wrong PIN" in result.output

        result = _invoke("login", user_id, "--pin", "1234")
        assert result.exit_code == 0
        assert "Logged in as Asha" in result.output

    def test_users_lists_accounts(self):
        _signup("Asha")
        result = _invoke("users")
        assert result.exit_code == 0
        assert "Asha" in result.output


class TestProgressAndSharing:
    """End-to-end: record, share, import on the same device as another user."""

    def test_share_and_import_profile(self):
        _signup("Ravi")
        assert _invoke("record", "L1", "--score", "80", "--stars", "2").exit_code == 0

        shared = _invoke("share-profile")
        assert shared.exit_code == 0
        token = TOKEN_LINE.findall(shared.output)[-1]

        _signup("Asha")
        result = _invoke("import-payload", token)
        assert result.exit_code == 0, result.output
        assert "Updated 1 levels" in result.output

        history = _invoke("history")
        assert "Synced Progress" in history.output
        assert "days present" in _invoke("attendance").output

        board = _invoke("leaderboard")
        assert "Asha" in board.output
        assert "Ravi" in board.output

    def test_record_rejects_out_of_range(self):
        _signup("Asha")
        result = _invoke("record", "L1", "--score", "120", "--stars", "2")
        assert result.exit_code == 1

    def test_import_garbage(self):
        _signup("Asha")
        result = _invoke("import-payload", "@@@")
        assert result.exit_code == 1


class TestClassesCommands:
    def test_teacher_creates_and_student_joins(self):
        _signup("Mrs. Patil", "1111", "--role", "teacher")
        created = _invoke("create-class", "7A", "--standard", "7")
        assert created.exit_code == 0
        code = re.search(r"code:\S*\s+([A-Z0-9]{6})", created.output).group(1)

        _signup("Asha")
        joined = _invoke("join-class", code)
        assert joined.exit_code == 0
        assert "Joined 7A" in joined.output
        assert load_device_state().bound_class_id is not None

    def test_switching_user_drops_class_binding(self):
        _signup("Mrs. Patil", "1111", "--role", "teacher")
        created = _invoke("create-class", "7A")
        code = re.search(r"code:\S*\s+([A-Z0-9]{6})", created.output).group(1)
        _signup("Asha")
        assert _invoke("join-class", code).exit_code == 0

        assert _invoke("logout").exit_code == 0
        assert load_device_state().bound_class_id is None

        _signup("Ravi")
        assert load_device_state().bound_class_id is None

    def test_student_cannot_create_class(self):
        _signup("Asha")
        assert _invoke("create-class", "7A").exit_code == 1


class TestSyncAndReset:
    def test_sync_without_server_configured(self):
        _invoke("init")
        result = _invoke("sync")
        assert result.exit_code == 1
        assert "No class server" in result.output

    def test_reset_requires_confirmation(self):
        _signup("Asha")
        result = runner.invoke(app, ["reset"], input="n\n")
        assert result.exit_code == 1

        assert _invoke("reset", "--yes").exit_code == 0
        assert "Asha" not in _invoke("users").output
