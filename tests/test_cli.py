"""Tests for rollcall CLI commands."""

import json
import logging
import os
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from rollcall.agents import AggregateError, agent_from_issue, agent_from_session
from rollcall.beads import TrackerError
from rollcall.cli import DEFAULT_PORT, main
from rollcall.config import get_setting, set_setting
from rollcall.mail import MailIndexEntry, issue_to_message
from rollcall.snapshot import AgentSnapshot
from tests.conftest import make_issue


@pytest.fixture
def runner():
    """Click CLI runner."""
    return CliRunner()


@pytest.fixture
def invoke(runner, town, tmp_path):
    """Invoke the CLI against the sample town."""
    def _invoke(*args):
        return runner.invoke(main, ["--home", str(tmp_path / "h"), "--town-root", str(town), *args])
    return _invoke


def _snapshot(errors=()):
    mayor = agent_from_issue(
        make_issue("hq-mayor", agent_state="working", hook_bead="gt-4f2a"), None, {"hq-mayor"},
    )
    mayor.unread_mail = 3
    mayor.hook_bead_title = "Fix login"
    nux = agent_from_session("gt-acme-nux")
    nux.branch = "polecat/nux"
    return AgentSnapshot(agents=[mayor, nux], mail_index={}, errors=list(errors))


def _message(id, title, **kw):
    return issue_to_message(make_issue(id, issue_type="message", assignee="mayor/", title=title, **kw))


class TestAgentsCommand:
    def test_table(self, invoke):
        snap = _snapshot(errors=["sessions: tmux unavailable"])
        with patch("rollcall.snapshot.collect_agent_snapshot", new=AsyncMock(return_value=snap)):
            result = invoke("agents")
        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        mayor_line = next(line for line in lines if "mayor/" in line)
        assert "running" in mayor_line
        assert "[working]" in mayor_line
        assert "3" in mayor_line
        assert "Fix login" in mayor_line
        nux_line = next(line for line in lines if "acme/nux" in line)
        assert "(polecat/nux)" in nux_line
        assert "warning: sessions: tmux unavailable" in result.output

    def test_json(self, invoke):
        with patch("rollcall.snapshot.collect_agent_snapshot", new=AsyncMock(return_value=_snapshot())):
            result = invoke("agents", "--json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [a["id"] for a in data["agents"]] == ["hq-mayor", "acme/nux"]

    def test_empty_roster(self, invoke):
        empty = AgentSnapshot(agents=[], mail_index={})
        with patch("rollcall.snapshot.collect_agent_snapshot", new=AsyncMock(return_value=empty)):
            result = invoke("agents")
        assert result.exit_code == 0
        assert "No agents found." in result.output

    def test_all_sources_failed(self, invoke):
        error = AggregateError([TrackerError("SPAWN_ERROR", "bd not found")])
        with patch("rollcall.snapshot.collect_agent_snapshot", new=AsyncMock(side_effect=error)):
            result = invoke("agents")
        assert result.exit_code == 1
        assert "No agent source could be read: bd not found" in result.output

    def test_no_town(self, runner, tmp_path):
        with runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(main, ["--home", str(tmp_path / "h"), "agents"])
        assert result.exit_code == 1
        assert "Could not determine town root" in result.output


class TestMailCommand:
    def test_normalizes_identities(self, invoke):
        index = {
            "acme/vin": MailIndexEntry(unread=2, first_subject="Rebase", first_from="mayor/"),
            "mayor/": MailIndexEntry(),
        }
        fake = AsyncMock(return_value=index)
        with patch("rollcall.mail.build_mail_index_for_identities", new=fake):
            result = invoke("mail", "acme/crew/vin", "mayor/")
        assert result.exit_code == 0, result.output
        assert fake.call_args.args[1] == ["acme/vin", "mayor/"]
        assert "2 unread  latest: Rebase (from mayor/)" in result.output
        assert "0 unread" in result.output

    def test_json(self, invoke):
        fake = AsyncMock(return_value={"mayor/": MailIndexEntry(unread=1, first_subject="Hi")})
        with patch("rollcall.mail.build_mail_index_for_identities", new=fake):
            result = invoke("mail", "mayor/", "--json")
        assert json.loads(result.output) == {"mayor/": {"unread": 1, "first_subject": "Hi"}}

    def test_requires_identity(self, invoke):
        assert invoke("mail").exit_code == 2


class TestInboxCommand:
    def test_hides_infrastructure_by_default(self, invoke):
        messages = [
            _message("hq-2", "Please review", labels=("from:deacon/",)),
            _message("hq-1", "WITNESS_PING acme", status="closed"),
        ]
        with patch("rollcall.mail.list_inbox", new=AsyncMock(return_value=messages)):
            result = invoke("inbox", "mayor/")
        assert result.exit_code == 0, result.output
        assert "Please review" in result.output
        assert "WITNESS_PING" not in result.output
        assert result.output.startswith("* hq-2")

    def test_all_includes_infrastructure(self, invoke):
        messages = [_message("hq-1", "WITNESS_PING acme", status="closed")]
        with patch("rollcall.mail.list_inbox", new=AsyncMock(return_value=messages)):
            result = invoke("inbox", "mayor/", "--all")
        assert "WITNESS_PING acme" in result.output
        assert result.output.startswith("  hq-1")

    def test_empty(self, invoke):
        with patch("rollcall.mail.list_inbox", new=AsyncMock(return_value=[])):
            result = invoke("inbox", "mayor/")
        assert "No mail." in result.output

    def test_tracker_failure(self, invoke):
        error = TrackerError("TIMEOUT", "bd timed out after 30s")
        with patch("rollcall.mail.list_inbox", new=AsyncMock(side_effect=error)):
            result = invoke("inbox", "mayor/")
        assert result.exit_code == 1
        assert "bd timed out after 30s" in result.output


class TestServeCommand:
    def test_runs_uvicorn(self, invoke, town):
        with patch("uvicorn.run") as run:
            result = invoke("serve", "--port", "4000")
        assert result.exit_code == 0, result.output
        assert f"Serving {town.resolve()} on http://127.0.0.1:4000" in result.output
        assert run.call_args.kwargs == {"host": "127.0.0.1", "port": 4000, "log_level": "info"}

    def test_default_port(self, invoke):
        with patch("uvicorn.run") as run:
            invoke("serve")
        assert run.call_args.kwargs["port"] == DEFAULT_PORT


class TestEnvFile:
    def test_town_root_from_env_file(self, runner, town, tmp_path):
        env_file = tmp_path / "town.env"
        env_file.write_text(f"GT_TOWN_ROOT={town}\n")
        fake = AsyncMock(return_value=AgentSnapshot(agents=[], mail_index={}))
        with patch.dict(os.environ), \
             patch("rollcall.snapshot.collect_agent_snapshot", new=fake), \
             runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(main, ["--home", str(tmp_path / "h"), "--env-file", str(env_file), "agents"])
        assert result.exit_code == 0, result.output
        assert fake.call_args.args[0].root == town.resolve()

    def test_missing_env_file(self, invoke, tmp_path):
        assert invoke("--env-file", str(tmp_path / "nope.env"), "agents").exit_code == 2


class TestLogLevel:
    def test_verbose_forces_debug(self, invoke):
        empty = AgentSnapshot(agents=[], mail_index={})
        with patch("rollcall.logging_setup.configure_logging") as configure, \
             patch("rollcall.snapshot.collect_agent_snapshot", new=AsyncMock(return_value=empty)):
            result = invoke("-v", "agents")
        assert result.exit_code == 0, result.output
        assert configure.call_args.kwargs == {"level": logging.DEBUG, "console": True}

    def test_level_from_config(self, invoke, tmp_path):
        set_setting(tmp_path / "h", "log_level", "warning")
        empty = AgentSnapshot(agents=[], mail_index={})
        with patch("rollcall.logging_setup.configure_logging") as configure, \
             patch("rollcall.snapshot.collect_agent_snapshot", new=AsyncMock(return_value=empty)):
            result = invoke("agents")
        assert result.exit_code == 0, result.output
        assert configure.call_args.kwargs == {"level": logging.WARNING, "console": False}


class TestConfigCommands:
    def test_set_parses_yaml_values(self, runner, tmp_path):
        home = tmp_path / "h"
        assert runner.invoke(main, ["--home", str(home), "config", "set", "bd_timeout", "12"]).exit_code == 0
        result = runner.invoke(main, ["--home", str(home), "config", "set", "extra_rigs", "[/a, /b]"])
        assert result.exit_code == 0, result.output
        assert get_setting(home, "bd_timeout") == 12
        assert get_setting(home, "extra_rigs") == ["/a", "/b"]

    def test_set_feeds_town_context(self, runner, town, tmp_path):
        home = tmp_path / "h"
        runner.invoke(main, ["--home", str(home), "config", "set", "town_root", str(town)])
        runner.invoke(main, ["--home", str(home), "config", "set", "operator", "boss"])
        fake = AsyncMock(return_value=AgentSnapshot(agents=[], mail_index={}))
        with patch("rollcall.snapshot.collect_agent_snapshot", new=fake), \
             runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(main, ["--home", str(home), "agents"])
        assert result.exit_code == 0, result.output
        town_ctx = fake.call_args.args[0]
        assert town_ctx.root == town.resolve()
        assert town_ctx.operator == "boss"

    def test_set_rejects_unknown_key(self, runner, tmp_path):
        result = runner.invoke(main, ["--home", str(tmp_path / "h"), "config", "set", "colour", "red"])
        assert result.exit_code == 2

    def test_show(self, runner, tmp_path):
        home = tmp_path / "h"
        set_setting(home, "log_level", "debug")
        result = runner.invoke(main, ["--home", str(home), "config", "show"])
        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert "log_level:       debug" in lines
        assert "operator:        (not set)" in lines

    def test_needs_no_town(self, runner, tmp_path):
        with runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(main, ["--home", str(tmp_path / "h"), "config", "show"])
        assert result.exit_code == 0, result.output
