"""Smoke tests for the memory-bridge CLI."""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from memory_bridge.cli import app
from memory_bridge.errors import AuthenticationError

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "storage": "sqlite",
        "path": str(tmp_path / "memory.db"),
        "agentId": "cli-agent",
        "version": "1.0.0",
    }))
    return path


def invoke(config_file, *args):
    return runner.invoke(app, ["--config", str(config_file), *args])


class TestStoreCommand:
    def test_store_prints_id(self, config_file):
        result = invoke(config_file, "store", "User prefers dark mode", "--type", "preference")
        assert result.exit_code == 0
        assert "Stored preference memory" in result.output
        assert "importance 5" in result.output

    def test_store_json(self, config_file):
        result = invoke(config_file, "--json", "store", "Ship it", "--importance", "42")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["importance"] == 10
        assert data["agent_id"] == "cli-agent"

    def test_empty_content_fails(self, config_file):
        result = invoke(config_file, "store", "   ")
        assert result.exit_code == 1
        assert "empty" in result.output


class TestQueryCommand:
    def test_query_after_store(self, config_file):
        invoke(config_file, "store", "Nikola wants to build 3 products this quarter", "--type", "goal", "-i", "9")
        invoke(config_file, "store", "Lunch was pasta")

        result = invoke(config_file, "--json", "query", "what Nikola wants to build", "--limit", "1")

        assert result.exit_code == 0
        [top] = json.loads(result.stdout)
        assert top["content"] == "Nikola wants to build 3 products this quarter"
        assert 0 < top["relevance"] <= 1

    def test_query_table(self, config_file):
        invoke(config_file, "store", "Prefer [bold] tabs over spaces")
        result = invoke(config_file, "query", "tabs")
        assert result.exit_code == 0
        assert "tabs" in result.output

    def test_query_nothing(self, config_file):
        result = invoke(config_file, "query", "anything")
        assert result.exit_code == 0
        assert "No memories found" in result.output

    def test_invalid_limit_fails(self, config_file):
        result = invoke(config_file, "query", "anything", "--limit", "0")
        assert result.exit_code == 1

    def test_agent_option(self, config_file):
        invoke(config_file, "store", "private note", "--agent", "someone")
        result = invoke(config_file, "--json", "query", "private note")
        assert json.loads(result.stdout) == []
        result = invoke(config_file, "--json", "query", "private note", "--agent", "someone")
        assert len(json.loads(result.stdout)) == 1


class TestTimelineCommand:
    def test_empty_timeline(self, config_file):
        result = invoke(config_file, "timeline", "7")
        assert result.exit_code == 0
        assert "No memories" in result.output

    def test_timeline_json(self, config_file):
        invoke(config_file, "store", "first")
        invoke(config_file, "store", "second")
        result = invoke(config_file, "--json", "timeline", "1")

        assert result.exit_code == 0
        grouped = json.loads(result.stdout)
        [(day, memories)] = grouped.items()
        assert [m["content"] for m in memories] == ["second", "first"]
        assert memories[0]["created_at"].startswith(day)

    def test_timeline_text(self, config_file):
        invoke(config_file, "store", "something happened", "--type", "error")
        result = invoke(config_file, "timeline", "1")
        assert result.exit_code == 0
        assert "[error]" in result.output
        assert "something happened" in result.output

    def test_non_positive_days_fails(self, config_file):
        result = invoke(config_file, "timeline", "0")
        assert result.exit_code == 1


class TestContextCommand:
    def test_context(self, config_file):
        invoke(config_file, "store", "User prefers dark mode", "--type", "preference")
        result = invoke(config_file, "context")
        assert result.exit_code == 0
        assert "## Preferences" in result.output

    def test_no_context(self, config_file):
        result = invoke(config_file, "context")
        assert "No stored context" in result.output


class TestInitCommand:
    def test_init_creates_config(self, tmp_path):
        memory_dir = tmp_path / "bridge"
        result = runner.invoke(app, ["init", "--dir", str(memory_dir), "--agent", "OpenClaw"])

        assert result.exit_code == 0
        data = json.loads((memory_dir / "config.json").read_text())
        assert data["agentId"] == "OpenClaw"
        assert data["storage"] == "sqlite"
        assert data["path"] == str(memory_dir / "memory.db")

    def test_init_twice_reports_installed(self, tmp_path):
        memory_dir = tmp_path / "bridge"
        runner.invoke(app, ["init", "--dir", str(memory_dir)])
        result = runner.invoke(app, ["init", "--dir", str(memory_dir), "--agent", "changed"])

        assert result.exit_code == 0
        assert "already installed" in result.output
        assert json.loads((memory_dir / "config.json").read_text())["agentId"] == "default"

    def test_init_remote(self, tmp_path):
        memory_dir = tmp_path / "bridge"
        result = runner.invoke(app, [
            "init", "--dir", str(memory_dir), "--storage", "redis", "--url", "redis://cache:6379/0",
        ])
        assert result.exit_code == 0
        data = json.loads((memory_dir / "config.json").read_text())
        assert data["url"] == "redis://cache:6379/0"

    def test_init_unknown_storage(self, tmp_path):
        result = runner.invoke(app, ["init", "--dir", str(tmp_path / "b"), "--storage", "mongo"])
        assert result.exit_code == 1


class TestErrors:
    def test_authentication_error_exit_code(self, config_file):
        with patch("memory_bridge.cli.MemoryStore.from_config", side_effect=AuthenticationError("WRONGPASS")):
            result = invoke(config_file, "query", "anything")
        assert result.exit_code == 2
        assert "Authentication failed" in result.output

    def test_wrongly_typed_config_value(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"storage": "sqlite", "version": 1}))
        result = invoke(path, "query", "anything")
        assert result.exit_code == 1
        assert not isinstance(result.exception, AttributeError)
        assert "version must be a string" in result.output

    def test_bad_config_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{broken")
        result = invoke(path, "query", "anything")
        assert result.exit_code == 1
