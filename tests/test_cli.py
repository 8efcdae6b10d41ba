import json
from unittest.mock import patch

from typer.testing import CliRunner

from tfaction.cli import app
from tfaction.github.events import Context

runner = CliRunner()

CONFIG = """
projects:
  - name: network
    dir: infra/network
  - name: app
    dir: app
    branch: ^main$
"""


def test_parse():
    result = runner.invoke(app, ["parse", "terraform plan -p network -lock=false"])
    assert result.exit_code == 0
    assert "command:  plan" in result.stdout
    assert "projects: network" in result.stdout
    assert "args:     -lock=false" in result.stdout

    result = runner.invoke(app, ["parse", "lgtm"])
    assert result.exit_code == 1
    assert "No command found" in result.stdout


def test_resolve(tmp_path):
    config = tmp_path / "tf.yaml"
    config.write_text(CONFIG)

    result = runner.invoke(app, ["resolve", "--config", str(config)])
    assert result.exit_code == 0
    assert result.stdout.splitlines() == ["network\tinfra/network", "app\tapp"]

    result = runner.invoke(
        app, ["resolve", "--config", str(config), "--branch", "feature"]
    )
    assert result.stdout.splitlines() == ["network\tinfra/network"]

    result = runner.invoke(
        app,
        ["resolve", "--config", str(config), "--changed-file", "docs/index.md"],
    )
    assert "No projects matched" in result.stdout

    result = runner.invoke(app, ["resolve", "--config", str(config), "-p", "nope"])
    assert result.exit_code == 1


def test_run_exit_code(tmp_path):
    event_path = tmp_path / "event.json"
    event_path.write_text(json.dumps({"action": "created"}))

    async def fatal(settings, event):
        context = Context(settings=settings)
        context.errors.append("RuntimeError: boom")
        return context

    async def ok(settings, event):
        assert event.event == "issue_comment"
        assert event.data == {"action": "created"}
        return Context(settings=settings)

    args = ["run", "--event-name", "issue_comment", "--event-path", str(event_path)]

    with patch("tfaction.cli.handle_event", ok):
        assert runner.invoke(app, args).exit_code == 0

    with patch("tfaction.cli.handle_event", fatal):
        assert runner.invoke(app, args).exit_code == 1


def test_run_requires_event(monkeypatch):
    monkeypatch.delenv("GITHUB_EVENT_NAME", raising=False)
    monkeypatch.delenv("GITHUB_EVENT_PATH", raising=False)
    result = runner.invoke(app, ["run"])
    assert result.exit_code == 2
