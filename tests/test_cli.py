import io
import json

import pytest
from click.testing import CliRunner
from rich.console import Console

from keel.agent.events import AgentEvent
from keel.exceptions import ConfigurationError
from keel.stream.models import StreamSnapshot
from keel.tools.dispatch import FunctionToolExecutor
from keel.tools.models import ActionState, ActionStatus
from keel.ui.theme import KEEL_THEME
from keel.ui.tui import TUI
from main import load_executor, load_tool_schemas, main


class TestLoadExecutor:
    def test_class_is_instantiated(self):
        assert isinstance(load_executor("keel.tools.dispatch:FunctionToolExecutor"), FunctionToolExecutor)

    @pytest.mark.parametrize(
        "reference",
        ["no_colon", "keel.does_not_exist:Thing", "keel.tools.dispatch:Missing", "keel.constants:APP_NAME"],
    )
    def test_bad_references_are_configuration_errors(self, reference):
        with pytest.raises(ConfigurationError):
            load_executor(reference)


def test_tool_schemas_must_be_a_list(tmp_path):
    good = tmp_path / "tools.json"
    good.write_text(json.dumps([{"type": "function", "function": {"name": "a"}}]), encoding="utf-8")
    bad = tmp_path / "bad.json"
    bad.write_text('{"type": "function"}', encoding="utf-8")

    assert load_tool_schemas(good)[0]["function"]["name"] == "a"
    with pytest.raises(ConfigurationError):
        load_tool_schemas(bad)


def test_missing_api_key_exits_with_error(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("API_KEY", raising=False)

    result = CliRunner().invoke(main, ["--cwd", str(tmp_path), "hello"])

    assert result.exit_code == 1
    assert "API_KEY" in result.output


def test_tui_renders_a_streamed_reply(config):
    console = Console(file=io.StringIO(), theme=KEEL_THEME, width=120, record=True)
    tui = TUI(config, console)
    action = ActionState(tool_call_id="call_1", name="createFile")

    for event in [
        AgentEvent.snapshot(StreamSnapshot(is_thinking=True, thinking_so_far="hmm")),
        AgentEvent.snapshot(StreamSnapshot(text_so_far="Creating")),
        AgentEvent.snapshot(StreamSnapshot(text_so_far="Creating the file")),
        AgentEvent.text_complete("Creating the file", "hmm", 2.0),
        AgentEvent.action_state(action),
        AgentEvent.action_state(action.advance(ActionStatus.RUNNING)),
        AgentEvent.action_state(action.advance(ActionStatus.DONE, "Created hello.txt")),
        AgentEvent.notice("Context compressed: 4 old messages summarized. Freed 10 tokens."),
        AgentEvent.agent_error("connection reset"),
    ]:
        tui.render(event)

    output = console.export_text()
    assert "thinking..." in output
    assert output.count("Creating the file") == 1
    assert "thought for 2s" in output
    assert "✓ createFile" in output
    assert "Created hello.txt" in output
    assert "Context compressed" in output
    assert "Error: connection reset" in output
