"""
Text User Interface for the Keel CLI.

This module renders agent events with rich: a streaming assistant section
built from snapshots, a thinking indicator, one line per tool-call status
transition, and notices.
"""

import logging
from typing import Any

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from keel.agent.events import AgentEvent, AgentEventType
from keel.config.schema import Configuration
from keel.utils.text import truncate_text

logger = logging.getLogger(__name__)

# Characters of a tool result shown on its status line
RESULT_PREVIEW_CHARS: int = 120

_STATUS_ICONS: dict[str, str] = {
    "pending": "○",
    "running": "⏺",
    "done": "✓",
    "error": "✗",
}


class TUI:
    """
    Text User Interface for interactive Keel sessions.

    Parameters
    ----------
    config : Configuration
        Configuration object.
    console : Console
        Rich console instance for output.

    Attributes
    ----------
    _printed_text : str
        Visible assistant text already written for the current reply.
    _thinking_shown : bool
        Whether the thinking indicator was printed for the current reply.

    Examples
    --------
    >>> tui = TUI(config, get_console())
    >>> async for event in agent.run("hello"):
    ...     tui.render(event)
    """

    def __init__(self, config: Configuration, console: Console) -> None:
        self.config: Configuration = config
        self.console: Console = console
        self._assistant_stream_open: bool = False
        self._printed_text: str = ""
        self._thinking_shown: bool = False

    def print_welcome(self, title: str, lines: list[str] | None = None) -> None:
        body: str = "\n".join(lines) if lines else ""
        self.console.print(
            Panel(
                Text(body, style="code"),
                title=Text(title, style="highlight"),
                title_align="left",
                border_style="border",
                box=box.ROUNDED,
                padding=(1, 2),
            ),
        )

    def render(self, event: AgentEvent) -> None:
        """
        Render one agent event.

        Parameters
        ----------
        event : AgentEvent
            Event published by :meth:`keel.agent.agent.Agent.run`.
        """
        data: dict[str, Any] = event.data

        if event.type == AgentEventType.SNAPSHOT:
            self.show_snapshot(data)
        elif event.type == AgentEventType.TEXT_COMPLETE:
            self.complete_reply(data)
        elif event.type == AgentEventType.ACTION_STATE:
            self.show_action(data)
        elif event.type == AgentEventType.NOTICE:
            self.show_notice(data.get("message", ""))
        elif event.type == AgentEventType.AGENT_ERROR:
            self.show_error(data.get("error", "Unknown error"))
        elif event.type == AgentEventType.AGENT_END:
            self.end_assistant()
        elif event.type == AgentEventType.STATE_CHANGE:
            logger.debug(f"State {data.get('previous')} -> {data.get('current')}")

    def begin_assistant(self) -> None:
        self.console.print()
        self.console.print(Rule(Text("keel", style="assistant")))
        self._assistant_stream_open = True
        self._printed_text = ""
        self._thinking_shown = False

    def end_assistant(self) -> None:
        if self._assistant_stream_open:
            self.console.print()
        self._assistant_stream_open = False
        self._printed_text = ""
        self._thinking_shown = False

    def show_snapshot(self, data: dict[str, Any]) -> None:
        """
        Write the part of the visible text not yet printed.

        Snapshots carry the whole text so far. Only a suffix extending
        what was already printed is written; a rewritten prefix (such as a
        stripped reasoning block) is picked up when the reply completes.
        """
        if not self._assistant_stream_open:
            self.begin_assistant()

        if data.get("is_thinking") and not self._thinking_shown:
            self.console.print(Text("thinking...", style="thinking"))
            self._thinking_shown = True

        text: str = data.get("text_so_far") or ""
        if text.startswith(self._printed_text) and len(text) > len(self._printed_text):
            self.console.print(text[len(self._printed_text) :], end="", markup=False)
            self._printed_text = text

    def complete_reply(self, data: dict[str, Any]) -> None:
        if not self._assistant_stream_open:
            self.begin_assistant()

        duration = data.get("thinking_duration_seconds")
        if duration:
            self.console.print()
            self.console.print(Text(f"thought for {duration:g}s", style="thinking"))

        content: str = data.get("content") or ""
        if content and content != self._printed_text:
            if content.startswith(self._printed_text):
                self.console.print(content[len(self._printed_text) :], markup=False)
            else:
                self.console.print()
                self.console.print(Markdown(content))
        elif self._printed_text:
            self.console.print()

        self._printed_text = ""
        self._thinking_shown = False

    def show_action(self, data: dict[str, Any]) -> None:
        """
        Print one line for a tool-call status transition.

        Parameters
        ----------
        data : dict[str, Any]
            ``ActionState`` fields: ``tool_call_id``, ``name``, ``status``
            and ``result``.
        """
        status: str = data.get("status", "pending")
        line = Text.assemble(
            (f"{_STATUS_ICONS.get(status, '?')} ", f"action.{status}"),
            (data.get("name") or "tool", "tool"),
            ("  ", "muted"),
            (f"#{str(data.get('tool_call_id', ''))[:12]}", "muted"),
            ("  ", "muted"),
            (status, f"action.{status}"),
        )
        result: str | None = data.get("result")
        if result and status in ("done", "error"):
            preview: str = truncate_text(
                result.strip().replace("\n", " "),
                RESULT_PREVIEW_CHARS,
                "...",
            )
            line.append(f"  {preview}", style="muted")
        self.console.print(line)

    def show_notice(self, message: str) -> None:
        if message:
            self.console.print(Text(message, style="notice"))

    def show_error(self, message: str) -> None:
        self.console.print(Text(f"Error: {message}", style="error"))

    def show_stats(self, stats: dict[str, Any]) -> None:
        table = Table(box=box.SIMPLE, show_header=False)
        table.add_column("key", style="muted")
        table.add_column("value", style="code")
        for key, value in stats.items():
            if isinstance(value, dict):
                value = ", ".join(f"{k}={v}" for k, v in value.items())
            table.add_row(key, str(value))
        self.console.print(table)

    def show_help(self) -> None:
        help_text: str = """
## Commands

- `/help` - Show this help
- `/exit` or `/quit` - Exit keel
- `/clear` - Clear conversation history
- `/stats` - Show session statistics
- `/compress` - Compress conversation history now

## Tips

- Press Ctrl-C while a reply is streaming to stop it
"""
        self.console.print(Markdown(help_text))
