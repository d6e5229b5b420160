"""
Main entry point for the Keel CLI.

This module provides the command-line interface with interactive and
single-run modes, slash commands, and Ctrl-C cancellation of a running
reply.
"""

import asyncio
import importlib
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

import click
from dotenv import load_dotenv
from rich import box
from rich.panel import Panel
from rich.text import Text

from keel.agent.agent import Agent
from keel.agent.events import AgentEventType
from keel.config.loader import load_configuration
from keel.config.schema import Configuration
from keel.exceptions import ConfigurationError
from keel.interfaces import ToolExecutorProtocol
from keel.types import ToolSchemas
from keel.ui.console import get_console
from keel.ui.tui import TUI

logger = logging.getLogger(__name__)

console = get_console()


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_executor(reference: str) -> ToolExecutorProtocol:
    """
    Import a tool executor from a ``module:attribute`` reference.

    The attribute may be an executor instance, or a class or factory
    called without arguments to build one.

    Raises
    ------
    ConfigurationError
        If the reference cannot be imported or does not provide
        ``execute``.
    """
    module_name, _, attr = reference.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(
            f"Executor must be given as module:attribute, got {reference!r}",
            config_key="executor",
        )

    try:
        target: Any = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(
            f"Cannot import executor {reference!r}: {e}",
            config_key="executor",
            cause=e,
        ) from e

    executor: Any = target
    if isinstance(target, type) or (callable(target) and not hasattr(target, "execute")):
        executor = target()
    if not isinstance(executor, ToolExecutorProtocol):
        raise ConfigurationError(
            f"{reference!r} does not provide an async execute(name, arguments) method",
            config_key="executor",
        )
    return executor


def load_tool_schemas(path: Path) -> ToolSchemas:
    try:
        schemas = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Cannot read tool schemas: {e}",
            config_file=str(path),
            cause=e,
        ) from e
    if not isinstance(schemas, list):
        raise ConfigurationError(
            "Tool schemas file must contain a JSON list",
            config_file=str(path),
        )
    return schemas


class CLI:
    """
    Command-line interface for the Keel agent.

    Parameters
    ----------
    config : Configuration
        Configuration object.
    executor : ToolExecutorProtocol | None, optional
        Collaborator that runs tools.
    tools : ToolSchemas | None, optional
        Tool schemas sent to the model.

    Examples
    --------
    >>> cli = CLI(load_configuration())
    >>> await cli.run_single("Create a README")
    """

    def __init__(
        self,
        config: Configuration,
        executor: ToolExecutorProtocol | None = None,
        tools: ToolSchemas | None = None,
    ) -> None:
        self.agent: Agent | None = None
        self.config: Configuration = config
        self.executor: ToolExecutorProtocol | None = executor
        self.tools: ToolSchemas | None = tools
        self.tui: TUI = TUI(config, console)

    def _create_agent(self) -> Agent:
        return Agent(self.config, executor=self.executor, tools=self.tools)

    async def run_single(self, message: str) -> str | None:
        async with self._create_agent() as agent:
            self.agent = agent
            return await self._process_message(message)

    async def run_interactive(self) -> None:
        self.tui.print_welcome(
            "keel",
            lines=[
                f"model: {self.config.model_name}",
                f"cwd: {self.config.cwd}",
                f"tools: {len(self.tools or [])}",
                "commands: /help /stats /compress /clear /exit",
            ],
        )

        async with self._create_agent() as agent:
            self.agent = agent

            while True:
                try:
                    user_input: str = console.input(
                        "\n[bold bright_blue]→[/bold bright_blue] ",
                    ).strip()
                    if not user_input:
                        continue

                    if user_input.startswith("/"):
                        if not await self._handle_command(user_input):
                            break
                        continue

                    await self._process_message(user_input)
                except KeyboardInterrupt:
                    console.print("\n[dim italic]Use /exit to quit[/dim italic]")
                except EOFError:
                    break

        console.print()
        console.print(
            Panel(
                Text("Goodbye", style="highlight"),
                border_style="border",
                box=box.ROUNDED,
                padding=(0, 2),
            ),
        )

    def _cancel_run(self) -> None:
        if self.agent and self.agent.cancel():
            console.print("\n[warning]Stopping...[/warning]")

    async def _process_message(self, message: str) -> str | None:
        """
        Run one message and render its events.

        Ctrl-C while the run is active cancels it instead of exiting.

        Returns
        -------
        str | None
            Final response, or None if the run did not finish normally.
        """
        if not self.agent:
            return None

        loop = asyncio.get_running_loop()
        handler_installed: bool = False
        try:
            loop.add_signal_handler(signal.SIGINT, self._cancel_run)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers unavailable; Ctrl-C will not cancel runs")

        final_response: str | None = None
        try:
            async for event in self.agent.run(message):
                self.tui.render(event)
                if event.type == AgentEventType.AGENT_END and event.data.get("state") == "idle":
                    final_response = event.data.get("response")
        finally:
            if handler_installed:
                loop.remove_signal_handler(signal.SIGINT)

        return final_response

    async def _handle_command(self, command: str) -> bool:
        """
        Handle slash commands in interactive mode.

        Returns
        -------
        bool
            True to continue, False to exit.
        """
        if not self.agent:
            return True

        cmd_name: str = command.lower().strip().split(maxsplit=1)[0]

        if cmd_name in ("/exit", "/quit"):
            return False
        elif cmd_name == "/help":
            self.tui.show_help()
        elif cmd_name == "/clear":
            self.agent.session.clear()
            console.print("[success]Conversation cleared[/success]")
        elif cmd_name == "/stats":
            console.print("\n[bold]Session Statistics[/bold]")
            self.tui.show_stats(self.agent.session.get_stats())
        elif cmd_name == "/compress":
            result = await self.agent.session.compress(force=True)
            if result is None:
                console.print("[muted]Nothing to compress[/muted]")
            else:
                self.tui.show_notice(result.notice)
        else:
            console.print(f"[error]Unknown command: {cmd_name}[/error]")

        return True


@click.command()
@click.argument("prompt", required=False)
@click.option(
    "--cwd",
    "-c",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Current working directory",
)
@click.option(
    "--executor",
    "-e",
    "executor_spec",
    help="Tool executor as module:attribute",
)
@click.option(
    "--tools",
    "-t",
    "tools_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file with tool schemas",
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(
    prompt: str | None,
    cwd: Path | None,
    executor_spec: str | None,
    tools_path: Path | None,
    debug: bool,
) -> None:
    """
    keel - streaming tool-calling agent.

    Run the agent in interactive mode or process a single prompt.
    """
    load_dotenv()

    try:
        config: Configuration = load_configuration(cwd=cwd)
        if debug:
            config.debug = True
        configure_logging(config.debug)

        executor: ToolExecutorProtocol | None = (
            load_executor(executor_spec) if executor_spec else None
        )
        tools: ToolSchemas | None = load_tool_schemas(tools_path) if tools_path else None
        if tools is None and executor is not None:
            tools = getattr(executor, "schemas", None) or None
    except ConfigurationError as e:
        console.print(f"[error]Configuration Error: {e}[/error]")
        sys.exit(1)

    errors: list[str] = config.validate()
    if errors:
        for error in errors:
            console.print(f"[error]{error}[/error]")
        sys.exit(1)

    cli = CLI(config, executor=executor, tools=tools)

    if prompt:
        result = asyncio.run(cli.run_single(prompt))
        if result is None:
            sys.exit(1)
    else:
        asyncio.run(cli.run_interactive())


if __name__ == "__main__":
    main()
