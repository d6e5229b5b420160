"""
Tool dispatch adapter.

This module sits between the turn loop and whatever actually runs tools.
It bounds each call with a timeout, turns executor exceptions into error
result text, honours cancellation and classifies results as success or
error by configurable markers.
"""

import asyncio
import inspect
import logging
import re
from typing import Any, Callable

from keel.agent.cancellation import CancellationToken
from keel.config.schema import ToolDispatchConfig
from keel.constants import INVALID_ARGUMENTS_MESSAGE
from keel.exceptions import OperationCancelled
from keel.interfaces import ToolExecutorProtocol
from keel.llm.models import ToolCall
from keel.tools.arguments import parse_tool_arguments
from keel.tools.models import DispatchResult
from keel.types import ToolHandler, ToolSchemas

logger = logging.getLogger(__name__)


class ResultClassifier:
    """
    Decides whether a tool result text reports a failure.

    Parameters
    ----------
    markers : list[str]
        Regular expressions searched against the result with leading
        whitespace removed.

    Examples
    --------
    >>> classifier = ResultClassifier([r"^Error\\b", r"^Unknown tool:"])
    >>> classifier.is_error("Error: file not found")
    True
    >>> classifier.is_error("Created 3 files, no errors")
    False
    """

    def __init__(self, markers: list[str]) -> None:
        self._patterns: list[re.Pattern[str]] = [re.compile(m) for m in markers]

    def is_error(self, text: str) -> bool:
        stripped: str = text.lstrip()
        return any(pattern.search(stripped) for pattern in self._patterns)


class ToolDispatcher:
    """
    Runs tool calls through an executor with uniform failure semantics.

    Executor exceptions and timeouts never escape: they become error result
    text that the model can react to. Cancellation is the one exception,
    raised as :class:`OperationCancelled` for the turn loop to handle.

    Parameters
    ----------
    executor : ToolExecutorProtocol
        Collaborator that runs tools.
    config : ToolDispatchConfig | None, optional
        Timeout and error markers. Uses defaults if not provided.

    Examples
    --------
    >>> dispatcher = ToolDispatcher(FunctionToolExecutor({"echo": lambda a: a["text"]}))
    >>> result = await dispatcher.dispatch(ToolCall(id="1", name="echo", arguments='{"text": "hi"}'))
    >>> result.content, result.is_error
    ('hi', False)
    """

    def __init__(
        self,
        executor: ToolExecutorProtocol,
        config: ToolDispatchConfig | None = None,
    ) -> None:
        self.executor: ToolExecutorProtocol = executor
        self.config: ToolDispatchConfig = config or ToolDispatchConfig()
        self.classifier: ResultClassifier = ResultClassifier(self.config.error_markers)

    def classify_result(self, text: str) -> bool:
        return self.classifier.is_error(text)

    async def dispatch(
        self,
        call: ToolCall,
        token: CancellationToken | None = None,
    ) -> DispatchResult:
        """
        Execute one tool call.

        Parameters
        ----------
        call : ToolCall
            Finalized tool call.
        token : CancellationToken | None, optional
            Raced against the execution.

        Returns
        -------
        DispatchResult
            Result text and its classification.

        Raises
        ------
        OperationCancelled
            If the token fires before the tool finishes.
        """
        name: str = call.name or "unknown"
        timeout: float = self.config.timeout_sec
        timed_out: bool = False

        if token is not None:
            token.raise_if_cancelled()

        logger.debug(f"Dispatching {name} ({call.id})")
        execution = asyncio.wait_for(
            self.executor.execute(call.name, call.arguments),
            timeout=timeout,
        )

        try:
            if token is not None:
                content = await token.guard(execution)
            else:
                content = await execution
        except OperationCancelled:
            raise
        except asyncio.TimeoutError:
            timed_out = True
            content = f"Error: tool {name} timed out after {timeout:g}s"
            logger.warning(f"Tool {name} timed out after {timeout:g}s")
        except Exception as e:
            logger.error(f"Tool {name} raised: {e}", exc_info=True)
            content = f"Error executing tool {name}: {e}"

        if not isinstance(content, str):
            content = str(content)

        is_error: bool = timed_out or self.classify_result(content)
        if is_error:
            logger.info(f"Tool {name} returned an error result")

        return DispatchResult(
            tool_call_id=call.id,
            name=name,
            content=content,
            is_error=is_error,
            timed_out=timed_out,
        )


class FunctionToolExecutor:
    """
    Executor backed by plain Python callables.

    Each handler receives one argument dictionary and returns result text,
    synchronously or as an awaitable. Argument strings are parsed
    leniently; when several objects are recovered from one call the
    handler runs once per object and the results are joined by newlines.

    Parameters
    ----------
    handlers : dict[str, ToolHandler] | None, optional
        Handlers keyed by tool name.

    Examples
    --------
    >>> executor = FunctionToolExecutor()
    >>> @executor.tool("createFile", "Create or overwrite a file")
    ... def create_file(args):
    ...     return f"Created {args['path']}"
    """

    def __init__(self, handlers: dict[str, ToolHandler] | None = None) -> None:
        self._handlers: dict[str, ToolHandler] = dict(handlers or {})
        self._schemas: dict[str, dict[str, Any]] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        description: str = "",
        parameters: dict[str, Any] | None = None,
    ) -> None:
        self._handlers[name] = handler
        self._schemas[name] = {
            "type": "function",
            "function": {
                "name": name,
                "description": description,
                "parameters": parameters or {"type": "object", "properties": {}},
            },
        }
        logger.debug(f"Registered tool handler: {name}")

    def tool(
        self,
        name: str,
        description: str = "",
        parameters: dict[str, Any] | None = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(func: ToolHandler) -> ToolHandler:
            self.register(name, func, description=description, parameters=parameters)
            return func

        return decorator

    @property
    def schemas(self) -> ToolSchemas:
        return list(self._schemas.values())

    async def execute(self, name: str, arguments: str) -> str:
        handler: ToolHandler | None = self._handlers.get(name)
        if handler is None:
            return f"Unknown tool: {name}"

        args_list = parse_tool_arguments(arguments)
        if not args_list:
            return INVALID_ARGUMENTS_MESSAGE

        results: list[str] = []
        for args in args_list:
            result = handler(args)
            if inspect.isawaitable(result):
                result = await result
            results.append(str(result))

        return "\n".join(results)


class UnavailableToolExecutor:
    """Executor used when no tools are configured; every call is unknown."""

    async def execute(self, name: str, arguments: str) -> str:
        return f"Unknown tool: {name}"
