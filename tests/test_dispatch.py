import asyncio

import pytest

from keel.agent.cancellation import CancellationToken
from keel.config.schema import ToolDispatchConfig
from keel.constants import INVALID_ARGUMENTS_MESSAGE
from keel.exceptions import OperationCancelled
from keel.interfaces import ToolExecutorProtocol
from keel.llm.models import ToolCall
from keel.tools.dispatch import (
    FunctionToolExecutor,
    ResultClassifier,
    ToolDispatcher,
    UnavailableToolExecutor,
)

from conftest import ScriptedExecutor


def _call(name: str = "createFile", arguments: str = '{"path": "a.txt"}') -> ToolCall:
    return ToolCall(id="call_1", name=name, arguments=arguments)


def test_successful_result_is_passed_through():
    dispatcher = ToolDispatcher(ScriptedExecutor(["Created a.txt"]))

    result = asyncio.run(dispatcher.dispatch(_call()))

    assert result.tool_call_id == "call_1"
    assert result.content == "Created a.txt"
    assert result.is_error is False
    assert result.timed_out is False


def test_slow_tool_times_out_with_error_text():
    async def slow(name, arguments):
        await asyncio.sleep(5)
        return "never"

    dispatcher = ToolDispatcher(
        ScriptedExecutor(handler=slow),
        ToolDispatchConfig(timeout_sec=0.05),
    )

    result = asyncio.run(dispatcher.dispatch(_call(name="runCommand")))

    assert result.content == "Error: tool runCommand timed out after 0.05s"
    assert result.is_error is True
    assert result.timed_out is True


def test_executor_exception_becomes_error_result():
    def boom(name, arguments):
        raise RuntimeError("disk full")

    dispatcher = ToolDispatcher(ScriptedExecutor(handler=boom))

    result = asyncio.run(dispatcher.dispatch(_call()))

    assert result.content == "Error executing tool createFile: disk full"
    assert result.is_error is True


def test_cancelled_token_raises_before_execution():
    executor = ScriptedExecutor()
    dispatcher = ToolDispatcher(executor)
    token = CancellationToken()
    token.cancel()

    async def run():
        await dispatcher.dispatch(_call(), token)

    with pytest.raises(OperationCancelled):
        asyncio.run(run())
    assert executor.calls == []


def test_cancel_interrupts_running_tool():
    token = CancellationToken()

    async def hang(name, arguments):
        token.cancel()
        await asyncio.sleep(5)
        return "never"

    dispatcher = ToolDispatcher(ScriptedExecutor(handler=hang))

    with pytest.raises(OperationCancelled):
        asyncio.run(dispatcher.dispatch(_call(), token))


@pytest.mark.parametrize(
    "text, is_error",
    [
        ("Error: file not found", True),
        ("   Error reading file", True),
        ("[Error: boom]", True),
        ("Unknown tool: fly", True),
        ("Created 3 files, no errors", False),
        ("Errors: 0", False),
    ],
)
def test_default_classifier(text, is_error):
    assert ToolDispatcher(UnavailableToolExecutor()).classify_result(text) is is_error


def test_custom_error_markers():
    classifier = ResultClassifier([r"FAILED"])

    assert classifier.is_error("3 tests FAILED")
    assert not classifier.is_error("Error: ignored here")


class TestFunctionToolExecutor:
    def test_is_a_tool_executor(self):
        assert isinstance(FunctionToolExecutor(), ToolExecutorProtocol)

    def test_unknown_tool(self):
        assert asyncio.run(FunctionToolExecutor().execute("fly", "{}")) == "Unknown tool: fly"

    def test_invalid_arguments(self):
        executor = FunctionToolExecutor({"echo": lambda args: "x"})

        assert asyncio.run(executor.execute("echo", "not json")) == INVALID_ARGUMENTS_MESSAGE

    def test_multiple_objects_run_handler_per_object(self):
        executor = FunctionToolExecutor()

        @executor.tool("createFile", "Create a file")
        def create_file(args):
            return f"Created {args['path']}"

        result = asyncio.run(executor.execute("createFile", '{"path": "a"}{"path": "b"}'))

        assert result == "Created a\nCreated b"

    def test_async_handler(self):
        async def read(args):
            return f"read {args['path']}"

        executor = FunctionToolExecutor({"readFile": read})

        assert asyncio.run(executor.execute("readFile", '{"path": "x"}')) == "read x"

    def test_schemas(self):
        executor = FunctionToolExecutor()
        executor.register("listFiles", lambda args: "", description="List files")

        assert executor.schemas == [
            {
                "type": "function",
                "function": {
                    "name": "listFiles",
                    "description": "List files",
                    "parameters": {"type": "object", "properties": {}},
                },
            },
        ]
