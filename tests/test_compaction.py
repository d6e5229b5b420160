import asyncio

from keel.context.compaction import TOOL_RESULT_LIMIT, ChatCompactor
from keel.context.models import AssistantMessage, SystemMessage, ToolMessage, UserMessage
from keel.llm.models import TokenUsage, ToolCall
from keel.prompts import get_compression_prompt


class FakeCompletionClient:
    def __init__(self, reply=None, error: Exception | None = None, usage: TokenUsage | None = None) -> None:
        self.reply = reply
        self.error = error
        self.usage = usage
        self.requests: list = []

    async def complete(self, messages):
        self.requests.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply, self.usage


HISTORY = [
    SystemMessage(content="Earlier summary"),
    UserMessage(content="Build a todo app"),
    AssistantMessage(
        content="Creating the entry point.",
        tool_calls=[ToolCall(id="c1", name="createFile", arguments='{"path": "app.py"}')],
    ),
    ToolMessage(tool_call_id="c1", name="createFile", content="Created app.py"),
]


def test_transcript_formatting():
    transcript = ChatCompactor(FakeCompletionClient())._format_history_for_compaction(HISTORY)

    sections = transcript.split("\n\n---\n\n")
    assert sections == [
        "Here is the conversation that needs to be continued:\n",
        "User:\nBuild a todo app",
        "Assistant:\nCreating the entry point.",
        'Assistant called tools:\n  - createFile({"path": "app.py"})',
        "[Tool Result (createFile)]:\nCreated app.py",
    ]
    assert "Earlier summary" not in transcript


def test_long_tool_output_is_truncated():
    compactor = ChatCompactor(FakeCompletionClient())
    message = ToolMessage(tool_call_id="c9", content="x" * (TOOL_RESULT_LIMIT + 500))

    transcript = compactor._format_history_for_compaction([message])

    assert "[Tool Result (c9)]" in transcript
    assert transcript.endswith("... [tool output truncated]")
    assert "x" * (TOOL_RESULT_LIMIT + 1) not in transcript


def test_summary_is_returned_stripped():
    usage = TokenUsage(prompt_tokens=120, completion_tokens=30, total_tokens=150)
    client = FakeCompletionClient(reply="  Built app.py for a todo app.\n", usage=usage)
    compactor = ChatCompactor(client)

    summary = asyncio.run(compactor.summarize(HISTORY))

    assert summary == "Built app.py for a todo app."
    assert compactor.last_usage == usage
    [request] = client.requests
    assert request[0] == {"role": "system", "content": get_compression_prompt()}
    assert request[1]["role"] == "user"
    assert "User:\nBuild a todo app" in request[1]["content"]


def test_failures_return_none():
    for client in [
        FakeCompletionClient(error=RuntimeError("model down")),
        FakeCompletionClient(reply="   "),
        FakeCompletionClient(reply=None),
    ]:
        assert asyncio.run(ChatCompactor(client).summarize(HISTORY)) is None


def test_nothing_to_summarize_makes_no_call():
    client = FakeCompletionClient(reply="unused")

    assert asyncio.run(ChatCompactor(client).summarize([])) is None
    assert client.requests == []
