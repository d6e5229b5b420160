import asyncio

import pytest

from keel.agent.cancellation import CancellationToken
from keel.context.models import (
    AssistantMessage,
    CompressionResult,
    ImagePart,
    TextPart,
    ToolMessage,
    UserMessage,
    parse_messages,
)
from keel.exceptions import OperationCancelled, StateTransitionError
from keel.llm.models import TokenUsage, ToolCall
from keel.tools.models import ActionState, ActionStatus
from keel.utils.text import TokenEstimator


class TestActionState:
    def test_moves_forward(self):
        state = ActionState(tool_call_id="c1", name="createFile")

        state.advance(ActionStatus.RUNNING)
        state.advance(ActionStatus.DONE, "Created a.txt")

        assert state.status is ActionStatus.DONE
        assert state.result == "Created a.txt"
        assert state.is_finished

    def test_unexecuted_call_can_fail_directly(self):
        state = ActionState(tool_call_id="c1")

        assert state.advance(ActionStatus.ERROR, "[Stopped by user]").is_finished

    @pytest.mark.parametrize(
        "path",
        [
            [ActionStatus.DONE],
            [ActionStatus.RUNNING, ActionStatus.PENDING],
            [ActionStatus.RUNNING, ActionStatus.DONE, ActionStatus.ERROR],
        ],
    )
    def test_backward_or_skipping_moves_are_rejected(self, path):
        state = ActionState(tool_call_id="c1")

        with pytest.raises(StateTransitionError):
            for status in path:
                state.advance(status)


class TestMessages:
    def test_thinking_is_never_sent(self):
        message = AssistantMessage(
            content="Done",
            tool_calls=[ToolCall(id="c1", name="listFiles", arguments="{}")],
            thinking="secret plan",
            thinking_duration_seconds=2.0,
        )

        wire = message.to_wire()

        assert "thinking" not in wire
        assert wire["tool_calls"] == [
            {"id": "c1", "type": "function", "function": {"name": "listFiles", "arguments": "{}"}},
        ]

    def test_multipart_user_message(self):
        message = UserMessage(
            content=[TextPart(text="What is this?"), ImagePart(url="data:image/png;base64,AAA")],
        )

        assert message.text() == "What is this?"
        assert message.to_wire()["content"][1] == {
            "type": "image_url",
            "image_url": {"url": "data:image/png;base64,AAA"},
        }

    def test_tool_message_requires_call_id(self):
        with pytest.raises(Exception):
            ToolMessage(tool_call_id="", content="x")

    def test_parse_messages_discriminates_on_role(self):
        messages = parse_messages(
            [
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": None, "tool_calls": [{"id": "c1", "name": "a"}]},
                {"role": "tool", "tool_call_id": "c1", "content": "ok"},
            ],
        )

        assert [type(m) for m in messages] == [UserMessage, AssistantMessage, ToolMessage]


def test_token_estimates():
    estimator = TokenEstimator(image_tokens=500)

    assert estimator.estimate_text("") == 0
    assert estimator.estimate_text("abcde") == 2
    assert estimator.estimate_message(
        UserMessage(content=[TextPart(text="abcd"), ImagePart(url="x")]),
    ) == 501
    assert estimator.estimate_message(
        AssistantMessage(content="abcd", thinking="x" * 400, tool_calls=[ToolCall(id="c", name="ab", arguments="{}")]),
    ) == 3


def test_usage_addition_keeps_estimated_flag():
    total = TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15) + TokenUsage(
        prompt_tokens=1,
        completion_tokens=1,
        total_tokens=2,
        estimated=True,
    )

    assert (total.prompt_tokens, total.completion_tokens, total.total_tokens) == (11, 6, 17)
    assert total.estimated is True


def test_usage_from_payload_reads_cached_tokens():
    usage = TokenUsage.from_payload(
        {"prompt_tokens": 10, "completion_tokens": 2, "prompt_tokens_details": {"cached_tokens": 4}},
    )

    assert usage.total_tokens == 12
    assert usage.cached_tokens == 4


def test_compression_notice():
    result = CompressionResult(tokens_before=5000, tokens_after=1200, compressed_count=7)

    assert result.notice == "Context compressed: 7 old messages summarized. Freed 3,800 tokens."


class TestCancellationToken:
    def test_guard_returns_result(self):
        async def work():
            return 42

        assert asyncio.run(CancellationToken().guard(work())) == 42

    def test_guard_raises_once_cancelled(self):
        token = CancellationToken()

        async def scenario():
            async def slow():
                await asyncio.sleep(5)

            asyncio.get_running_loop().call_later(0.01, token.cancel)
            await token.guard(slow())

        with pytest.raises(OperationCancelled):
            asyncio.run(scenario())

    def test_outer_timeout_waits_for_work_to_stop(self):
        token = CancellationToken()
        finished = []

        async def scenario():
            async def slow():
                try:
                    await asyncio.sleep(5)
                finally:
                    finished.append(True)

            work = token.guard(slow())
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(work, 0.01)
            return list(finished)

        assert asyncio.run(scenario()) == [True]

    def test_reason_is_kept(self):
        token = CancellationToken()
        token.cancel("user pressed ctrl-c")
        token.cancel("second call is ignored")

        with pytest.raises(OperationCancelled, match="user pressed ctrl-c"):
            token.raise_if_cancelled()
