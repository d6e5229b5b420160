from keel.stream.accumulator import (
    DeltaAccumulator,
    ThinkingClock,
    clean_visible_text,
    split_inline_thinking,
)
from keel.stream.models import SSEFrame, TerminalKind, ThinkingPhase, ThinkingSource

from conftest import content_delta, finish, reasoning_delta, tool_delta, usage_frame


def _frames(*payloads):
    return [SSEFrame(payload=p) for p in payloads]


def _feed(acc: DeltaAccumulator, *payloads):
    for frame in _frames(*payloads):
        acc.on_frame(frame)
    return acc


class FakeClock:
    def __init__(self, *ticks: float) -> None:
        self.ticks = list(ticks)

    def __call__(self) -> float:
        return self.ticks.pop(0)


def test_text_is_concatenated():
    acc = _feed(DeltaAccumulator(), content_delta("Hel"), content_delta("lo"))

    assert acc.finalize().text == "Hello"


def test_parallel_tool_fragments_are_reassembled_by_index():
    acc = _feed(
        DeltaAccumulator(),
        tool_delta(0, call_id="call_a", name="createFile", arguments='{"path": '),
        tool_delta(1, call_id="call_b", name="runCommand", arguments='{"cmd": "npm'),
        tool_delta(0, arguments='"a.txt"}'),
        tool_delta(1, arguments=' install"}'),
        finish("tool_calls"),
    )

    calls = acc.finalize().tool_calls

    assert [(c.id, c.name, c.arguments) for c in calls] == [
        ("call_a", "createFile", '{"path": "a.txt"}'),
        ("call_b", "runCommand", '{"cmd": "npm install"}'),
    ]


def test_name_is_filled_once_and_never_erased():
    acc = _feed(
        DeltaAccumulator(),
        tool_delta(0, call_id="c1", name="", arguments=""),
        tool_delta(0, name="createFile"),
        tool_delta(0, name="", arguments="{}"),
        tool_delta(0, name="somethingElse"),
    )

    call = acc.finalize().tool_calls[0]

    assert call.name == "createFile"
    assert call.id == "c1"


def test_missing_id_is_synthesized_from_index():
    acc = _feed(DeltaAccumulator(), tool_delta(2, name="listFiles", arguments="{}"))

    call = acc.finalize().tool_calls[0]

    assert call.id.startswith("tool_2_")


def test_missing_index_defaults_to_zero():
    acc = _feed(
        DeltaAccumulator(),
        tool_delta(None, call_id="c1", name="readFile", arguments='{"pa'),
        tool_delta(None, arguments='th": "x"}'),
    )

    assert acc.finalize().tool_calls[0].arguments == '{"path": "x"}'


def test_unfinished_calls_are_surfaced_at_end_of_stream():
    acc = _feed(DeltaAccumulator(), tool_delta(0, call_id="c1", name="createFile", arguments='{"pa'))
    acc.on_frame(SSEFrame(terminal=TerminalKind.EOF))

    response = acc.finalize()

    assert [c.id for c in response.tool_calls] == ["c1"]
    assert response.tool_calls[0].arguments == '{"pa'
    assert response.terminal is TerminalKind.EOF


def test_multiple_batches_keep_order():
    acc = _feed(
        DeltaAccumulator(),
        tool_delta(0, call_id="first", name="a", arguments="{}"),
        finish("tool_calls"),
        tool_delta(0, call_id="second", name="b", arguments="{}"),
        finish("tool_calls"),
    )

    assert [c.id for c in acc.finalize().tool_calls] == ["first", "second"]


def test_on_tool_call_fires_per_fragment():
    seen = []
    acc = DeltaAccumulator(on_tool_call=lambda call, index: seen.append((call.id, index)))
    _feed(acc, tool_delta(0, call_id="c1", name="a"), tool_delta(0, arguments="{}"))

    assert seen == [("c1", 0), ("c1", 0)]


def test_inline_think_block_is_split_from_visible_text():
    clock = FakeClock(100.0, 103.4)
    acc = _feed(
        DeltaAccumulator(clock=clock),
        content_delta("<think>Let me "),
        content_delta("plan</think>"),
        content_delta("Done."),
    )

    response = acc.finalize()

    assert response.text == "Done."
    assert response.thinking == "Let me plan"
    assert response.thinking_duration_seconds == 3.0


def test_snapshot_reports_thinking_while_block_is_open():
    snapshots = []
    acc = DeltaAccumulator(on_snapshot=snapshots.append, clock=FakeClock(0.0, 0.2))
    _feed(acc, content_delta("<think>hmm"))

    assert snapshots[-1].is_thinking is True
    assert snapshots[-1].text_so_far == ""
    assert snapshots[-1].thinking_so_far == "hmm"
    # Short reasoning still reports one second
    assert acc.finalize().thinking_duration_seconds == 1.0


def test_reasoning_field_clock_stops_at_first_content():
    clock = FakeClock(10.0, 15.0)
    acc = _feed(
        DeltaAccumulator(clock=clock),
        reasoning_delta("step one. "),
        reasoning_delta("step two."),
        content_delta("Answer"),
    )

    assert acc.thinking_clock.phase is ThinkingPhase.FINISHED
    response = acc.finalize()
    assert response.thinking == "step one. step two."
    assert response.thinking_duration_seconds == 5.0


def test_clock_is_never_restarted_by_the_other_source():
    clock = ThinkingClock(FakeClock(0.0, 2.0).__call__)

    assert clock.start(ThinkingSource.REASONING_FIELD) is True
    assert clock.start(ThinkingSource.INLINE_TAG) is False
    assert clock.finish() == 2
    assert clock.start(ThinkingSource.INLINE_TAG) is False
    assert clock.source is ThinkingSource.REASONING_FIELD


def test_close_tag_without_open_tag():
    assert split_inline_thinking("thoughts</think>Visible") == ("Visible", "thoughts", False)


def test_tool_markup_is_removed_from_visible_text():
    assert clean_visible_text("Hi <tool_call>x</tool_call>") == "Hi x"
    assert clean_visible_text("Hi<|tool_calls_section_begin|> junk") == "Hi"


def test_provider_usage_is_authoritative():
    acc = _feed(DeltaAccumulator(), content_delta("abc"), usage_frame(120, 7))

    usage = acc.finalize(estimated_input_tokens=999).usage

    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (120, 7, 127)
    assert usage.estimated is False


def test_usage_is_estimated_without_usage_frame():
    acc = _feed(DeltaAccumulator(), content_delta("abcdefghi"))

    usage = acc.finalize(estimated_input_tokens=40).usage

    assert usage.estimated is True
    assert usage.prompt_tokens == 40
    assert usage.completion_tokens == 3
    assert usage.total_tokens == 43
