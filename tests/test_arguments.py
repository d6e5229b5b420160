import pytest

from keel.tools.arguments import parse_tool_arguments, strip_code_fences


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('{"path": "a.txt"}', [{"path": "a.txt"}]),
        ('```json\n{"x": 1}\n```', [{"x": 1}]),
        ('[{"a": 1}, {"b": 2}]', [{"a": 1}, {"b": 2}]),
        ('{"path": "a"}{"path": "b"}', [{"path": "a"}, {"path": "b"}]),
        ('{"path": "a"}\n\n{"path": "b", "content": "}{"}', [{"path": "a"}, {"path": "b", "content": "}{"}]),
    ],
)
def test_recovers_argument_objects(raw, expected):
    assert parse_tool_arguments(raw) == expected


def test_escaped_quotes_do_not_confuse_brace_scan():
    raw = '{"content": "say \\"}\\""}{"n": 2}'

    assert parse_tool_arguments(raw) == [{"content": 'say "}"'}, {"n": 2}]


def test_raw_newlines_fall_back_to_path_content_pattern():
    raw = '{"path": "src/App.tsx", "content": "line one\nline \\"two\\""}'

    assert parse_tool_arguments(raw) == [
        {"path": "src/App.tsx", "content": 'line one\nline "two"'},
    ]


@pytest.mark.parametrize("raw", ["", "   ", "```json\n```"])
def test_empty_arguments_are_one_empty_object(raw):
    assert parse_tool_arguments(raw) == [{}]


@pytest.mark.parametrize("raw", ["not json", '{"path": ', "[1, 2]", '"just a string"'])
def test_unrecoverable_arguments_yield_nothing(raw):
    assert parse_tool_arguments(raw) == []


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}```') == '{"a": 1}'
