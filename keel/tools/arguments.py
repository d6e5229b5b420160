"""
Lenient parsing of tool-call argument strings.

Models do not always produce a single well-formed JSON object for a tool
call: some wrap it in a markdown fence, some concatenate several objects
for a batch of files, and some leave raw newlines inside strings. The
parser tries three tiers in order and stops at the first that yields
anything:

1. strict ``json.loads`` of the whole string;
2. a brace-balanced scan that parses every top-level object;
3. a pattern match for ``{"path": ..., "content": ...}`` objects.
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```json\n?|```")
_PATH_CONTENT_RE = re.compile(
    r'\{\s*"path"\s*:\s*"([^"]+)"\s*,\s*"content"\s*:\s*"([\s\S]*?)"\s*\}',
)


def strip_code_fences(arguments: str) -> str:
    return _FENCE_RE.sub("", arguments).strip()


def _parse_strict(text: str) -> list[dict[str, Any]]:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return []

    if isinstance(parsed, dict):
        return [parsed]
    if isinstance(parsed, list) and parsed and all(isinstance(p, dict) for p in parsed):
        return parsed
    return []


def _parse_concatenated(text: str) -> list[dict[str, Any]]:
    """
    Parse every balanced top-level ``{...}`` object in ``text``.

    Braces inside string literals, including escaped quotes, are not
    counted. Objects that still fail to parse are skipped.

    Examples
    --------
    >>> _parse_concatenated('{"a": 1}{"b": "}"}')
    [{'a': 1}, {'b': '}'}]
    """
    results: list[dict[str, Any]] = []
    depth: int = 0
    start: int = -1
    in_string: bool = False
    escaped: bool = False

    for i, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            if depth == 0:
                start = i
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start != -1:
                chunk: str = text[start : i + 1]
                try:
                    parsed = json.loads(chunk)
                except json.JSONDecodeError:
                    logger.debug(f"Skipping unparseable argument object: {chunk[:200]}")
                else:
                    if isinstance(parsed, dict):
                        results.append(parsed)
                start = -1

    return results


def _parse_path_content(text: str) -> list[dict[str, Any]]:
    return [
        {
            "path": match.group(1),
            "content": match.group(2).replace("\\n", "\n").replace('\\"', '"'),
        }
        for match in _PATH_CONTENT_RE.finditer(text)
    ]


def parse_tool_arguments(arguments: str) -> list[dict[str, Any]]:
    """
    Recover argument objects from a possibly malformed string.

    Parameters
    ----------
    arguments : str
        Raw argument string as streamed by the model.

    Returns
    -------
    list[dict[str, Any]]
        Recovered argument objects, in order. Empty when nothing could be
        recovered. An empty or whitespace-only string yields one empty
        object, since a call without arguments is valid.

    Examples
    --------
    >>> parse_tool_arguments('{"path": "a.txt"}')
    [{'path': 'a.txt'}]
    >>> parse_tool_arguments('```json\\n{"x": 1}\\n```')
    [{'x': 1}]
    >>> parse_tool_arguments('{"path": "a"}{"path": "b"}')
    [{'path': 'a'}, {'path': 'b'}]
    >>> parse_tool_arguments("not json")
    []
    """
    text: str = strip_code_fences(arguments or "")
    if not text:
        return [{}]

    for tier in (_parse_strict, _parse_concatenated, _parse_path_content):
        results = tier(text)
        if results:
            if tier is not _parse_strict:
                logger.debug(f"Recovered {len(results)} argument object(s) via {tier.__name__}")
            return results

    logger.warning(f"Could not parse tool arguments: {text[:200]}")
    return []
