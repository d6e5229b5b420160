"""
Loop detection for identifying repetitive patterns in agent behavior.

This module tracks tool activity across a session and reports when the
model appears stuck: the same file created over and over, a run of failed
tool calls, one tool failing repeatedly, or a ready marker that means the
task can wrap up.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field

from keel.config.schema import LoopDetectionConfig
from keel.llm.models import ToolCall
from keel.prompts import (
    consecutive_errors_prompt,
    duplicate_file_message,
    ready_prompt,
    tool_failure_prompt,
)
from keel.tools.arguments import parse_tool_arguments

logger = logging.getLogger(__name__)


@dataclass
class LoopSignals:
    """
    Messages produced while recording one tool result.

    Attributes
    ----------
    corrective : list[str]
        System messages to append after the turn's tool results.
    """

    corrective: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.corrective)


@dataclass
class DuplicateFileHalt:
    """
    Signal that a file-creation call must not be executed.

    Attributes
    ----------
    path : str
        Path that was about to be created again.
    count : int
        Creation attempts for ``path`` in this session, including this one.
    message : str
        User-visible stop message.
    """

    path: str
    count: int
    message: str


class LoopDetector:
    """
    Detects repetitive patterns and loops in agent actions.

    Creation counts are kept for the whole session; error counters reset
    whenever they fire.

    Parameters
    ----------
    config : LoopDetectionConfig
        Thresholds, tool names, hints and ready markers.

    Examples
    --------
    >>> detector = LoopDetector(LoopDetectionConfig())
    >>> call = ToolCall(id="c1", name="createFile", arguments='{"path": "a.txt"}')
    >>> detector.check_duplicate_file(call) is None
    True
    >>> signals = detector.record_result("editFile", is_error=True)
    """

    def __init__(self, config: LoopDetectionConfig | None = None) -> None:
        self.config: LoopDetectionConfig = config or LoopDetectionConfig()
        self._created_paths: Counter[str] = Counter()
        self._consecutive_errors: int = 0
        self._tool_failures: Counter[str] = Counter()
        self._ready_seen: bool = False

    def _creation_paths(self, call: ToolCall) -> list[str]:
        paths: list[str] = []
        for args in parse_tool_arguments(call.arguments):
            path = args.get(self.config.path_argument)
            if isinstance(path, str) and path:
                paths.append(path)
        return paths

    def check_duplicate_file(self, call: ToolCall) -> DuplicateFileHalt | None:
        """
        Count a file-creation call and decide whether it may run.

        Parameters
        ----------
        call : ToolCall
            The call about to be dispatched.

        Returns
        -------
        DuplicateFileHalt | None
            A halt signal once the path's creation count reaches
            ``duplicate_file_threshold``, otherwise None.
        """
        if call.name not in self.config.file_creation_tools:
            return None

        halt: DuplicateFileHalt | None = None
        for path in self._creation_paths(call):
            self._created_paths[path] += 1
            count: int = self._created_paths[path]
            if count > 1:
                logger.debug(f"{path} already created this session (count: {count})")

            if halt is None and count >= self.config.duplicate_file_threshold:
                logger.warning(f"Loop detected: {path} created {count} times, halting dispatch")
                halt = DuplicateFileHalt(
                    path=path,
                    count=count,
                    message=duplicate_file_message(path, count),
                )
        return halt

    def record_result(self, name: str, is_error: bool) -> LoopSignals:
        """
        Feed one classified tool result into the error counters.

        Parameters
        ----------
        name : str
            Tool name.
        is_error : bool
            Whether the result was classified as an error.

        Returns
        -------
        LoopSignals
            Corrective messages, empty when no threshold was reached.
        """
        signals = LoopSignals()

        if not is_error:
            self._consecutive_errors = 0
            self._tool_failures.pop(name, None)
            return signals

        self._consecutive_errors += 1
        self._tool_failures[name] += 1

        if self._consecutive_errors >= self.config.consecutive_error_threshold:
            logger.warning(f"{self._consecutive_errors} consecutive tool errors")
            signals.corrective.append(consecutive_errors_prompt(self._consecutive_errors))
            self._consecutive_errors = 0

        failures: int = self._tool_failures[name]
        if failures >= self.config.tool_failure_threshold:
            logger.warning(f"Tool {name} failed {failures} times")
            signals.corrective.append(
                tool_failure_prompt(name, failures, self.config.tool_hints.get(name)),
            )
            self._tool_failures[name] = 0

        return signals

    def check_ready(self, content: str) -> str | None:
        """
        Return a wrap-up message the first time a ready marker appears.

        Examples
        --------
        >>> detector.check_ready("DEV SERVER IS NOW RUNNING on :5173") is not None
        True
        >>> detector.check_ready("DEV SERVER IS NOW RUNNING on :5173") is None
        True
        """
        if self._ready_seen:
            return None
        for marker in self.config.ready_markers:
            if marker and marker in content:
                self._ready_seen = True
                logger.info(f"Ready marker seen: {marker}")
                return ready_prompt(marker)
        return None

    def creation_count(self, path: str) -> int:
        return self._created_paths[path]

    def clear(self) -> None:
        self._created_paths.clear()
        self._consecutive_errors = 0
        self._tool_failures.clear()
        self._ready_seen = False
        logger.debug("Loop detector state cleared")
