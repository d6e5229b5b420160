"""
Configuration schema definitions for the Keel engine.

This module defines the Pydantic models for configuration validation and
management: model and response budget settings, context compression,
loop detection thresholds and tool dispatch limits.
"""

from __future__ import annotations

import math
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from keel.constants import (
    DEFAULT_COMPRESSION_FRACTION,
    DEFAULT_CONSECUTIVE_ERROR_THRESHOLD,
    DEFAULT_CONTEXT_WINDOW,
    DEFAULT_DUPLICATE_FILE_THRESHOLD,
    DEFAULT_IMAGE_TOKENS,
    DEFAULT_KEEP_RECENT_MESSAGES,
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_MAX_TURNS,
    DEFAULT_MIN_MESSAGES_FOR_COMPRESSION,
    DEFAULT_MIN_OUTPUT_TOKENS,
    DEFAULT_MODEL_CALL_TIMEOUT_SEC,
    DEFAULT_READY_MARKER,
    DEFAULT_RESPONSE_RESERVE_FRACTION,
    DEFAULT_SAFETY_BUFFER_TOKENS,
    DEFAULT_TOOL_FAILURE_THRESHOLD,
    DEFAULT_TOOL_TIMEOUT_SEC,
)
from keel.exceptions import ValidationError


class ModelConfig(BaseModel):
    """
    Configuration for the LLM model and its response budget.

    Parameters
    ----------
    name : str, default="gpt-4o"
        The name of the model to use.
    temperature : float, default=0.7
        Sampling temperature between 0.0 and 2.0.
    context_window : int, default=200000
        Maximum context window size in tokens.
    response_reserve_fraction : float, default=0.2
        Share of the context window kept free for the model's answer.
    safety_buffer_tokens : int, default=1000
        Tokens subtracted when sizing ``max_tokens``.
    min_output_tokens : int, default=4000
        Floor for ``max_tokens``.
    max_output_tokens : int, default=32000
        Ceiling for ``max_tokens``.
    include_usage : bool, default=True
        Ask the provider to append a usage frame to the stream.

    Examples
    --------
    >>> model = ModelConfig(name="gpt-4o", context_window=128_000)
    >>> model.budget
    102400
    """

    name: str = Field(default="gpt-4o", description="Model name")
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature (0.0-2.0)",
    )
    context_window: int = Field(
        default=DEFAULT_CONTEXT_WINDOW,
        ge=1,
        description="Maximum context window size in tokens",
    )
    response_reserve_fraction: float = Field(
        default=DEFAULT_RESPONSE_RESERVE_FRACTION,
        ge=0.0,
        lt=1.0,
        description="Fraction of the window reserved for the response",
    )
    safety_buffer_tokens: int = Field(
        default=DEFAULT_SAFETY_BUFFER_TOKENS,
        ge=0,
        description="Safety margin when sizing max_tokens",
    )
    min_output_tokens: int = Field(
        default=DEFAULT_MIN_OUTPUT_TOKENS,
        ge=1,
        description="Lower clamp for max_tokens",
    )
    max_output_tokens: int = Field(
        default=DEFAULT_MAX_OUTPUT_TOKENS,
        ge=1,
        description="Upper clamp for max_tokens",
    )
    include_usage: bool = Field(
        default=True,
        description="Request stream_options.include_usage",
    )

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ValidationError(
                f"Temperature must be between 0.0 and 2.0, got {v}",
                field="temperature",
            )
        return v

    @model_validator(mode="after")
    def validate_output_bounds(self) -> ModelConfig:
        """
        Ensure the ``max_tokens`` clamp is not inverted.

        Raises
        ------
        ValidationError
            If ``min_output_tokens`` exceeds ``max_output_tokens``.
        """
        if self.min_output_tokens > self.max_output_tokens:
            raise ValidationError(
                "min_output_tokens cannot exceed max_output_tokens "
                f"({self.min_output_tokens} > {self.max_output_tokens})",
                field="min_output_tokens",
            )
        return self

    @property
    def budget(self) -> int:
        """
        Token budget available to the request messages.

        Returns
        -------
        int
            ``floor(context_window * (1 - response_reserve_fraction))``.
        """
        return math.floor(self.context_window * (1 - self.response_reserve_fraction))


class ContextConfig(BaseModel):
    """
    Settings for history truncation and post-run compression.

    Parameters
    ----------
    compression_fraction : float, default=0.8
        Compression runs once the history exceeds this share of the budget.
    keep_recent_messages : int, default=8
        Number of most recent messages always kept verbatim.
    min_messages_for_compression : int, default=10
        Compression never runs on a history this short or shorter.
    image_token_estimate : int, default=1000
        Flat token cost of one image content part.
    llm_summary : bool, default=False
        Summarize compressed messages with an out-of-band model call.
    """

    compression_fraction: float = Field(
        default=DEFAULT_COMPRESSION_FRACTION,
        gt=0.0,
        le=1.0,
        description="Budget share that triggers compression",
    )
    keep_recent_messages: int = Field(
        default=DEFAULT_KEEP_RECENT_MESSAGES,
        ge=1,
        description="Messages kept verbatim by compression",
    )
    min_messages_for_compression: int = Field(
        default=DEFAULT_MIN_MESSAGES_FOR_COMPRESSION,
        ge=1,
        description="Minimum history length before compressing",
    )
    image_token_estimate: int = Field(
        default=DEFAULT_IMAGE_TOKENS,
        ge=0,
        description="Estimated tokens per image part",
    )
    llm_summary: bool = Field(
        default=False,
        description="Use a model call to summarize compressed history",
    )


def _default_tool_hints() -> dict[str, str]:
    return {
        "editFile": (
            "The editFile tool keeps failing. Stop using incremental edits: "
            "read the file and rewrite the whole file with createFile instead."
        ),
    }


class LoopDetectionConfig(BaseModel):
    """
    Thresholds and tool names used by the loop detector.

    Parameters
    ----------
    duplicate_file_threshold : int, default=5
        Creating the same path this many times halts dispatching.
    consecutive_error_threshold : int, default=3
        Consecutive failed tool results before a corrective message.
    tool_failure_threshold : int, default=3
        Failures of one tool before a targeted hint is injected.
    file_creation_tools : list[str], default=["createFile"]
        Tools counted by duplicate-file detection.
    path_argument : str, default="path"
        Argument key holding the created path.
    tool_hints : dict[str, str]
        Targeted hints keyed by tool name.
    ready_markers : list[str], default=["DEV SERVER IS NOW RUNNING"]
        Result substrings that signal the environment is ready.
    """

    duplicate_file_threshold: int = Field(
        default=DEFAULT_DUPLICATE_FILE_THRESHOLD,
        ge=1,
        description="Same-path creations before halting",
    )
    consecutive_error_threshold: int = Field(
        default=DEFAULT_CONSECUTIVE_ERROR_THRESHOLD,
        ge=1,
        description="Consecutive errors before correcting",
    )
    tool_failure_threshold: int = Field(
        default=DEFAULT_TOOL_FAILURE_THRESHOLD,
        ge=1,
        description="Per-tool failures before a hint",
    )
    file_creation_tools: list[str] = Field(
        default_factory=lambda: ["createFile"],
        description="Tools that create files",
    )
    path_argument: str = Field(
        default="path",
        description="Argument key holding the file path",
    )
    tool_hints: dict[str, str] = Field(
        default_factory=_default_tool_hints,
        description="Targeted hints per tool name",
    )
    ready_markers: list[str] = Field(
        default_factory=lambda: [DEFAULT_READY_MARKER],
        description="Markers that signal a ready environment",
    )


class ToolDispatchConfig(BaseModel):
    """
    Settings for the tool dispatch adapter.

    Parameters
    ----------
    timeout_sec : float, default=300.0
        Ceiling for a single tool execution.
    error_markers : list[str]
        Regular expressions; a result matching any of them is an error.
    """

    timeout_sec: float = Field(
        default=DEFAULT_TOOL_TIMEOUT_SEC,
        gt=0.0,
        description="Per-call timeout in seconds",
    )
    error_markers: list[str] = Field(
        default_factory=lambda: [r"^Error\b", r"^\[Error", r"^Unknown tool:"],
        description="Regexes classifying a result as an error",
    )


class Configuration(BaseModel):
    """
    Main configuration model for the Keel engine.

    Parameters
    ----------
    model : ModelConfig, optional
        Model and response budget configuration.
    context : ContextConfig, optional
        Truncation and compression settings.
    loop_detection : LoopDetectionConfig, optional
        Loop detection thresholds.
    tools : ToolDispatchConfig, optional
        Tool dispatch settings.
    cwd : Path, optional
        Working directory. Defaults to the current directory.
    max_turns : int, default=50
        Maximum model calls per run.
    model_call_timeout_sec : float, default=600.0
        Ceiling for one whole streaming model call.
    system_prompt : str | None, optional
        Overrides the built-in system prompt.
    developer_instructions : str | None, optional
        Project instructions appended to the system prompt.
    debug : bool, default=False
        Enable debug logging.

    Examples
    --------
    >>> config = Configuration(
    ...     model=ModelConfig(name="gpt-4o-mini"),
    ...     max_turns=20,
    ... )
    """

    model: ModelConfig = Field(
        default_factory=ModelConfig,
        description="Model configuration",
    )
    context: ContextConfig = Field(
        default_factory=ContextConfig,
        description="Context window configuration",
    )
    loop_detection: LoopDetectionConfig = Field(
        default_factory=LoopDetectionConfig,
        description="Loop detection configuration",
    )
    tools: ToolDispatchConfig = Field(
        default_factory=ToolDispatchConfig,
        description="Tool dispatch configuration",
    )
    cwd: Path = Field(
        default_factory=Path.cwd,
        description="Current working directory",
    )
    max_turns: int = Field(
        default=DEFAULT_MAX_TURNS,
        ge=1,
        description="Maximum model calls per run",
    )
    model_call_timeout_sec: float = Field(
        default=DEFAULT_MODEL_CALL_TIMEOUT_SEC,
        gt=0.0,
        description="Timeout for one streaming model call",
    )
    system_prompt: str | None = Field(
        default=None,
        description="System prompt override",
    )
    developer_instructions: str | None = Field(
        default=None,
        description="Developer-provided instructions",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    @property
    def api_key(self) -> str | None:
        """
        Get the API key from environment variables.

        Returns
        -------
        str | None
            The API key if set, None otherwise.
        """
        return os.environ.get("API_KEY")

    @property
    def base_url(self) -> str | None:
        """
        Get the base URL from environment variables.

        Returns
        -------
        str | None
            The base URL if set, None otherwise.
        """
        return os.environ.get("BASE_URL")

    @property
    def model_name(self) -> str:
        return self.model.name

    @model_name.setter
    def model_name(self, value: str) -> None:
        self.model.name = value

    @property
    def temperature(self) -> float:
        return self.model.temperature

    def validate(self) -> list[str]:
        """
        Validate the configuration and return any errors.

        Returns
        -------
        list[str]
            List of error messages. Empty list if configuration is valid.

        Examples
        --------
        >>> config = Configuration()
        >>> errors = config.validate()
        >>> if errors:
        ...     print("Configuration errors:", errors)
        """
        errors: list[str] = []

        if not self.api_key:
            errors.append("No API key found. Set API_KEY environment variable")

        if not self.cwd.exists():
            errors.append(f"Working directory does not exist: {self.cwd}")

        if self.context.keep_recent_messages >= self.context.min_messages_for_compression:
            errors.append(
                "context.keep_recent_messages must be smaller than "
                "context.min_messages_for_compression",
            )

        return errors

    def to_dict(self) -> dict[str, Any]:
        """
        Convert configuration to a dictionary.

        Returns
        -------
        dict[str, Any]
            Dictionary representation of the configuration.
        """
        return self.model_dump(mode="json")
