"""
Application-wide constants for the Keel engine.

This module defines constants shared by the stream, context and agent
layers so defaults stay consistent across configuration and code.
"""

# Configuration file names
CONFIG_FILE_NAME: str = "config.toml"
AGENT_MD_FILE_NAME: str = "AGENT.MD"

# Application directories
APP_NAME: str = "keel"
CONFIG_DIR_NAME: str = ".keel"

# Retry defaults
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_BASE_DELAY: float = 1.0
DEFAULT_RETRY_MAX_DELAY: float = 60.0

# Token estimation
DEFAULT_CHARS_PER_TOKEN: int = 4
DEFAULT_IMAGE_TOKENS: int = 1000

# Response budget
DEFAULT_CONTEXT_WINDOW: int = 200_000
DEFAULT_RESPONSE_RESERVE_FRACTION: float = 0.2
DEFAULT_SAFETY_BUFFER_TOKENS: int = 1000
DEFAULT_MIN_OUTPUT_TOKENS: int = 4000
DEFAULT_MAX_OUTPUT_TOKENS: int = 32_000

# Compression
DEFAULT_COMPRESSION_FRACTION: float = 0.8
DEFAULT_KEEP_RECENT_MESSAGES: int = 8
DEFAULT_MIN_MESSAGES_FOR_COMPRESSION: int = 10
SUMMARY_EXCERPT_CHARS: int = 100

# Turn loop
DEFAULT_MAX_TURNS: int = 50
DEFAULT_MODEL_CALL_TIMEOUT_SEC: float = 600.0
DEFAULT_TOOL_TIMEOUT_SEC: float = 300.0

# Loop detection
DEFAULT_DUPLICATE_FILE_THRESHOLD: int = 5
DEFAULT_CONSECUTIVE_ERROR_THRESHOLD: int = 3
DEFAULT_TOOL_FAILURE_THRESHOLD: int = 3
DEFAULT_READY_MARKER: str = "DEV SERVER IS NOW RUNNING"

# Stream framing
SSE_DATA_FIELD: str = "data:"
SSE_DONE_MARKER: str = "[DONE]"

# Placeholder tool results
STOPPED_PLACEHOLDER: str = "[Stopped by user]"
STOPPED_MESSAGE: str = "Stopped by user."
SKIPPED_PLACEHOLDER: str = "[Skipped: loop detected, call was not executed]"
INVALID_ARGUMENTS_MESSAGE: str = "Error: Invalid arguments. Could not parse JSON."

# Path resolution
DEFAULT_ENCODING: str = "utf-8"
