"""
Prompt text used by the Keel engine.

This module holds the default system prompt, the compression prompt and
the corrective and informational messages the turn loop injects when it
detects a problem.
"""

DEFAULT_SYSTEM_PROMPT: str = """You are an expert software engineer working inside a sandboxed project.

Use the available tools to inspect, create and modify files and to run commands.
Work step by step: make a change, check the result, then continue.
When a tool reports an error, read the message carefully and adjust your approach
instead of repeating the same call.
When the task is complete, reply with a short summary of what you did."""


def build_system_prompt(
    base_prompt: str | None = None,
    developer_instructions: str | None = None,
) -> str:
    """
    Combine the base prompt with project instructions.

    Parameters
    ----------
    base_prompt : str | None, optional
        Prompt override; the default prompt is used if None.
    developer_instructions : str | None, optional
        Project-specific instructions, such as the content of ``AGENT.MD``.

    Returns
    -------
    str
        Final system prompt.
    """
    prompt: str = base_prompt or DEFAULT_SYSTEM_PROMPT
    if developer_instructions:
        prompt += f"\n\n# Project Instructions\n\n{developer_instructions.strip()}"
    return prompt


def get_compression_prompt() -> str:
    return """You are summarizing the earlier part of a conversation between a user and a coding assistant
so that the assistant can continue the work with less context.

Write a concise summary that covers:
- the user's original goal and any later changes to it
- files created or modified, and commands that were run
- errors that were hit and how they were resolved
- what remains to be done

Be factual. Do not invent work that did not happen."""


def consecutive_errors_prompt(count: int) -> str:
    return (
        f"The last {count} tool calls failed. Stop and reconsider your approach: "
        "re-read the error messages, check your assumptions about file paths and "
        "arguments, and try a different strategy instead of repeating the same call."
    )


def tool_failure_prompt(tool_name: str, count: int, hint: str | None = None) -> str:
    if hint:
        return f"The {tool_name} tool has failed {count} times. {hint}"
    return (
        f"The {tool_name} tool has failed {count} times. "
        f"Do not call {tool_name} again with similar arguments; use another tool "
        "or a different approach to reach the goal."
    )


def ready_prompt(marker: str) -> str:
    return (
        f'A tool reported "{marker}". The environment is up and running. '
        "Finish any remaining essential steps, then wrap up with a short summary."
    )


def duplicate_file_message(path: str, count: int) -> str:
    return (
        f"Stopped: {path} was about to be created again ({count} times in this "
        "session), which looks like a loop. Review the current files and send a new "
        "message to continue."
    )


def max_turns_message(max_turns: int) -> str:
    return (
        f"Stopped after reaching the maximum of {max_turns} turns. "
        "Send a new message to continue, or break the task into smaller steps."
    )


def compression_summary(excerpt: str, count: int) -> str:
    return f"Previous conversation: {excerpt}... ({count} messages compressed to save context)"


def compression_llm_summary(summary: str, count: int) -> str:
    return (
        f"Summary of the previous conversation ({count} messages compressed to save context):\n\n"
        f"{summary.strip()}"
    )


def budget_exhausted_message(estimated_tokens: int, budget: int) -> str:
    return (
        "Stopped because the conversation no longer fits the context budget "
        f"(~{estimated_tokens:,} of {budget:,} tokens). "
        "Send a new message to continue with a smaller step."
    )
