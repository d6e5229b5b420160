"""
Keel theme definition for rich console styling.

This module defines the color theme for the Keel CLI, optimized for dark
terminals with a minimal, clean design.
"""

from rich.theme import Theme

KEEL_THEME = Theme(
    {
        # General styles
        "info": "cyan",
        "warning": "yellow",
        "error": "bright_red bold",
        "success": "green",
        "dim": "dim",
        "muted": "grey50",
        "border": "grey35",
        "highlight": "bold cyan",
        # Role styles
        "user": "bright_blue bold",
        "assistant": "bright_white",
        "thinking": "grey62 italic",
        # Action styles
        "tool": "bright_magenta bold",
        "action.pending": "grey50",
        "action.running": "cyan",
        "action.done": "green",
        "action.error": "bright_red",
        # Notices
        "notice": "yellow italic",
        "code": "white",
    },
)
