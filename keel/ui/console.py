"""
Console factory for creating rich console instances.
"""

from rich.console import Console

from keel.ui.theme import KEEL_THEME

# Singleton console instance
_console: Console | None = None


def get_console() -> Console:
    """
    Get a configured rich Console instance with the Keel theme.

    Returns
    -------
    Console
        Singleton console instance.

    Examples
    --------
    >>> console = get_console()
    >>> console.print("[highlight]keel[/highlight]")
    """
    global _console
    if _console is None:
        _console = Console(theme=KEEL_THEME, highlight=False)
    return _console
