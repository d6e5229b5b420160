"""
Core package for the Keel streaming agent engine.

This package turns a chunked server-sent-event response from an
OpenAI-compatible model into a bounded, cancellable multi-turn tool-calling
loop. It contains the stream decoder and delta accumulator, the context
window manager, the turn-loop controller and the tool dispatch adapter.
"""

__version__ = "0.1.0"
