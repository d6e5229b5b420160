"""
Streaming response handling for the Keel engine.

This package decodes a chunked server-sent-event body into JSON frames
and accumulates those frames into text, reasoning and tool calls.
"""
