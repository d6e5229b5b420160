"""
LLM transport for the Keel engine.

This package opens streaming chat-completion requests against an
OpenAI-compatible endpoint and hands back the raw response body, plus a
non-streaming call used for out-of-band summarization.
"""
