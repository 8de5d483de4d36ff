"""Hello skill — replies to /hello with a greeting."""

from __future__ import annotations


def handle(sender: str) -> str:
    """Greet the sender of a /hello message."""
    return f"Hello, {sender}!"
