"""Chat command table."""

from __future__ import annotations

from .skills import hello

COMMANDS = {
    "/hello": hello.handle,
}
