"""SKGraft hook executor — run a package's post_apply commands."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, Optional

from .errors import HookFailed

logger = logging.getLogger("skgraft.hooks")

PHASE = "post_apply"


def _last_line(output: Optional[str]) -> str:
    lines = [line for line in (output or "").splitlines() if line.strip()]
    return lines[-1].strip() if lines else ""


def run_post_apply(
    commands: list[str],
    cwd: Path,
    timeout_s: Optional[float] = None,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> None:
    """Run each command through the shell, in order, in the project root.

    The first non-zero exit stops the sequence; later commands never run.
    With timeout_s=None a hung command blocks the apply indefinitely.

    Args:
        commands: Shell command strings from the manifest.
        cwd: Working directory (the project root).
        timeout_s: Optional per-command timeout in seconds.
        runner: subprocess.run-compatible callable.

    Raises:
        HookFailed: On a non-zero exit, a timeout, or a command that
            cannot be started. The message always names the post_apply phase.
    """
    total = len(commands)
    for index, command in enumerate(commands, start=1):
        logger.debug("%s [%d/%d]: %s", PHASE, index, total, command)
        try:
            result = runner(
                command,
                shell=True,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout_s,
            )
        except subprocess.TimeoutExpired as exc:
            raise HookFailed(
                f"{PHASE} command {index}/{total} timed out after {timeout_s}s: {command}"
            ) from exc
        except OSError as exc:
            raise HookFailed(f"{PHASE} command {index}/{total} could not start: {exc}") from exc

        if result.stdout:
            logger.debug("%s stdout: %s", PHASE, result.stdout.rstrip())
        if result.returncode != 0:
            detail = _last_line(result.stderr)
            message = (
                f"{PHASE} command {index}/{total} failed with exit code "
                f"{result.returncode}: {command}"
            )
            if detail:
                message += f" ({detail})"
            raise HookFailed(message)
