"""Local command execution and small shell-text helpers."""

from __future__ import annotations

import asyncio
import contextlib
import re

from loguru import logger

from kubepool.core.exceptions import CommandTimeoutError, RemoteCommandError

log = logger.bind(component="shell")

_CONTINUATION = re.compile(r"\\\n")
_WHITESPACE = re.compile(r"\s+")


def squash(command: str) -> str:
    """Collapse a multi-line command with backslash continuations to one line."""
    return _WHITESPACE.sub(" ", _CONTINUATION.sub(" ", command)).strip()


def preview(command: str, limit: int = 80) -> str:
    return command if len(command) <= limit else command[:limit] + "..."


async def run_local(command: str, *, timeout: float = 60.0) -> str:
    """Run a shell command on the control host and return its stripped stdout.

    Raises:
        CommandTimeoutError: If the command does not finish within ``timeout``.
        RemoteCommandError: If the command exits with a non-zero status.
    """
    log.debug("exec: {cmd}", cmd=preview(command))
    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise CommandTimeoutError(None, command, timeout) from None

    out = stdout.decode(errors="replace")
    err = stderr.decode(errors="replace")
    if proc.returncode != 0:
        raise RemoteCommandError(None, command, proc.returncode, out, err)
    if err:
        log.trace("exec stderr: {err}", err=err.strip())
    return out.strip()
