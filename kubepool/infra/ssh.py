"""AsyncSSH-based remote execution.

Service class pattern - credentials bound at construction, host and
command passed on every call. Pool instances are reused and reinstalled,
so host keys are never verified.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

import asyncssh
from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from kubepool.core.exceptions import CommandTimeoutError, RemoteCommandError
from kubepool.infra.shell import preview, run_local

DEFAULT_COMMAND_TIMEOUT = 600.0
"""Upper bound for a single remote command (package installs, kubeadm init)."""

_RETRYABLE = (RemoteCommandError, OSError, asyncssh.Error)


@runtime_checkable
class RemoteExecutor(Protocol):
    """Runs commands on the control host and on cluster nodes."""

    async def local(self, command: str, *, timeout: float = 60.0) -> str: ...

    async def ssh(
        self,
        host: str,
        command: str,
        *,
        input: str | None = None,
        timeout: float | None = None,
        retries: int = 0,
    ) -> tuple[str, str]: ...


@dataclass(frozen=True, slots=True)
class SSHExecutor:
    """Key-authenticated SSH executor.

    Example:
        >>> executor = SSHExecutor(key_path="~/.ssh/kubepool")
        >>> out, err = await executor.ssh("203.0.113.7", "uname -a")
        >>> out, err = await executor.ssh(
        ...     "203.0.113.7", "cat > /tmp/kubeadm.yaml", input=config_yaml,
        ... )
    """

    key_path: str
    user: str = "root"
    port: int = 22
    connect_timeout: float = 30.0
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    retry_delay: float = 10.0

    async def local(self, command: str, *, timeout: float = 60.0) -> str:
        return await run_local(command, timeout=timeout)

    async def ssh(
        self,
        host: str,
        command: str,
        *,
        input: str | None = None,
        timeout: float | None = None,
        retries: int = 0,
    ) -> tuple[str, str]:
        """Execute command on host and return (stdout, stderr).

        Args:
            host: Address of the node.
            command: Shell command run by the remote login shell.
            input: Optional stdin payload (used to write files).
            timeout: Per-attempt timeout in seconds.
            retries: Extra attempts after the first one fails.

        Raises:
            CommandTimeoutError: The last attempt timed out.
            RemoteCommandError: The last attempt exited non-zero or
                could not connect.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(_RETRYABLE),
            reraise=True,
        ):
            with attempt:
                n = attempt.retry_state.attempt_number
                if n > 1:
                    logger.bind(component="ssh", host=host).debug(
                        "ssh attempt {n}/{total}: {cmd}",
                        n=n, total=retries + 1, cmd=preview(command),
                    )
                return await self._run_once(host, command, input, timeout or self.command_timeout)
        raise AssertionError("unreachable")

    async def _run_once(
        self,
        host: str,
        command: str,
        input: str | None,
        timeout: float,
    ) -> tuple[str, str]:
        log = logger.bind(component="ssh", host=host)
        log.debug("ssh: {cmd}", cmd=preview(command))
        try:
            async with asyncio.timeout(timeout):
                async with asyncssh.connect(
                    host,
                    port=self.port,
                    username=self.user,
                    client_keys=[str(Path(self.key_path).expanduser())],
                    known_hosts=None,
                    connect_timeout=self.connect_timeout,
                ) as conn:
                    result = await conn.run(command, input=input, check=False)
        except TimeoutError:
            raise CommandTimeoutError(host, command, timeout) from None
        except (OSError, asyncssh.Error) as e:
            raise RemoteCommandError(host, command, None, stderr=str(e)) from e

        code = result.exit_status or 0
        stdout = str(result.stdout or "")
        stderr = str(result.stderr or "")
        log.debug("ssh: exit_code={code}", code=code)
        if code != 0:
            raise RemoteCommandError(host, command, code, stdout, stderr)
        return stdout, stderr
