import asyncio
import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import asyncssh

from config.settings import (
    SSH_CONNECT_ATTEMPTS,
    SSH_CONNECT_INTERVAL,
    SSH_CONNECT_TIMEOUT,
    VM_SSH_PORT,
    VM_SSH_PRIVATE_KEY,
    VM_SSH_USERNAME,
)
from core.errors import GuestCommandError
from core.logger import log_event
from core.pve_cli import PveCli
from schemas.provision_schema import InstanceKind


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GuestExecutor:
    """Runs shell commands inside a provisioned guest."""

    description = "guest"

    def run(self, command: str, check: bool = True, input: Optional[str] = None) -> CommandResult:
        raise NotImplementedError

    def write_file(self, path: str, content: str, mode: Optional[str] = None) -> None:
        """Write `content` to `path` inside the guest via stdin, no quoting of the payload."""
        command = f"mkdir -p {shlex.quote(str(Path(path).parent))} && cat > {shlex.quote(path)}"
        if mode:
            command += f" && chmod {mode} {shlex.quote(path)}"
        self.run(command, input=content)

    def _checked(self, command: str, result: CommandResult, check: bool) -> CommandResult:
        if check and not result.ok:
            output = "\n".join(part for part in [result.stderr.strip(), result.stdout.strip()] if part)
            log_event(f"[guest] FAILED on {self.description}: {command}: {output}")
            raise GuestCommandError(command, result.returncode, output)
        return result


class ContainerExecutor(GuestExecutor):
    """`pct exec <ctid> -- bash -c <command>`"""

    def __init__(self, pve: PveCli, ctid: int) -> None:
        self.pve = pve
        self.ctid = ctid
        self.description = f"container {ctid}"

    def run(self, command: str, check: bool = True, input: Optional[str] = None) -> CommandResult:
        completed = self.pve.exec_in_container(
            self.ctid, ["bash", "-c", command], input=input, check=False
        )
        result = CommandResult(completed.returncode, completed.stdout or "", completed.stderr or "")
        return self._checked(command, result, check)


class SshExecutor(GuestExecutor):
    """
    Runs commands in a VM guest over SSH (asyncssh), as root by default.

    Each command opens its own short-lived connection; the provisioning
    pipeline is synchronous so the coroutine is driven with asyncio.run.
    """

    def __init__(
        self,
        host: str,
        port: int = VM_SSH_PORT,
        username: str = VM_SSH_USERNAME,
        key_path: Optional[str] = VM_SSH_PRIVATE_KEY,
        password: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.key_path = key_path
        self.password = password
        self.description = f"{username}@{host}"

    def _connect(self):
        client_keys = [self.key_path] if self.key_path and Path(self.key_path).exists() else None
        return asyncssh.connect(
            host=self.host,
            port=self.port,
            username=self.username,
            client_keys=client_keys,
            password=self.password,
            known_hosts=None,
            connect_timeout=SSH_CONNECT_TIMEOUT,
        )

    async def _probe(self) -> None:
        async with self._connect() as conn:
            await conn.run("echo Connected", check=True)

    async def _run(self, command: str, input: Optional[str]) -> CommandResult:
        async with self._connect() as conn:
            completed = await conn.run(command, input=input, check=False)
        return CommandResult(
            completed.exit_status if completed.exit_status is not None else 255,
            str(completed.stdout or ""),
            str(completed.stderr or ""),
        )

    def wait_ready(
        self,
        attempts: int = SSH_CONNECT_ATTEMPTS,
        interval: float = SSH_CONNECT_INTERVAL,
    ) -> bool:
        for attempt in range(1, attempts + 1):
            try:
                asyncio.run(self._probe())
                log_event(f"[ssh] {self.description} reachable after {attempt} attempt(s)")
                return True
            except (OSError, asyncssh.Error, asyncio.TimeoutError) as e:
                log_event(f"[ssh] Attempt {attempt}/{attempts} to {self.description} failed: {e}")
                if attempt < attempts:
                    time.sleep(interval)
        return False

    def run(self, command: str, check: bool = True, input: Optional[str] = None) -> CommandResult:
        try:
            result = asyncio.run(self._run(command, input))
        except (OSError, asyncssh.Error, asyncio.TimeoutError) as e:
            raise GuestCommandError(command, 255, f"SSH to {self.description} failed: {e}") from e
        return self._checked(command, result, check)


@dataclass
class ConnectionInfo:
    """Everything an installer needs to reach a freshly provisioned guest."""

    kind: InstanceKind
    instance_id: int
    hostname: str
    ip: Optional[str]
    password: Optional[str]
    executor: GuestExecutor

    @property
    def address(self) -> str:
        return self.ip or "<IP>"
