"""Remote host access through a shell capability."""

import asyncio
import re
import shlex
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from .config import SSH_TIMEOUT
from .errors import RemoteTransportError


@dataclass(frozen=True)
class RemoteHost:
    """Where a remote agent's session files live."""

    host: str
    port: int = 22
    user: str | None = None
    identity_file: str | None = None
    use_ssh_config: bool = True

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}" if self.user else self.host


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int


class RemoteShell(Protocol):
    """Runs a shell command on a remote host."""

    async def run(self, remote: RemoteHost, command: str) -> CommandResult:
        ...


class SshShell:
    """RemoteShell backed by the system ssh client."""

    def __init__(self, timeout: float | None = SSH_TIMEOUT) -> None:
        self._timeout = timeout

    def build_command(self, remote: RemoteHost, command: str) -> list[str]:
        cmd = ["ssh", "-o", "BatchMode=yes"]
        if not remote.use_ssh_config:
            cmd.extend(["-F", "/dev/null"])
        if remote.port != 22:
            cmd.extend(["-p", str(remote.port)])
        if remote.identity_file:
            cmd.extend(["-i", remote.identity_file])
        cmd.extend([remote.destination, command])
        return cmd

    async def run(self, remote: RemoteHost, command: str) -> CommandResult:
        cmd = self.build_command(remote, command)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise RemoteTransportError("ssh client not found") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise RemoteTransportError(
                f"Command timed out on {remote.destination}"
            ) from exc

        result = CommandResult(
            stdout=(stdout or b"").decode("utf-8", errors="replace"),
            stderr=(stderr or b"").decode("utf-8", errors="replace"),
            exit_code=proc.returncode if proc.returncode is not None else -1,
        )
        # ssh reserves 255 for its own connection failures
        if result.exit_code == 255:
            raise RemoteTransportError(
                f"ssh to {remote.destination} failed: {result.stderr.strip()}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result


_SSH_URL = re.compile(r"^git@([^:]+):(.+)$")


def normalize_git_url(url: str | None) -> str:
    """Normalize a git remote URL so SSH and HTTPS forms compare equal.

    ``git@github.com:a/b.git`` and ``https://github.com/a/b`` both become
    ``https://github.com/a/b``.
    """
    if not url:
        return ""

    normalized = url.strip()
    if normalized.endswith(".git"):
        normalized = normalized[: -len(".git")]

    match = _SSH_URL.match(normalized)
    if match:
        normalized = f"https://{match.group(1)}/{match.group(2)}"

    return normalized.lower()


async def get_git_remote_url(
    project_path: str,
    remote: RemoteHost | None = None,
    shell: RemoteShell | None = None,
) -> str | None:
    """Return the project's ``origin`` remote URL, or None if it has none."""
    if remote is not None:
        if shell is None:
            shell = SshShell()
        result = await shell.run(
            remote, f"git -C {shlex.quote(project_path)} remote get-url origin"
        )
        if result.exit_code == 0 and result.stdout.strip():
            return result.stdout.strip()
        return None

    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            "-C",
            project_path,
            "remote",
            "get-url",
            "origin",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await proc.communicate()
    except (FileNotFoundError, NotADirectoryError):
        logger.debug(f"git unavailable for {project_path}")
        return None

    if proc.returncode == 0 and stdout.strip():
        return stdout.decode("utf-8", errors="replace").strip()
    return None
