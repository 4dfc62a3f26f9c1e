"""Shared fixtures for tests."""

import asyncio
import os
import shutil
import tempfile
from pathlib import Path

import pytest

from agent_session_store.remote import CommandResult, RemoteHost


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test data."""
    dirpath = tempfile.mkdtemp()
    yield Path(dirpath)
    shutil.rmtree(dirpath)


class LoopbackShell:
    """RemoteShell that runs commands with a local sh, HOME set to a fake remote home."""

    def __init__(self, home: Path) -> None:
        self.home = home
        self.commands: list[str] = []

    async def run(self, remote: RemoteHost, command: str) -> CommandResult:
        self.commands.append(command)
        proc = await asyncio.create_subprocess_exec(
            "sh",
            "-c",
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, "HOME": str(self.home)},
        )
        stdout, stderr = await proc.communicate()
        return CommandResult(stdout.decode(), stderr.decode(), proc.returncode)


@pytest.fixture
def remote_home(temp_dir):
    """Home directory of the pretend remote host."""
    home = temp_dir / "remote-home"
    home.mkdir()
    return home


@pytest.fixture
def loopback_shell(remote_home):
    return LoopbackShell(remote_home)


@pytest.fixture
def remote_host():
    return RemoteHost(host="devbox", user="dev")
