"""Local and remote file access behind one async interface.

Adapters parse the same bytes whichever side they come from, so the only
thing that varies between a local and a remote session scan is the
FileSystem object they are handed.
"""

import asyncio
import os
import posixpath
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path

from .errors import UnsupportedOperationError
from .remote import RemoteHost, RemoteShell, SshShell


@dataclass
class DirEntry:
    name: str
    is_dir: bool


@dataclass
class FileStat:
    size: int
    mtime: float  # seconds since epoch
    is_dir: bool


class LocalFileSystem:
    """FileSystem over the local disk. Blocking calls run in a worker thread."""

    is_remote = False

    def join(self, *parts: str) -> str:
        return os.path.join(*parts)

    def basename(self, path: str) -> str:
        return os.path.basename(path.rstrip(os.sep))

    async def stat(self, path: str) -> FileStat | None:
        return await asyncio.to_thread(self._stat, path)

    async def exists(self, path: str) -> bool:
        return await self.stat(path) is not None

    async def is_dir(self, path: str) -> bool:
        st = await self.stat(path)
        return st is not None and st.is_dir

    async def list_dir(self, path: str) -> list[DirEntry] | None:
        return await asyncio.to_thread(self._list_dir, path)

    async def read_text(self, path: str) -> str | None:
        return await asyncio.to_thread(self._read_text, path)

    async def write_text(self, path: str, content: str) -> None:
        await asyncio.to_thread(Path(path).write_text, content, encoding="utf-8")

    async def remove(self, path: str) -> None:
        await asyncio.to_thread(os.remove, path)

    async def rmtree(self, path: str) -> None:
        await asyncio.to_thread(shutil.rmtree, path, ignore_errors=True)

    def _stat(self, path: str) -> FileStat | None:
        try:
            st = os.stat(path)
        except OSError:
            return None
        return FileStat(size=st.st_size, mtime=st.st_mtime, is_dir=os.path.isdir(path))

    def _list_dir(self, path: str) -> list[DirEntry] | None:
        try:
            with os.scandir(path) as it:
                return [DirEntry(name=e.name, is_dir=e.is_dir()) for e in it]
        except OSError:
            return None

    def _read_text(self, path: str) -> str | None:
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
        except OSError:
            return None


def quote_remote_path(path: str) -> str:
    """Quote a remote path for the shell, letting a leading ``~`` expand."""
    if path == "~":
        return '"$HOME"'
    if path.startswith("~/"):
        return '"$HOME"/' + shlex.quote(path[2:])
    return shlex.quote(path)


class RemoteFileSystem:
    """FileSystem that maps every call onto a shell command on the remote host.

    Each call is one round trip, so callers should list a directory once
    and read only the files they need instead of stat-ing every candidate.
    Writes are refused; the remote capability is read-only.
    """

    is_remote = True

    def __init__(self, remote: RemoteHost, shell: RemoteShell) -> None:
        self.remote = remote
        self.shell = shell

    def join(self, *parts: str) -> str:
        return posixpath.join(*parts)

    def basename(self, path: str) -> str:
        return posixpath.basename(path.rstrip("/"))

    async def stat(self, path: str) -> FileStat | None:
        q = quote_remote_path(path)
        result = await self.shell.run(
            self.remote,
            f"stat -L -c '%s %Y %F' {q} 2>/dev/null || stat -L -f '%z %m %HT' {q} 2>/dev/null",
        )
        if result.exit_code != 0:
            return None
        fields = result.stdout.strip().split(" ", 2)
        if len(fields) < 3:
            return None
        try:
            size, mtime = int(fields[0]), float(fields[1])
        except ValueError:
            return None
        return FileStat(size=size, mtime=mtime, is_dir=fields[2].lower() == "directory")

    async def exists(self, path: str) -> bool:
        return await self.stat(path) is not None

    async def is_dir(self, path: str) -> bool:
        st = await self.stat(path)
        return st is not None and st.is_dir

    async def list_dir(self, path: str) -> list[DirEntry] | None:
        result = await self.shell.run(self.remote, f"ls -1Ap {quote_remote_path(path)}")
        if result.exit_code != 0:
            return None
        entries = []
        for line in result.stdout.splitlines():
            if not line:
                continue
            if line.endswith("/"):
                entries.append(DirEntry(name=line[:-1], is_dir=True))
            else:
                entries.append(DirEntry(name=line, is_dir=False))
        return entries

    async def read_text(self, path: str) -> str | None:
        result = await self.shell.run(self.remote, f"cat {quote_remote_path(path)}")
        if result.exit_code != 0:
            return None
        return result.stdout

    async def write_text(self, path: str, content: str) -> None:
        raise UnsupportedOperationError("Remote sessions are read-only")

    async def remove(self, path: str) -> None:
        raise UnsupportedOperationError("Remote sessions are read-only")

    async def rmtree(self, path: str) -> None:
        raise UnsupportedOperationError("Remote sessions are read-only")


FileSystem = LocalFileSystem | RemoteFileSystem


def filesystem_for(
    remote: RemoteHost | None, shell: RemoteShell | None = None
) -> FileSystem:
    """Pick the filesystem for a call: local unless a remote host is given."""
    if remote is None:
        return LocalFileSystem()
    return RemoteFileSystem(remote, shell if shell is not None else SshShell())
