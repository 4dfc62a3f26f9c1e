"""Tests for the remote shell shim and the remote filesystem."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agent_session_store.errors import RemoteTransportError, UnsupportedOperationError
from agent_session_store.filesystem import (
    LocalFileSystem,
    RemoteFileSystem,
    filesystem_for,
    quote_remote_path,
)
from agent_session_store.remote import (
    CommandResult,
    RemoteHost,
    SshShell,
    get_git_remote_url,
    normalize_git_url,
)


class TestNormalizeGitUrl:
    def test_ssh_and_https_compare_equal(self):
        assert normalize_git_url("git@github.com:Org/Repo.git") == normalize_git_url(
            "https://github.com/org/repo"
        )

    def test_strips_suffix_and_lowercases(self):
        assert normalize_git_url("https://GitHub.com/a/b.git") == "https://github.com/a/b"

    def test_empty(self):
        assert normalize_git_url(None) == ""
        assert normalize_git_url("") == ""


class TestSshShell:
    def test_build_command_defaults(self):
        cmd = SshShell().build_command(RemoteHost(host="box"), "ls")

        assert cmd == ["ssh", "-o", "BatchMode=yes", "box", "ls"]

    def test_build_command_all_options(self):
        remote = RemoteHost(
            host="box", port=2222, user="me", identity_file="/k/id", use_ssh_config=False
        )

        cmd = SshShell().build_command(remote, "cat x")

        assert cmd == [
            "ssh", "-o", "BatchMode=yes", "-F", "/dev/null", "-p", "2222", "-i", "/k/id", "me@box", "cat x",
        ]

    def test_exit_255_is_transport_error(self):
        proc = MagicMock()
        proc.communicate = AsyncMock(return_value=(b"", b"Connection refused"))
        proc.returncode = 255

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(RemoteTransportError) as exc_info:
                asyncio.run(SshShell().run(RemoteHost(host="box"), "ls"))

        assert exc_info.value.exit_code == 255
        assert "Connection refused" in exc_info.value.stderr

    def test_command_failure_is_a_result(self):
        proc = MagicMock()
        proc.communicate = AsyncMock(return_value=(b"", b"No such file"))
        proc.returncode = 2

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            result = asyncio.run(SshShell().run(RemoteHost(host="box"), "cat nope"))

        assert result.exit_code == 2
        assert result.stderr == "No such file"

    def test_missing_ssh_client(self):
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError)):
            with pytest.raises(RemoteTransportError):
                asyncio.run(SshShell().run(RemoteHost(host="box"), "ls"))


class TestGetGitRemoteUrl:
    def test_remote_runs_git_through_shell(self):
        shell = MagicMock()
        shell.run = AsyncMock(return_value=CommandResult("git@github.com:a/b.git\n", "", 0))

        url = asyncio.run(get_git_remote_url("/srv/my proj", RemoteHost(host="box"), shell))

        assert url == "git@github.com:a/b.git"
        assert shell.run.call_args.args[1] == "git -C '/srv/my proj' remote get-url origin"

    def test_remote_without_origin(self):
        shell = MagicMock()
        shell.run = AsyncMock(return_value=CommandResult("", "error: No such remote", 2))

        assert asyncio.run(get_git_remote_url("/srv/p", RemoteHost(host="box"), shell)) is None

    def test_local_non_repo(self, temp_dir):
        assert asyncio.run(get_git_remote_url(str(temp_dir))) is None


class TestQuoteRemotePath:
    def test_home_expands(self):
        assert quote_remote_path("~") == '"$HOME"'
        assert quote_remote_path("~/.claude/projects") == '"$HOME"/.claude/projects'

    def test_spaces_are_quoted(self):
        assert quote_remote_path("~/my dir/f.json") == "\"$HOME\"/'my dir/f.json'"
        assert quote_remote_path("/a b") == "'/a b'"


class TestRemoteFileSystem:
    """Tests for the shell-command mapping, run against a loopback shell."""

    def test_list_read_and_stat(self, remote_home, loopback_shell, remote_host):
        (remote_home / "data" / "sub").mkdir(parents=True)
        (remote_home / "data" / "a file.txt").write_text("hello")
        fs = RemoteFileSystem(remote_host, loopback_shell)

        entries = asyncio.run(fs.list_dir("~/data"))
        content = asyncio.run(fs.read_text("~/data/a file.txt"))
        stat = asyncio.run(fs.stat("~/data/a file.txt"))

        assert sorted((e.name, e.is_dir) for e in entries) == [("a file.txt", False), ("sub", True)]
        assert content == "hello"
        assert stat.size == 5
        assert stat.is_dir is False
        assert asyncio.run(fs.is_dir("~/data/sub")) is True

    def test_missing_paths(self, loopback_shell, remote_host):
        fs = RemoteFileSystem(remote_host, loopback_shell)

        assert asyncio.run(fs.list_dir("~/nope")) is None
        assert asyncio.run(fs.read_text("~/nope.txt")) is None
        assert asyncio.run(fs.exists("~/nope.txt")) is False

    def test_writes_are_refused(self, loopback_shell, remote_host):
        fs = RemoteFileSystem(remote_host, loopback_shell)

        with pytest.raises(UnsupportedOperationError):
            asyncio.run(fs.write_text("~/x", "data"))
        with pytest.raises(UnsupportedOperationError):
            asyncio.run(fs.remove("~/x"))
        assert loopback_shell.commands == []


def test_filesystem_for():
    assert isinstance(filesystem_for(None), LocalFileSystem)
    assert isinstance(filesystem_for(RemoteHost(host="box")), RemoteFileSystem)
