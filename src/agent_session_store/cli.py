"""CLI entry point for agent-session-store."""

import asyncio
import os
import sys
from datetime import datetime, timezone

import click
import humanize
from loguru import logger
from rich.console import Console
from rich.table import Table

from . import __version__
from .adapters.base import SessionProvider
from .config import AGENTS, DEFAULT_MESSAGE_LIMIT, DEFAULT_PAGE_LIMIT, SEARCH_MODES
from .logging_config import setup_logging
from .registry import ProviderRegistry, create_default_registry, list_all_sessions
from .remote import RemoteHost

console = Console()


def parse_remote(value: str | None, identity_file: str | None = None) -> RemoteHost | None:
    """Parse ``[user@]host[:port]``."""
    if not value:
        return None
    user = None
    if "@" in value:
        user, value = value.split("@", 1)
    port = 22
    if ":" in value:
        value, port_text = value.rsplit(":", 1)
        if not port_text.isdigit():
            raise click.BadParameter(f"invalid port {port_text!r}", param_hint="--remote")
        port = int(port_text)
    if not value:
        raise click.BadParameter("missing host", param_hint="--remote")
    return RemoteHost(host=value, port=port, user=user or None, identity_file=identity_file)


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


def _provider(registry: ProviderRegistry, agent_id: str) -> SessionProvider:
    provider = registry.get(agent_id)
    if provider is None:
        _fail(f"Unknown agent {agent_id!r} (known: {', '.join(registry.agent_ids())})")
    return provider


def _time_ago(when: datetime | None) -> str:
    if when is None:
        return ""
    return humanize.naturaltime(datetime.now(timezone.utc) - when)


def _project(path: str, remote: RemoteHost | None) -> str:
    # Remote paths belong to the remote host and are used as given
    return path if remote else os.path.abspath(path)


@click.group()
@click.option("--remote", metavar="USER@HOST[:PORT]", help="Read sessions on a remote host over SSH")
@click.option("--identity", type=click.Path(), help="SSH identity file for --remote")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.version_option(__version__)
@click.pass_context
def main(ctx: click.Context, remote: str | None, identity: str | None, log_level: str) -> None:
    """Browse, search and edit coding agent session histories.

    Works with Claude Code, Codex CLI, Gemini CLI, OpenCode and Factory
    Droid sessions, locally or on a remote host.

    Examples:

        agent-sessions list .                       # All agents

        agent-sessions show . SESSION -a codex      # Last 20 messages

        agent-sessions search . "auth" -a claude-code --mode user
    """
    setup_logging(
        level=log_level.upper(),
        sinks=[{"type": "console", "level": log_level.upper()}, {"type": "file"}],
    )
    ctx.obj = {
        "remote": parse_remote(remote, identity),
        "registry": create_default_registry(),
    }


agent_option = click.option(
    "-a",
    "--agent",
    "agent_id",
    required=True,
    type=click.Choice(list(AGENTS)),
    help="Agent that owns the session",
)


@main.command("list")
@click.argument("project")
@click.option(
    "-a",
    "--agent",
    "agent_id",
    default="all",
    type=click.Choice(["all", *AGENTS]),
    show_default=True,
)
@click.option("--limit", default=DEFAULT_PAGE_LIMIT, show_default=True, type=click.IntRange(min=1))
@click.option("--cursor", help="Resume after this session id")
@click.pass_obj
def list_command(obj: dict, project: str, agent_id: str, limit: int, cursor: str | None) -> None:
    """List sessions for PROJECT, newest first."""
    remote = obj["remote"]
    registry = obj["registry"]
    project = _project(project, remote)

    if agent_id == "all":
        by_agent = asyncio.run(list_all_sessions(project, remote, registry))
        rows = [(agent, s) for agent, sessions in by_agent.items() for s in sessions]
        rows.sort(key=lambda row: row[1].modified_at, reverse=True)
        rows = rows[:limit]
        footer = f"Showing {len(rows)} of {sum(len(s) for s in by_agent.values())} sessions"
    else:
        provider = _provider(registry, agent_id)
        page = asyncio.run(provider.list_sessions_paginated(project, cursor, limit, remote))
        rows = [(agent_id, s) for s in page.sessions]
        footer = f"Showing {len(rows)} of {page.total_count} sessions"
        if page.next_cursor:
            footer += f" (next: --cursor {page.next_cursor})"

    if not rows:
        console.print("[dim]No sessions found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Agent", style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Preview")
    table.add_column("Msgs", justify="right")
    table.add_column("Modified", style="dim")

    for agent, session in rows:
        agent_style = AGENTS.get(agent, {"color": "white"})["color"]
        preview = session.session_name or session.first_message
        preview = preview.replace("\n", " ")
        preview = preview[:60] + "..." if len(preview) > 60 else preview
        table.add_row(
            f"[{agent_style}]{AGENTS.get(agent, {'badge': agent})['badge']}[/{agent_style}]",
            session.session_id,
            preview,
            str(session.message_count),
            _time_ago(session.modified_at),
        )

    console.print(table)
    console.print(f"\n[dim]{footer}[/dim]")


@main.command()
@click.argument("project")
@click.argument("session_id")
@agent_option
@click.option("--offset", default=0, show_default=True, type=click.IntRange(min=0))
@click.option("--limit", default=DEFAULT_MESSAGE_LIMIT, show_default=True, type=click.IntRange(min=1))
@click.pass_obj
def show(obj: dict, project: str, session_id: str, agent_id: str, offset: int, limit: int) -> None:
    """Show the most recent messages of a session."""
    remote = obj["remote"]
    provider = _provider(obj["registry"], agent_id)
    page = asyncio.run(
        provider.read_session_messages(_project(project, remote), session_id, offset, limit, remote)
    )
    if not page.messages:
        console.print("[dim]No messages found.[/dim]")
        return

    for message in page.messages:
        style = "bold cyan" if message.role == "user" else "bold green"
        console.print(f"[{style}]{message.role}[/{style}] [dim]{message.uuid}  {_time_ago(message.timestamp)}[/dim]")
        console.print(message.content, markup=False, highlight=False)
        console.print()

    shown_from = page.total - offset - len(page.messages) + 1
    console.print(
        f"[dim]Messages {shown_from}-{page.total - offset} of {page.total}"
        + (" (use --offset for older)" if page.has_more else "")
        + "[/dim]"
    )


@main.command()
@click.argument("project")
@click.argument("query")
@agent_option
@click.option("--mode", default="all", show_default=True, type=click.Choice(SEARCH_MODES))
@click.pass_obj
def search(obj: dict, project: str, query: str, agent_id: str, mode: str) -> None:
    """Search a project's sessions for QUERY."""
    remote = obj["remote"]
    provider = _provider(obj["registry"], agent_id)
    results = asyncio.run(provider.search_sessions(_project(project, remote), query, mode, remote))
    if not results:
        console.print("[dim]No matches.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Match")
    table.add_column("Count", justify="right")
    table.add_column("Preview")
    for result in results:
        table.add_row(result.session_id, result.match_type, str(result.match_count), result.match_preview)
    console.print(table)


@main.command("delete-pair")
@click.argument("project")
@click.argument("session_id")
@click.argument("user_message_uuid")
@agent_option
@click.option("--fallback", "fallback_content", help="User message text to match if the uuid is unknown")
@click.option("-y", "--yes", is_flag=True, help="Don't ask for confirmation")
@click.pass_obj
def delete_pair(
    obj: dict,
    project: str,
    session_id: str,
    user_message_uuid: str,
    agent_id: str,
    fallback_content: str | None,
    yes: bool,
) -> None:
    """Delete a user message and the responses that follow it."""
    remote = obj["remote"]
    provider = _provider(obj["registry"], agent_id)
    if not yes:
        click.confirm(f"Delete message {user_message_uuid} and its responses from {session_id}?", abort=True)

    result = asyncio.run(
        provider.delete_message_pair(
            _project(project, remote), session_id, user_message_uuid, fallback_content, remote
        )
    )
    if not result.success:
        _fail(result.error or "Delete failed")
    logger.info(f"Deleted exchange {user_message_uuid} from {session_id}")
    console.print(f"[green]Deleted[/green] {result.records_removed} records from {session_id}")


@main.command()
@click.argument("project")
@click.argument("session_id")
@agent_option
@click.pass_obj
def path(obj: dict, project: str, session_id: str, agent_id: str) -> None:
    """Print where a session is stored."""
    remote = obj["remote"]
    provider = _provider(obj["registry"], agent_id)
    location = asyncio.run(provider.get_session_path(_project(project, remote), session_id, remote))
    if location is None:
        _fail(f"No file path for session {session_id}")
    click.echo(location)


if __name__ == "__main__":
    main()
