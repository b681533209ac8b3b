"""Main CLI entry point for crisp."""

import asyncio
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__, db
from .config import settings
from .models import CURRENT_SCHEMA_VERSION, SessionRecord
from .orchestrator import check_configuration
from .persistence import SessionStore
from .plan import ScmPlatform

console = Console()

REQUIRED_COLUMNS = {column.name for column in SessionRecord.__table__.columns}


def _store(ctx: click.Context) -> SessionStore:
    url = ctx.obj.get("database_url")
    return SessionStore(db.create_engine(url)) if url else SessionStore()


@click.group()
@click.version_option(version=__version__)
@click.option("--database-url", default=None, help="Override the session store URL")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, database_url: str | None, verbose: bool) -> None:
    """CRISP scaffolding engine CLI.

    Inspect configuration and the persisted session store.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    ctx.ensure_object(dict)
    ctx.obj["database_url"] = database_url


@main.command()
def health() -> None:
    """Validate platform configuration and connectivity."""

    async def check() -> list[str]:
        if settings.scm_platform == ScmPlatform.GITHUB:
            from .github import GitHubProvider

            async with GitHubProvider(settings) as scm:
                return await check_configuration(settings, scm)
        return await check_configuration(settings, None)

    problems = asyncio.run(check())
    if not problems:
        console.print(f"[green]healthy[/green] ({settings.scm_platform.display_name})")
        return

    console.print(f"[yellow]degraded[/yellow] ({settings.scm_platform.display_name})")
    for problem in problems:
        console.print(f"  - {problem}")
    raise SystemExit(1)


@main.command()
@click.option("--owner", default=None, help="Only sessions of this owner")
@click.option("--limit", default=20, help="Number of sessions to show")
@click.pass_context
def sessions(ctx: click.Context, owner: str | None, limit: int) -> None:
    """List persisted sessions, most recent first."""

    async def list_all() -> None:
        records = await _store(ctx).load_all(owner)
        if not records:
            console.print("[yellow]No sessions found[/yellow]")
            return

        table = Table(title="Sessions")
        table.add_column("Session")
        table.add_column("Owner")
        table.add_column("Project")
        table.add_column("Status")
        table.add_column("Last activity")
        for record in records[:limit]:
            table.add_row(
                record.session_id,
                record.owner_id,
                record.project_name or "-",
                record.status,
                record.last_activity_at.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)

    asyncio.run(list_all())


@main.command()
@click.argument("session_id")
@click.pass_context
def show(ctx: click.Context, session_id: str) -> None:
    """Show one session with its messages and delivery result.

    SESSION_ID: The 12-character session identifier
    """

    async def show_session() -> None:
        record = await _store(ctx).get(session_id)
        if record is None:
            console.print(f"[red]Session not found: {session_id}[/red]")
            raise SystemExit(1)

        console.print(
            Panel(
                f"[bold]{record.project_name or 'Untitled'}[/bold]\n\n"
                f"Owner: {record.owner_id}\n"
                f"Status: [cyan]{record.status}[/cyan]\n"
                f"Created: {record.created_at.strftime('%Y-%m-%d %H:%M')}\n"
                f"Last activity: {record.last_activity_at.strftime('%Y-%m-%d %H:%M')}",
                title=f"Session: {record.session_id}",
            )
        )

        if record.messages:
            table = Table(title="Messages")
            table.add_column("Time")
            table.add_column("Role")
            table.add_column("Content")
            for message in record.messages:
                table.add_row(
                    message.timestamp.strftime("%H:%M:%S"), message.role, message.content
                )
            console.print(table)

        delivery = record.delivery_result
        if delivery is not None:
            if delivery.success:
                body = (
                    f"Repository: {delivery.repository_url}\n"
                    f"Branch: {delivery.default_branch}\n"
                    f"Pipeline: {delivery.pipeline_url or '-'}\n"
                    f"Build status: {delivery.build_status or 'N/A'}\n"
                    f"VS Code (web): {delivery.vscode_web_url}\n"
                    f"VS Code (clone): {delivery.vscode_clone_url}"
                )
                console.print(Panel(body, title=f"Delivered on {delivery.platform}", style="green"))
            else:
                console.print(Panel(delivery.error_message or "", title="Failed", style="red"))

    asyncio.run(show_session())


@main.command()
@click.pass_context
def migrate(ctx: click.Context) -> None:
    """Rewrite session records still in an older shape."""
    count = asyncio.run(_store(ctx).migrate_all())
    console.print(f"[green]Migrated {count} session records[/green]")


@main.command(name="init-db", help="Create the session table directly (scratch databases).")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    asyncio.run(_store(ctx).create_all())
    console.print("[green]Session store initialized[/green]")


@main.command(name="schema-check", help="Check DB schema readiness for current code.")
@click.pass_context
def schema_check(ctx: click.Context) -> None:
    async def check() -> set[str] | None:
        from sqlalchemy import inspect

        def columns(sync_conn) -> set[str] | None:
            inspector = inspect(sync_conn)
            if not inspector.has_table(SessionRecord.__tablename__):
                return None
            return {column["name"] for column in inspector.get_columns(SessionRecord.__tablename__)}

        async with _store(ctx).engine.connect() as conn:
            return await conn.run_sync(columns)

    present = asyncio.run(check())
    if present is None:
        console.print(f"[red]Missing table: {SessionRecord.__tablename__}[/red]")
        console.print("Run: `alembic upgrade head`")
        raise SystemExit(1)

    missing = REQUIRED_COLUMNS - present
    if missing:
        console.print(f"[red]Missing required columns: {sorted(missing)}[/red]")
        console.print("Run: `alembic upgrade head`")
        raise SystemExit(1)

    console.print(f"[green]Schema ready[/green] (record schema v{CURRENT_SCHEMA_VERSION})")


if __name__ == "__main__":
    main()
