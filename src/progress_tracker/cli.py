"""Operator CLI: watch live progress from a terminal."""

import asyncio
import json
import sys

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table
import typer

from .access import StaticIdentityProvider
from .config import Settings, get_settings
from .errors import NotAuthorized, NotFound, StoreUnavailable
from .logging import setup_logging_from_settings
from .service import ProgressTracker
from .store import create_store
from .views import ProjectDetail, ProjectProgress

app = typer.Typer()
console = Console()


@app.callback()
def callback():
    """
    Progress Tracker CLI
    """


def _progress_label(progress: int | None) -> str:
    return "unavailable" if progress is None else f"{progress}%"


def _board_table(rows: list[ProjectProgress]) -> Table:
    table = Table(title="Projects")
    table.add_column("Project", style="magenta")
    table.add_column("Client")
    table.add_column("Status")
    table.add_column("Progress", justify="right", style="cyan")
    for row in rows:
        label = _progress_label(row.progress)
        if not row.live and row.progress is not None:
            label += " (saved)"
        table.add_row(
            row.project.name, row.project.client_name or "-", row.project.status.value, label
        )
    return table


def _detail_table(detail: ProjectDetail) -> Table:
    caption = f"{detail.breakdown.completed}/{detail.breakdown.total} completed"
    if detail.days_until_deadline is not None:
        caption += f", {detail.days_until_deadline} day(s) to deadline"
    title = f"{detail.project.name} - {_progress_label(detail.progress)}"
    table = Table(title=title, caption=caption)
    table.add_column("Task", style="magenta")
    table.add_column("Status")
    table.add_column("Priority")
    for task in detail.tasks:
        table.add_row(task.title, task.status.value, task.priority.value)
    return table


async def _watch(view, render, json_output: bool, once: bool = False) -> None:
    async with view:
        async for item in view:
            if json_output:
                if isinstance(item, list):
                    payload = [row.model_dump(mode="json", by_alias=True) for row in item]
                else:
                    payload = item.model_dump(mode="json", by_alias=True)
                typer.echo(json.dumps(payload))
            else:
                console.print(render(item))
            if once:
                break


async def watch_public_command(
    settings: Settings, public_id: str, json_output: bool, once: bool = False
) -> None:
    store = create_store(settings)
    tracker = ProgressTracker(store, StaticIdentityProvider(), settings)
    try:
        view = await tracker.public(public_id).open_view()
        await _watch(view, _detail_table, json_output, once)
    finally:
        close = getattr(store, "close", None)
        if close is not None:
            await close()


async def watch_owner_command(
    settings: Settings, owner_id: str, json_output: bool, once: bool = False
) -> None:
    store = create_store(settings)
    tracker = ProgressTracker(store, StaticIdentityProvider(owner_id), settings)
    try:
        view = await tracker.open_owner_view()
        await _watch(view, _board_table, json_output, once)
    finally:
        close = getattr(store, "close", None)
        if close is not None:
            await close()


def _load_settings(redis_url: str | None) -> Settings:
    try:
        settings = get_settings()
    except ValidationError as e:
        console.print(f"[bold red]Invalid configuration:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=3) from None
    if redis_url:
        settings = settings.model_copy(update={"store_backend": "redis", "redis_url": redis_url})
    if settings.store_backend != "redis":
        # An in-process store would always be empty here
        console.print(
            "[bold red]Error:[/bold red] watch commands read a shared store; "
            "set STORE_BACKEND=redis and REDIS_URL, or pass --redis-url"
        )
        raise typer.Exit(code=3)
    return settings


def _run(command, redis_url: str | None, *args) -> None:
    settings = _load_settings(redis_url)
    setup_logging_from_settings(settings, stream=sys.stderr)
    try:
        asyncio.run(command(settings, *args))
    except KeyboardInterrupt:
        pass
    except (NotFound, NotAuthorized) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from None
    except StoreUnavailable as e:
        console.print(f"[bold red]Store unavailable:[/bold red] {e}")
        raise typer.Exit(code=2) from None


REDIS_URL_OPTION = typer.Option(
    None, "--redis-url", help="Redis to read from; overrides STORE_BACKEND and REDIS_URL"
)


@app.command("watch-public")
def watch_public(
    public_id: str = typer.Argument(..., help="Public project identifier"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON lines"),
    once: bool = typer.Option(False, "--once", help="Print the current state and exit"),
    redis_url: str | None = REDIS_URL_OPTION,
):
    """Watch one project through its public link."""
    _run(watch_public_command, redis_url, public_id, json_output, once)


@app.command("watch-owner")
def watch_owner(
    owner_id: str = typer.Argument(..., help="Owner identifier"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON lines"),
    once: bool = typer.Option(False, "--once", help="Print the current state and exit"),
    redis_url: str | None = REDIS_URL_OPTION,
):
    """Watch every project of an owner."""
    _run(watch_owner_command, redis_url, owner_id, json_output, once)
