from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from dotenv import load_dotenv

load_dotenv()

import typer
from rich.console import Console
from rich.table import Table

from touchbase import config
from touchbase.container import build_services
from touchbase.errors import TouchbaseError
from touchbase.models import ACTIVITY_TYPES, InteractionActivity, NoteActivity, ReminderActivity, parse_timestamp
from touchbase.services.contacts import find_contact
from touchbase.services.frequency import bucket_from_elapsed

app = typer.Typer(help="Touchbase: keep in touch with the people who matter")
console = Console()


@app.callback()
def main(
    log_level: str = typer.Option(None, "--log-level", help="Logging level (default from TOUCHBASE_LOG_LEVEL)"),
) -> None:
    logging.basicConfig(level=(log_level or config.log_level()).upper(), format="%(levelname)s: %(message)s")


def _user(user: str | None) -> str:
    user = user or config.current_user()
    if not user:
        console.print("[red]No user given. Pass --user or set TOUCHBASE_USER.[/red]")
        raise typer.Exit(1)
    return user


def _day(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "—"


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """Start the Touchbase API server."""
    import uvicorn

    uvicorn.run("touchbase.web:create_app", host=host, port=port, reload=reload, factory=True)


@app.command()
def remind(user: str = typer.Option(None, "--user", help="User id (default TOUCHBASE_USER)")) -> None:
    """Show missed, this week's and upcoming reminders, and who is due a catch-up."""
    user = _user(user)
    services = build_services()

    async def gather():
        tabs = {tab: await services.reminders.list_by_tab(user, tab) for tab in ("missed", "thisWeek", "upcoming")}
        return tabs, await services.relationships.needing_follow_up(user)

    tabs, follow_up = asyncio.run(gather())

    if not any(tabs.values()) and not follow_up:
        console.print("[green]All clear! Nobody is waiting on you.[/green]")
        return

    titles = {"missed": "Missed", "thisWeek": "This Week", "upcoming": "Upcoming"}
    for tab, reminders in tabs.items():
        if not reminders:
            continue
        table = Table(title=f"{titles[tab]} Reminders")
        table.add_column("Type", style="magenta")
        table.add_column("Contact", style="cyan")
        table.add_column("Notes", style="white")
        table.add_column("Due", style="red" if tab == "missed" else "yellow")
        table.add_column("Repeats", style="dim")
        for r in reminders:
            table.add_row(r.type, r.contact_name, r.notes, _day(r.date), r.frequency)
        console.print(table)

    if follow_up:
        table = Table(title="Time to Reach Out")
        table.add_column("Contact", style="cyan")
        table.add_column("Last Contact", style="yellow")
        table.add_column("Cadence", style="dim")
        for r in follow_up:
            table.add_row(r.contact_name, _day(r.last_contact_date), r.reminder_frequency)
        console.print(table)


@app.command()
def people(
    user: str = typer.Option(None, "--user", help="User id (default TOUCHBASE_USER)"),
    query: str = typer.Option("", "--search", "-s", help="Filter by name, tag, notes or contact details"),
) -> None:
    """List relationships with when you last spoke."""
    user = _user(user)
    services = build_services()
    rows = asyncio.run(services.relationships.search(user, query))
    if not rows:
        console.print("[dim]No relationships yet.[/dim]")
        return

    now = services.clock()
    table = Table(title="Relationships")
    table.add_column("Name", style="cyan")
    table.add_column("Last Contact", style="yellow")
    table.add_column("Via", style="dim")
    table.add_column("Next Reminder", style="green")
    table.add_column("Tags", style="magenta")
    for r in rows:
        last = bucket_from_elapsed(r.last_contact_date, now) if r.last_contact_date else "—"
        table.add_row(r.contact_name, last, r.last_contact_method, _day(r.next_reminder_date), ", ".join(r.tags))
    console.print(table)


@app.command()
def log(
    contact: str = typer.Argument(..., help="Contact name"),
    text: str = typer.Argument("", help="Note content or interaction description"),
    kind: str = typer.Option("note", "--type", "-t", help=f"One of {', '.join(ACTIVITY_TYPES)}"),
    via: str = typer.Option("call", "--via", help="Interaction type: call, text, email, inPerson"),
    when: str = typer.Option(None, "--when", help="ISO date of the interaction or reminder"),
    frequency: str = typer.Option("once", "--repeat", help="Reminder frequency"),
    user: str = typer.Option(None, "--user", help="User id (default TOUCHBASE_USER)"),
) -> None:
    """Record a note, interaction or reminder; the relationship is created if needed."""
    user = _user(user)
    services = build_services()
    try:
        date = parse_timestamp(when)
        if kind == "note":
            activity = NoteActivity(contact_name=contact, content=text, description=text)
        elif kind == "interaction":
            activity = InteractionActivity(contact_name=contact, description=text, interaction_type=via, date=date)
        elif kind == "reminder":
            activity = ReminderActivity(contact_name=contact, description=text, reminder_date=date, frequency=frequency)
        else:
            console.print(f"[red]Unknown activity type {kind!r}[/red]")
            raise typer.Exit(1)

        async def record():
            source = await find_contact(services.directory, contact)
            return await services.engagement.record_activity(user, activity, source)

        outcome = asyncio.run(record())
    except TouchbaseError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from None

    console.print(f"[green]Logged {outcome.value.type} for {contact}.[/green]")
    for warning in outcome.warnings:
        console.print(f"[yellow]{warning}[/yellow]")
