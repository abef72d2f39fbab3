"""Incident Warden — CLI demo runner.

Runs the engine and reminder scheduler against the in-memory store and
notification client with second-scale intervals, and renders one live panel
per incident in the terminal using Rich. Prints every message the fake
channel client received when the scenario ends.

Usage:
    uv run python cli.py
"""

import asyncio

from rich.console import Console
from rich.table import Table

from channels.memory import InMemoryNotificationClient
from core.config import Settings
from core.engine import TransitionEngine
from core.errors import IncidentError
from core.fanout import NotificationFanOut
from core.reminder import ReminderScheduler
from core.store import InMemoryIncidentStore
from display.live import LiveDisplay
from schemas.incident import IncidentDraft
from utils.timestamps import utc_now

console = Console()

# Reminders every 2s while open, every 3s while resolved. The SLA grace
# window of 0 hours still covers the first hour after resolve, so resolved
# incidents show up as held rather than reminded.
DEMO_SETTINGS = Settings(
    reminder_open_seconds=2,
    reminder_resolved_seconds=3,
    sla_hours_to_close=0,
    product_channel_id="product-updates",
    support_team="S0SUPPORT",
)


# ── Scenario ──────────────────────────────────────────────────────────────────

async def _scenario(engine: TransitionEngine, client: InMemoryNotificationClient) -> None:
    """Open three incidents and walk them through the lifecycle."""
    await engine.open(IncidentDraft(
        title="Checkout latency above 5s",
        channel_id="inc-checkout",
        description="p99 on /checkout jumped after the 14:00 deploy.",
        author_id="U01ALICE",
        severity_level=1,
        product="payments",
    ))
    await engine.open(IncidentDraft(
        title="Search returns empty results",
        channel_id="inc-search",
        description="Index alias points at an empty index.",
        author_id="U02BOB",
        severity_level=2,
    ))
    await engine.open(IncidentDraft(
        title="Duplicate alert",
        channel_id="inc-dupe",
        description="Opened twice from the same page.",
        author_id="U02BOB",
    ))

    await asyncio.sleep(1)
    await engine.cancel("inc-dupe", "Duplicate of inc-search.", requester="U02BOB")

    # Someone posts and pins a status update: the next reminder is held.
    client.pin_external("inc-search", utc_now(), "Rebuilding the index, ETA 20 min.")

    await asyncio.sleep(4.5)
    await engine.resolve("inc-checkout", "Rolled back the 14:00 deploy.", requester="U01ALICE")

    try:
        await engine.cancel("inc-checkout", "too late")
    except IncidentError as exc:
        console.print(f"[yellow]refused:[/yellow] {exc}")

    await asyncio.sleep(4)
    await engine.close("inc-search", "Alias swap ran before the reindex finished.", requester="U02BOB")
    await asyncio.sleep(3.5)
    await engine.close("inc-checkout", "Connection pool shrunk to 5 in the deploy config.", severity=1)
    await asyncio.sleep(0.5)


# ── Results table ─────────────────────────────────────────────────────────────

def _print_messages(client: InMemoryNotificationClient) -> None:
    table = Table(title="Messages delivered", show_lines=False, border_style="bright_black")
    table.add_column("Time",   style="dim", width=10)
    table.add_column("Target", style="cyan", min_width=16)
    table.add_column("Pin",    width=4, justify="center")
    table.add_column("Text",   min_width=40)

    for message in client.messages:
        table.add_row(
            message.posted_at.strftime("%H:%M:%S"),
            message.target,
            "[green]📌[/green]" if message.pinned else "",
            message.notice.text,
        )

    console.print()
    console.print(table)


# ── Entry point ───────────────────────────────────────────────────────────────

async def _run() -> None:
    event_queue: asyncio.Queue = asyncio.Queue()
    store = InMemoryIncidentStore()
    client = InMemoryNotificationClient()
    fanout = NotificationFanOut(client)
    scheduler = ReminderScheduler(store, fanout, DEMO_SETTINGS, event_queue=event_queue)
    engine = TransitionEngine(store, fanout, scheduler, DEMO_SETTINGS)

    display = LiveDisplay()

    console.rule("[bold]Incident Warden[/bold]")
    console.print(f"  open reminders      [cyan]every {DEMO_SETTINGS.reminder_open_seconds}s[/cyan]")
    console.print(f"  resolved reminders  [cyan]every {DEMO_SETTINGS.reminder_resolved_seconds}s[/cyan]")
    console.print()

    with display.make_live() as live:
        consumer = asyncio.create_task(display.consume(event_queue, live))
        await scheduler.start_all()
        try:
            await _scenario(engine, client)
        finally:
            await scheduler.stop_all()
            await event_queue.put(None)   # sentinel: tell consumer to stop
            await consumer

    _print_messages(client)


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
