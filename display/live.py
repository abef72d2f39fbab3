"""Rich live display — one panel per incident, updating as reminders fire.

The display layer is fully decoupled from the scheduler. It subscribes to an
asyncio.Queue of ReminderEvents and renders them into a live terminal
layout. The scheduler runs whether or not a display is attached — it just
puts events into the queue and never checks if anyone is reading.

Usage:
    event_queue = asyncio.Queue()
    display = LiveDisplay()

    with display.make_live() as live:
        consumer = asyncio.create_task(display.consume(event_queue, live))
        ...                              # open / resolve / close incidents
        await event_queue.put(None)      # sentinel — tells consume() to stop
        await consumer
"""

import asyncio
from dataclasses import dataclass, field

from rich.columns import Columns
from rich.console import Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from schemas.events import ReminderEvent, ReminderOutcome


# ── Per-incident state ────────────────────────────────────────────────────────

@dataclass
class _JobState:
    """Mutable state for one incident's panel."""
    channel_id: str
    status: str = "open"
    state: str = "armed"    # armed | sent | suppressed | stopped | error
    sent: int = 0
    suppressed: int = 0
    messages: list[str] = field(default_factory=list)


_SUPPRESSED = {
    ReminderOutcome.SNOOZED,
    ReminderOutcome.SLA_GRACE,
    ReminderOutcome.FRESH_PIN,
}
_STOPPED = {ReminderOutcome.STOPPED, ReminderOutcome.GONE}


# ── Display ───────────────────────────────────────────────────────────────────

class LiveDisplay:
    """Manages the Rich live layout and subscribes to the event queue.

    Panels appear the first time an incident's channel shows up in an event,
    in arrival order.

    Attributes:
        _states: channel_id → _JobState, updated as events arrive.
        _order: channel ids in first-seen order — preserves panel layout.
    """

    def __init__(self) -> None:
        self._states: dict[str, _JobState] = {}
        self._order: list[str] = []

    def make_live(self) -> Live:
        """Return a Rich Live context manager ready to use with `with`."""
        return Live(self._render(), refresh_per_second=8, transient=False)

    async def consume(self, queue: asyncio.Queue, live: Live) -> None:
        """Read events from the queue and update the display until sentinel.

        Args:
            queue: The asyncio.Queue the scheduler writes ReminderEvents into.
            live: The active Rich Live context to update on each event.
        """
        while True:
            event = await queue.get()
            if event is None:
                break
            self._apply(event)
            live.update(self._render())

    # ── Private ───────────────────────────────────────────────────────────────

    def _apply(self, event: ReminderEvent) -> None:
        state = self._states.get(event.channel_id)
        if state is None:
            state = _JobState(channel_id=event.channel_id)
            self._states[event.channel_id] = state
            self._order.append(event.channel_id)

        state.status = event.status
        stamp = event.at.strftime("%H:%M:%S")

        if event.outcome == ReminderOutcome.ARMED:
            state.state = "armed"
            state.messages.append(f"{stamp} armed ({event.status}) {event.message}")

        elif event.outcome == ReminderOutcome.SENT:
            state.state = "sent"
            state.sent += 1
            state.messages.append(f"{stamp} ✉ reminder sent")

        elif event.outcome in _SUPPRESSED:
            state.state = "suppressed"
            state.suppressed += 1
            state.messages.append(f"{stamp} · {event.outcome.value}")

        elif event.outcome == ReminderOutcome.STATUS_CHANGED:
            state.messages.append(f"{stamp} → {event.message}")

        elif event.outcome in _STOPPED:
            state.state = "stopped"
            state.messages.append(f"{stamp} ■ {event.message}")

        elif event.outcome == ReminderOutcome.ERROR:
            state.state = "error"
            state.messages.append(f"{stamp} ✗ {event.message}")

        # Keep only the last 5 lines so panels don't grow unbounded
        state.messages = state.messages[-5:]

    def _render_panel(self, state: _JobState) -> Panel:
        icons = {
            "armed":      "[bold yellow]●[/bold yellow]",
            "sent":       "[bold cyan]✉[/bold cyan]",
            "suppressed": "[dim]○[/dim]",
            "stopped":    "[bold green]■[/bold green]",
            "error":      "[bold red]✗[/bold red]",
        }
        border_styles = {
            "armed":      "yellow",
            "sent":       "cyan",
            "suppressed": "dim",
            "stopped":    "green",
            "error":      "red",
        }

        icon = icons.get(state.state, "○")
        header = Text.from_markup(
            f"{icon}  [bold]{state.status}[/bold]  "
            f"[dim]sent {state.sent} · held {state.suppressed}[/dim]"
        )

        lines: list[Text] = [header]
        for msg in state.messages:
            lines.append(Text(f"  {msg}", style="dim"))

        return Panel(
            Group(*lines),
            title=f"[bold]#{state.channel_id}[/bold]",
            border_style=border_styles.get(state.state, "dim"),
            width=48,
        )

    def _render(self) -> Group:
        """Build the full layout: panels arranged in rows of two."""
        panels = [self._render_panel(self._states[cid]) for cid in self._order]
        if not panels:
            return Group(Text("waiting for reminder jobs...", style="dim"))
        rows = []
        for i in range(0, len(panels), 2):
            rows.append(Columns(panels[i : i + 2], equal=True))
        return Group(*rows)
