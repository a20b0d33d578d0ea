"""
Command-line inspection of local progress.

Reads the local store directly, so it works without a running server.
`sync` is the only command that talks to the remote ledger.

Usage:
    progress-sync identities
    progress-sync status <identity>
    progress-sync missions <identity>
    progress-sync effects <identity>
    progress-sync sync <identity>
    progress-sync reset <identity> --yes
    progress-sync restore <identity>
"""

import argparse
import asyncio
import logging
from datetime import datetime

from rich.console import Console
from rich.table import Table

from ..config import load_config
from ..session import ProgressSession
from ..state.schema import EffectLedger, MissionStatus, PlayerProgressSnapshot, SyncMeta, SyncResult
from ..state.store import JsonProgressStore, ProgressStore
from ..timers import wall_clock_ms

logger = logging.getLogger(__name__)

# Shared console instance
console = Console()

THEME = {
    "primary": "steel_blue",
    "secondary": "grey70",
    "warning": "dark_goldenrod",
    "danger": "dark_red",
    "accent": "cyan",
    "dim": "dim",
}

STATUS_STYLE = {
    MissionStatus.LOCKED: THEME["dim"],
    MissionStatus.AVAILABLE: THEME["secondary"],
    MissionStatus.ACTIVE: THEME["accent"],
    MissionStatus.COMPLETED: THEME["primary"],
}


def _when(ms: int) -> str:
    if not ms:
        return "never"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _duration(ms: int) -> str:
    seconds = ms // 1000
    return f"{seconds // 60}m {seconds % 60:02d}s"


# -----------------------------------------------------------------------------
# Renderers
# -----------------------------------------------------------------------------

def render_status(snapshot: PlayerProgressSnapshot, meta: SyncMeta | None) -> None:
    table = Table(
        title=f"[bold {THEME['primary']}]{snapshot.name or snapshot.id}[/bold {THEME['primary']}]",
        show_header=False,
        box=None,
    )
    table.add_column("Key", style=THEME["dim"])
    table.add_column("Value", style=THEME["secondary"])

    table.add_row("Identity", snapshot.id)
    table.add_row("Level", str(snapshot.level))
    table.add_row("Experience", str(snapshot.experience))
    table.add_row("Credits", str(snapshot.credits))
    table.add_row("Position", ", ".join(f"{v:.1f}" for v in snapshot.position))
    table.add_row("Inventory", f"{sum(r.quantity for r in snapshot.inventory)} items")
    table.add_row("Active mission", snapshot.active_mission_id or "-")
    table.add_row("Completed", f"{len(snapshot.completed_missions)}/{len(snapshot.missions)}")
    table.add_row("Last updated", _when(snapshot.last_updated))
    table.add_row("Last sync", _when(meta.last_sync_time if meta else 0))

    console.print(table)


def render_missions(snapshot: PlayerProgressSnapshot) -> None:
    table = Table(title=f"Missions - {snapshot.id}")
    table.add_column("ID", style=THEME["dim"])
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Reward", justify="right", style=THEME["secondary"])

    for mission in snapshot.missions:
        style = STATUS_STYLE[mission.status]
        table.add_row(
            mission.id,
            mission.title,
            f"[{style}]{mission.status.value}[/{style}]",
            f"{mission.progress}/{mission.max_progress}",
            f"{mission.rewards.experience} XP / {mission.rewards.credits} cr",
        )

    console.print(table)


def render_effects(ledger: EffectLedger | None, now: int) -> None:
    if ledger is None:
        console.print(f"[{THEME['dim']}]No effects recorded[/{THEME['dim']}]")
        return

    active = [e for e in ledger.effects if e.is_active(now)]
    console.print(f"Lifetime items used: [{THEME['accent']}]{ledger.total_items_used}[/{THEME['accent']}]")
    if not active:
        console.print(f"[{THEME['dim']}]No active effects[/{THEME['dim']}]")
        return

    table = Table()
    table.add_column("Category")
    table.add_column("Multiplier", justify="right", style=THEME["accent"])
    table.add_column("Remaining", justify="right")
    table.add_column("Description", style=THEME["dim"])
    for effect in active:
        table.add_row(
            effect.category.value,
            f"x{effect.multiplier:.2f}",
            _duration(effect.remaining(now)),
            effect.description,
        )
    console.print(table)


def render_identities(store: ProgressStore) -> None:
    identities = store.list_identities()
    if not identities:
        console.print(f"[{THEME['dim']}]No stored progress[/{THEME['dim']}]")
        return

    table = Table()
    table.add_column("Identity")
    table.add_column("Name", style=THEME["secondary"])
    table.add_column("Level", justify="right")
    table.add_column("Last updated", style=THEME["dim"])
    for identity in identities:
        snapshot = store.load(identity)
        if snapshot is None:
            table.add_row(identity, f"[{THEME['danger']}]unreadable[/{THEME['danger']}]", "-", "-")
            continue
        table.add_row(identity, snapshot.name, str(snapshot.level), _when(snapshot.last_updated))
    console.print(table)


def render_sync_result(result: SyncResult) -> None:
    if result.skipped:
        console.print(f"[{THEME['warning']}]Sync already in progress[/{THEME['warning']}]")
        return
    if not result.success:
        console.print(f"[{THEME['danger']}]Sync failed:[/{THEME['danger']}] {result.error}")
        return

    console.print(f"[{THEME['accent']}]Synced[/{THEME['accent']}]")
    if result.has_conflicts:
        table = Table(title="Resolved conflicts")
        table.add_column("Field")
        table.add_column("Local")
        table.add_column("Remote")
        table.add_column("Policy", style=THEME["dim"])
        for conflict in result.conflicts:
            table.add_row(conflict.field, str(conflict.local_value), str(conflict.remote_value), conflict.resolution)
        console.print(table)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

def _load_or_report(store: ProgressStore, identity: str) -> PlayerProgressSnapshot | None:
    snapshot = store.load(identity)
    if snapshot is None:
        console.print(f"[{THEME['warning']}]No local progress for {identity}[/{THEME['warning']}]")
    return snapshot


async def _sync(session: ProgressSession, identity: str) -> SyncResult:
    await session.connect(identity, auto_sync=False)
    try:
        return await session.coordinator.force_sync(identity)
    finally:
        await session.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="progress-sync", description="Inspect local player progress")
    parser.add_argument("--data-dir", default=None, help="Local progress directory")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("identities", help="List stored identities")
    for name, help_text in (
        ("status", "Show a player's progress"),
        ("missions", "List a player's missions"),
        ("effects", "Show active item effects"),
        ("sync", "Reconcile with the remote ledger"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("identity")

    reset = sub.add_parser("reset", help="Delete all local progress for an identity")
    reset.add_argument("identity")
    reset.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    restore = sub.add_parser("restore", help="Roll a snapshot back to its previous save")
    restore.add_argument("identity")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format='%(asctime)s [%(levelname)s] %(message)s',
    )

    config = load_config(args.data_dir)
    store = JsonProgressStore(config["data_dir"])

    if args.command == "identities":
        render_identities(store)
        return 0

    if args.command == "reset":
        if not args.yes:
            answer = console.input(f"Delete all local progress for [bold]{args.identity}[/bold]? [y/N] ")
            if answer.strip().lower() not in ("y", "yes"):
                console.print(f"[{THEME['dim']}]Cancelled[/{THEME['dim']}]")
                return 1
        store.clear_all(args.identity)
        console.print(f"Cleared local progress for {args.identity}")
        return 0

    if args.command == "restore":
        snapshot = store.restore_backup(args.identity)
        if snapshot is None:
            console.print(f"[{THEME['warning']}]No readable backup for {args.identity}[/{THEME['warning']}]")
            return 1
        console.print(f"Restored {args.identity} to the save from {_when(snapshot.last_updated)}")
        return 0

    if args.command == "sync":
        result = asyncio.run(_sync(ProgressSession.from_config(config), args.identity))
        render_sync_result(result)
        return 0 if result.success else 1

    snapshot = _load_or_report(store, args.identity)
    if snapshot is None:
        return 1

    if args.command == "status":
        render_status(snapshot, store.load_sync_meta(args.identity))
    elif args.command == "missions":
        render_missions(snapshot)
    elif args.command == "effects":
        render_effects(store.load_effects(args.identity), wall_clock_ms())
    return 0
