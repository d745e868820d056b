"""
ReplayLink CLI - Command Line Interface for replay ingestion and team linking

Provides commands for:
- Ingesting replays from files, URLs or replay ids
- Batch importing replay URLs
- Browsing ingested battles
- Linking battles to imported teams (auto, backfill, manual)
"""

import datetime as dt
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from replaylink import __version__
from replaylink.core.config import (
    ReplayLinkConfig,
    generate_default_config,
    load_config,
    set_config,
    setup_logging,
)
from replaylink.core.constants import Side
from replaylink.core.errors import ReplayLinkError
from replaylink.infra.database import DatabaseManager
from replaylink.infra.repository import BattleRepository
from replaylink.linking.orchestrator import TeamLinker
from replaylink.pipeline.ingest import ReplayIngestService

app = typer.Typer(
    name="replaylink",
    help="Ingest Pokemon Showdown replays and link them to your imported teams",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)

# Options captured by the callback, consumed by commands
_state: dict = {"config_file": None, "db_path": None}


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]ReplayLink[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Enable verbose output"),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file (YAML, TOML or JSON)", dir_okay=False
    ),
    db_path: Optional[Path] = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """ReplayLink - Showdown replay ingestion and team linking"""
    _state["config_file"] = config_file
    _state["db_path"] = db_path
    _state["verbose"] = verbose


def _runtime() -> tuple[ReplayLinkConfig, DatabaseManager]:
    """Load configuration and open the database for one command."""
    try:
        config = load_config(_state.get("config_file"))
    except (OSError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1)

    if _state.get("db_path"):
        config.database.path = str(_state["db_path"])
    if _state.get("verbose"):
        config.logging.level = "DEBUG"

    setup_logging(config.logging)
    set_config(config)
    return config, DatabaseManager(config.database.path, echo=config.database.echo)


def _fail(e: Exception) -> None:
    console.print(f"[red]Error:[/red] {e}")
    raise typer.Exit(1)


def _format_time(epoch: Optional[int]) -> str:
    if epoch is None:
        return "-"
    return dt.datetime.fromtimestamp(epoch, tz=dt.UTC).strftime("%Y-%m-%d %H:%M")


def _species_cell(entries: list[dict]) -> str:
    return ", ".join(
        f"[bold]{e['species_name']}[/bold]" if e["is_lead"] else e["species_name"] for e in entries
    )


# =============================================================================
# Ingestion
# =============================================================================


@app.command()
def ingest(
    source: str = typer.Argument(..., help="Replay URL, replay id, or a local .json/.log file"),
    replay_id: Optional[str] = typer.Option(
        None, "--replay-id", "-r", help="Replay id for a raw .log file (defaults to the file name)"
    ),
    link: bool = typer.Option(True, "--link/--no-link", help="Auto-link after ingesting"),
    clear_auto_links: Optional[bool] = typer.Option(
        None,
        "--clear-auto-links/--keep-auto-links",
        help="Drop automatic links of a re-ingested battle (default from config)",
    ),
) -> None:
    """
    Ingest one replay.

    Re-ingesting the same replay rebuilds its rows in place.
    """
    config, db = _runtime()
    service = ReplayIngestService(db=db, config=config)
    path = Path(source)

    try:
        if path.is_file():
            if path.suffix.lower() == ".json":
                payload = json.loads(path.read_text(encoding="utf-8"))
                result = service.ingest_payload(payload, clear_auto_links=clear_auto_links)
            else:
                result = service.ingest_replay(
                    replay_id or path.stem,
                    path.read_text(encoding="utf-8"),
                    clear_auto_links=clear_auto_links,
                )
            outcome = service.linker.auto_link_battle(result.battle_id) if link else None
        else:
            result, outcome = service.ingest_from_input(
                source, auto_link=link, clear_auto_links=clear_auto_links
            )
    except (ReplayLinkError, ValueError) as e:
        _fail(e)

    verb = "Ingested" if result.created else "Re-ingested"
    console.print(
        f"[green]{verb}[/green] {result.replay_id} as battle [bold]{result.battle_id}[/bold] "
        f"({result.events} events, {result.preview} preview, {result.revealed} revealed, "
        f"{result.brought} brought)"
    )
    if result.auto_links_cleared:
        console.print(f"Cleared {result.auto_links_cleared} automatic link(s)")
    if outcome is not None:
        if outcome.linked:
            console.print(
                f"[green]Linked[/green] to team version {outcome.team_version_id} "
                f"({outcome.confidence:.0%}, {outcome.method})"
            )
        else:
            console.print(f"[yellow]Not linked:[/yellow] {outcome.reason}")


@app.command("import")
def import_replays(
    file: Path = typer.Argument(
        ..., help="Text file with one replay URL or id per line", exists=True, dir_okay=False
    ),
) -> None:
    """
    Import replays listed in a text file.

    Duplicate ids are imported once. Two or more successful imports are
    grouped as one battle set.
    """
    config, db = _runtime()
    service = ReplayIngestService(db=db, config=config)
    report = service.import_from_text(file.read_text(encoding="utf-8"))

    table = Table(title="Import")
    table.add_column("Input", style="cyan")
    table.add_column("Status")
    table.add_column("Battle", justify="right")
    table.add_column("Linked")
    for row in report.rows:
        status = "[green]ok[/green]" if row.ok else f"[red]{row.error}[/red]"
        table.add_row(
            row.input,
            status,
            str(row.battle_id) if row.battle_id is not None else "-",
            "yes" if row.linked else "-",
        )
    console.print(table)
    console.print(f"{report.ok_count} ok, {report.fail_count} failed")
    if report.set_key:
        console.print(f"Grouped as set [cyan]{report.set_key}[/cyan]")
    if report.fail_count and not report.ok_count:
        raise typer.Exit(1)


# =============================================================================
# Browsing
# =============================================================================


@app.command()
def battles(
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum battles to list"),
    offset: int = typer.Option(0, "--offset", help="Pagination offset"),
) -> None:
    """List ingested battles, newest first."""
    _, db = _runtime()
    with db.session_scope() as session:
        rows = BattleRepository(session).list_battles(limit=limit, offset=offset)

    if not rows:
        console.print("[yellow]No battles ingested yet[/yellow]")
        return

    table = Table(title="Battles")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Played")
    table.add_column("Format")
    table.add_column("Opponent")
    table.add_column("Result")
    table.add_column("Team")
    table.add_column("Brought")
    for row in rows:
        result = {"win": "[green]W[/green]", "loss": "[red]L[/red]"}.get(row["result"], "-")
        team = "-"
        if row["linked_team_version_id"] is not None:
            team = f"{row['linked_team_name'] or row['linked_team_version_id']}"
            if row["link_matched_by"] == "user":
                team += " *"
            elif row["link_confidence"] is not None:
                team += f" ({row['link_confidence']:.0%})"
        table.add_row(
            str(row["id"]),
            _format_time(row["played_at"]),
            row["format_key"] or "-",
            row["opponent_name"] or "-",
            result,
            team,
            _species_cell(row["user_brought"]),
        )
    console.print(table)


@app.command()
def show(
    battle_id: int = typer.Argument(..., help="Battle id"),
    events: bool = typer.Option(False, "--events", "-e", help="Also print the raw event log"),
) -> None:
    """Show one battle."""
    _, db = _runtime()
    with db.session_scope() as session:
        details = BattleRepository(session).get_battle_details(battle_id)
    if details is None:
        console.print(f"[red]Error:[/red] Battle {battle_id} not found")
        raise typer.Exit(1)

    battle = details["battle"]
    names = {s["side"]: s["player_name"] for s in details["sides"]}
    winner = battle["winner_side"]
    console.print(
        Panel(
            f"[cyan]Replay:[/cyan] {battle['replay_id']}\n"
            f"[cyan]Format:[/cyan] {battle['format_id'] or battle['format_name'] or '-'}"
            f" (gen {battle['gen'] or '?'}, {battle['game_type'] or '?'})\n"
            f"[cyan]Played:[/cyan] {_format_time(battle['played_at'])}"
            f"{'  [yellow]rated[/yellow]' if battle['is_rated'] else ''}\n"
            f"[cyan]Players:[/cyan] {names.get('p1', '?')} vs {names.get('p2', '?')}\n"
            f"[cyan]Winner:[/cyan] {names.get(winner, battle['winner_name']) if winner else battle['winner_name'] or '-'}",
            title=f"[bold blue]Battle {battle_id}[/bold blue]",
            expand=False,
        )
    )

    for side in (Side.P1, Side.P2):
        table = Table(
            title=f"{side} {names.get(side, '')}{' (you)' if details['user_side'] == side else ''}"
        )
        table.add_column("Preview")
        table.add_column("Brought")
        table.add_column("Item")
        table.add_column("Ability")
        table.add_column("Moves")
        preview = [p["species_name"] for p in details["preview"] if p["side"] == side]
        brought = {b["species_name"].lower(): b for b in details["brought"] if b["side"] == side}
        revealed = {r["species_name"].lower(): r for r in details["revealed"] if r["side"] == side}
        for species in preview or [b["species_name"] for b in brought.values()]:
            seen = brought.get(species.lower())
            sheet = revealed.get(species.lower(), {})
            table.add_row(
                species,
                ("lead" if seen["is_lead"] else "yes") if seen else "-",
                sheet.get("item_name") or "-",
                sheet.get("ability_name") or "-",
                ", ".join(sheet.get("moves") or []) or "-",
            )
        console.print(table)

    link = details["user_link"]
    if link:
        console.print(
            f"Linked team version [bold]{link['team_version_id']}[/bold] "
            f"by {link['matched_by']} ({link['match_method']}, {link['match_confidence'] or 0:.0%})"
        )

    if events:
        for ev in details["events"]:
            turn = ev["turn_num"] if ev["turn_num"] is not None else "-"
            console.print(f"{ev['sequence']:>5} t{turn:<3} {ev['raw_line']}", markup=False)


# =============================================================================
# Linking
# =============================================================================


@app.command()
def link(
    battle_id: int = typer.Argument(..., help="Battle id"),
    format_key: Optional[str] = typer.Option(None, "--format", "-f", help="Format key hint"),
) -> None:
    """Auto-link one battle to the best matching team."""
    config, db = _runtime()
    try:
        outcome = TeamLinker(db, config.matching).auto_link_battle(battle_id, format_key)
    except ReplayLinkError as e:
        _fail(e)

    if outcome.linked:
        console.print(
            f"[green]Linked[/green] battle {battle_id} to team version "
            f"{outcome.team_version_id} ({outcome.confidence:.0%}, {outcome.method})"
        )
    else:
        console.print(f"[yellow]Not linked:[/yellow] {outcome.reason}")


@app.command()
def backfill(
    team_version_id: int = typer.Argument(..., help="Team version id"),
    format_key: Optional[str] = typer.Option(None, "--format", "-f", help="Format key hint"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum battles to scan"),
) -> None:
    """Link previously ingested battles to one team version."""
    config, db = _runtime()
    try:
        report = TeamLinker(db, config.matching).backfill_team_version(
            team_version_id, format_key, limit
        )
    except ReplayLinkError as e:
        _fail(e)

    console.print(
        f"Scanned {report.scanned} battles: [green]{report.linked} linked[/green], "
        f"{report.skipped} skipped, {report.failed} failed"
    )


@app.command()
def confirm(
    battle_id: int = typer.Argument(..., help="Battle id"),
    team_version_id: int = typer.Argument(..., help="Team version id"),
    side: Optional[Side] = typer.Option(
        None, "--side", "-s", help="Side to link (defaults to your side)"
    ),
) -> None:
    """Confirm a battle's team by hand. Automatic linking never overrides it."""
    config, db = _runtime()
    try:
        linked_side = TeamLinker(db, config.matching).confirm_link(battle_id, team_version_id, side)
    except ReplayLinkError as e:
        _fail(e)
    console.print(
        f"[green]Confirmed[/green] battle {battle_id} {linked_side} as team version {team_version_id}"
    )


@app.command("set-user")
def set_user(
    battle_id: int = typer.Argument(..., help="Battle id"),
    side: Optional[Side] = typer.Argument(None, help="p1 or p2 (omit to clear)"),
) -> None:
    """Mark which side of a battle is you."""
    config, db = _runtime()
    try:
        ReplayIngestService(db=db, config=config).set_user_side(battle_id, side)
    except ReplayLinkError as e:
        _fail(e)
    console.print(f"Battle {battle_id}: your side is {side or 'unset'}")


@app.command("team-add")
def team_add(
    name: str = typer.Argument(..., help="Team name (a new version is added if it exists)"),
    species: list[str] = typer.Argument(..., help="Species, in slot order"),
    format_key: Optional[str] = typer.Option(None, "--format", "-f", help="Format key"),
    run_backfill: bool = typer.Option(
        True, "--backfill/--no-backfill", help="Link existing battles to the new version"
    ),
) -> None:
    """Add a team version from a species list."""
    config, db = _runtime()
    with db.session_scope() as session:
        version = BattleRepository(session).add_team_version(name, species, format_key)
        version_id, version_num = version.id, version.version_num
    console.print(f"[green]Added[/green] {name} v{version_num} (team version {version_id})")

    if run_backfill:
        report = TeamLinker(db, config.matching).backfill_team_version(version_id, format_key)
        console.print(f"Backfill linked {report.linked} of {report.scanned} battles")


@app.command("config-init")
def config_init(
    path: Path = typer.Argument(Path("replaylink.yaml"), help="Where to write the config file"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a default configuration file."""
    if path.exists() and not force:
        console.print(f"[red]Error:[/red] {path} already exists (use --force)")
        raise typer.Exit(1)
    try:
        generate_default_config(path)
    except ValueError as e:
        _fail(e)
    console.print(f"[green]Wrote[/green] {path}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
