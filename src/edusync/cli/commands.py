"""CLI commands for edusync.

Device commands:
- init, reset: create or wipe the local store
- signup, login, logout, users: local accounts
- create-class, join-class: teacher classes and join codes
- record: store a level result for the active user
- share-profile, share-content, import-payload: peer transfer
- sync: replicate with the class server
- leaderboard, history, attendance: reports
- serve: run the class server on this device
"""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from edusync.config.app_config import AppConfig, load_app_config, write_default_config
from edusync.core.accounts import current_user, login as do_login, logout as do_logout, signup as do_signup
from edusync.core.classes import create_class as do_create_class, join_class as do_join_class
from edusync.core.leaderboard import leaderboard as compute_leaderboard
from edusync.db.schemas import USERS
from edusync.db.store import DocumentStore, open_store, reset_store
from edusync.errors import EduSyncError, MigrationError
from edusync.state.device_state import DeviceState, load_device_state
from edusync.sync.merge import ProgressEntry, merge_profile
from edusync.sync.payload import build_content_payload, build_profile_payload, encode_payload
from edusync.sync.peer import import_payload as do_import_payload
from edusync.sync.replicator import Replicator, SyncReport
from edusync.utils.logging import configure_logging

app = typer.Typer(
    name="edusync",
    help="Offline-first learning records with peer and class-server sync.",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Log JSON lines to stderr"),
) -> None:
    """Offline-first learning records with peer and class-server sync."""
    level = "debug" if verbose else load_app_config().log_level
    configure_logging(level, json_output=json_logs)


# =============================================================================
# HELPERS
# =============================================================================


def _open_store_or_exit(config: AppConfig) -> DocumentStore:
    """Open the store, or exit with a recovery hint on migration failure."""
    try:
        return open_store(config.storage.db_path)
    except MigrationError as e:
        console.print(f"[red]✗ {e}[/red]")
        console.print("  Local data cannot be upgraded. Run: edusync reset --yes")
        raise typer.Exit(code=1)


def _open() -> tuple[AppConfig, DocumentStore, DeviceState]:
    config = load_app_config()
    store = _open_store_or_exit(config)
    state = load_device_state(config.storage.state_dir)
    return config, store, state


def _require_user_or_exit(store: DocumentStore, state: DeviceState) -> dict:
    user = current_user(store, state)
    if user is None:
        console.print("[red]✗ No active user. Run: edusync signup or edusync login[/red]")
        raise typer.Exit(code=1)
    return user


def _print_sync_report(report: SyncReport) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Collection", style="cyan")
    table.add_column("Pulled", justify="right")
    table.add_column("Merged", justify="right")
    table.add_column("Rejected", justify="right")
    table.add_column("Pushed", justify="right")
    table.add_column("Errors")

    for c in report.collections:
        table.add_row(
            c.collection,
            str(c.pulled),
            str(c.merged),
            str(c.rejected),
            str(c.pushed),
            "[red]" + "; ".join(c.errors) + "[/red]" if c.errors else "",
        )
    console.print(table)


# =============================================================================
# STORE
# =============================================================================


@app.command()
def init() -> None:
    """Create the local store, state directory and default config file."""
    config_path = write_default_config()

    config, store, _ = _open()
    config.storage.state_dir.mkdir(parents=True, exist_ok=True)
    console.print("[green]✓ Store ready[/green]")
    console.print(f"  [dim]db:[/dim]     {store.db_path}")
    console.print(f"  [dim]state:[/dim]  {config.storage.state_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Wipe all local documents (destructive)."""
    if not yes and not typer.confirm("Delete every local document?"):
        console.print("[yellow]⚠ Reset cancelled[/yellow]")
        raise typer.Exit(code=1)

    config = load_app_config()
    reset_store(config.storage.db_path)
    console.print("[green]✓ Local store reset[/green]")


# =============================================================================
# ACCOUNTS
# =============================================================================


@app.command()
def signup(
    name: str = typer.Argument(..., help="Display name"),
    pin: str = typer.Option(..., "--pin", prompt=True, hide_input=True, help="Login PIN"),
    role: str = typer.Option("student", "--role", "-r", help="student or teacher"),
    avatar: str = typer.Option("🚀", "--avatar", help="Avatar emoji"),
    medium: str | None = typer.Option(None, "--medium", help="english or marathi"),
    class_id: str | None = typer.Option(None, "--class-id", help="Standard, e.g. '10'"),
    phone: str | None = typer.Option(None, "--phone", help="Phone number (teachers)"),
) -> None:
    """Create a local user and log in as them."""
    _, store, state = _open()

    profile = {"medium": medium, "class_id": class_id, "phone": phone}
    try:
        user = do_signup(
            store,
            state,
            name,
            pin,
            role=role,
            avatar_id=avatar,
            **{k: v for k, v in profile.items() if v is not None},
        )
    except EduSyncError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Welcome, {user['name']}[/green]")
    console.print(f"  [dim]user_id:[/dim] {user['id']}")
    console.print(f"  [dim]role:[/dim]    {user['role']}")


@app.command()
def login(
    user_id: str = typer.Argument(..., help="User ID (see: edusync users)"),
    pin: str = typer.Option(..., "--pin", prompt=True, hide_input=True, help="Login PIN"),
) -> None:
    """Log in as an existing local user."""
    _, store, state = _open()

    try:
        ok = do_login(store, state, user_id, pin)
    except EduSyncError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    if not ok:
        console.print("[red]✗ Wrong PIN[/red]")
        raise typer.Exit(code=1)

    user = current_user(store, state)
    console.print(f"[green]✓ Logged in as {user['name'] if user else user_id}[/green]")


@app.command()
def logout() -> None:
    """Clear the active user."""
    config = load_app_config()
    do_logout(load_device_state(config.storage.state_dir))
    console.print("[green]✓ Logged out[/green]")


@app.command()
def users() -> None:
    """List local users."""
    _, store, state = _open()

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Role")
    table.add_column("Class")
    table.add_column("Active", justify="center")

    for u in store.find(USERS, sort_by="createdAt"):
        table.add_row(
            u["id"],
            f"{u['avatarId']} {u['name']}",
            u["role"],
            u.get("teacherClassId", ""),
            "[green]✓[/green]" if u["id"] == state.active_user_id else "",
        )
    console.print(table)


# =============================================================================
# CLASSES
# =============================================================================


@app.command(name="create-class")
def create_class(
    name: str = typer.Argument(..., help="Class name"),
    standard: str | None = typer.Option(None, "--standard", "-s", help="Standard, e.g. '10'"),
    medium: str | None = typer.Option(None, "--medium", help="english or marathi"),
) -> None:
    """Create a class for the active teacher and print its join code."""
    _, store, state = _open()
    user = _require_user_or_exit(store, state)

    try:
        klass = do_create_class(store, user["id"], name, standard=standard, medium=medium)
    except EduSyncError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Class created: {klass['name']}[/green]")
    console.print(f"  [dim]class_id:[/dim] {klass['id']}")
    console.print(f"  [dim]code:[/dim]     [bold]{klass['code']}[/bold]")


@app.command(name="join-class")
def join_class(
    code: str = typer.Argument(..., help="6-character join code"),
) -> None:
    """Join a teacher's class with its code."""
    _, store, state = _open()
    user = _require_user_or_exit(store, state)

    try:
        klass = do_join_class(store, user["id"], code)
    except EduSyncError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    state.bound_class_id = klass["id"]
    console.print(f"[green]✓ Joined {klass['name']}[/green]")


# =============================================================================
# PROGRESS
# =============================================================================


@app.command()
def record(
    level_id: str = typer.Argument(..., help="Level ID"),
    score: float = typer.Option(..., "--score", help="Score 0-100"),
    stars: int = typer.Option(..., "--stars", help="Stars 0-3"),
) -> None:
    """Record a level result for the active user (best result is kept)."""
    _, store, state = _open()
    user = _require_user_or_exit(store, state)

    if not 0 <= score <= 100 or not 0 <= stars <= 3:
        console.print("[red]✗ Score must be 0-100 and stars 0-3[/red]")
        raise typer.Exit(code=1)

    value = int(score) if score.is_integer() else score
    result = merge_profile(store, user["id"], [ProgressEntry(level_id, value, stars)])
    if result.levels_changed:
        console.print(f"[green]✓ Saved {level_id}: {value} ({stars}★)[/green]")
    else:
        console.print(f"[yellow]⚠ Existing result for {level_id} is already better[/yellow]")


# =============================================================================
# PEER SHARING
# =============================================================================


@app.command(name="share-profile")
def share_profile() -> None:
    """Print the active user's progress as a shareable payload."""
    config, store, state = _open()
    user = _require_user_or_exit(store, state)

    payload = build_profile_payload(store, user["id"])
    token = encode_payload(payload, soft_limit=config.payload.soft_limit)
    if len(token) > config.payload.soft_limit:
        console.print(
            f"[yellow]⚠ Payload is {len(token)} chars; it may not fit in one QR code[/yellow]"
        )
    typer.echo(token)


@app.command(name="share-content")
def share_content(
    content_ids: list[str] = typer.Argument(..., help="Content IDs to share"),
) -> None:
    """Print content documents as a shareable payload."""
    config, store, state = _open()
    user = _require_user_or_exit(store, state)

    payload = build_content_payload(store, user["id"], content_ids)
    if not payload.items:
        console.print("[red]✗ None of the given content IDs exist[/red]")
        raise typer.Exit(code=1)

    token = encode_payload(payload, soft_limit=config.payload.soft_limit)
    if len(token) > config.payload.soft_limit:
        console.print(
            f"[yellow]⚠ Payload is {len(token)} chars; it may not fit in one QR code[/yellow]"
        )
    typer.echo(token)


@app.command(name="import-payload")
def import_payload(
    text: str | None = typer.Argument(None, help="Payload text"),
    file: Path | None = typer.Option(None, "--file", "-f", help="Read payload from file"),
) -> None:
    """Import a payload scanned or copied from another device."""
    if file is not None:
        text = file.read_text(encoding="utf-8")
    if not text:
        console.print("[red]✗ Give the payload text or --file[/red]")
        raise typer.Exit(code=1)

    _, store, state = _open()
    try:
        result = do_import_payload(store, state, text)
    except EduSyncError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ {result.message}[/green]")
    console.print(f"  [dim]from:[/dim] {result.source_name}")


# =============================================================================
# NETWORK SYNC
# =============================================================================


@app.command()
def sync(
    url: str | None = typer.Option(None, "--url", "-u", help="Class server URL (saved)"),
    timeout: float | None = typer.Option(None, "--timeout", help="Give up after N seconds"),
) -> None:
    """Replicate with the class server."""
    config, store, state = _open()

    if url:
        state.remote_url = url
    remote = state.remote_url or config.sync.remote_url
    if not remote:
        console.print("[red]✗ No class server configured. Use --url[/red]")
        raise typer.Exit(code=1)

    async def _run() -> SyncReport:
        async with Replicator(store, state, remote, settings=config.sync) as replicator:
            return await replicator.sync_once()

    console.print(f"[blue]Syncing with {remote}...[/blue]")
    try:
        report = asyncio.run(asyncio.wait_for(_run(), timeout))
    except asyncio.TimeoutError:
        console.print(f"[yellow]⚠ Sync did not finish within {timeout}s[/yellow]")
        raise typer.Exit(code=1)

    _print_sync_report(report)
    if report.ok:
        console.print(f"[green]✓ Synced at {state.last_sync_at}[/green]")
    else:
        console.print("[yellow]⚠ Sync finished with errors; will retry next time[/yellow]")
        if state.last_sync_at:
            console.print(f"  [dim]last successful sync:[/dim] {state.last_sync_at}")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(5984, "--port", "-p", help="Port"),
) -> None:
    """Run the class server over this device's store."""
    import uvicorn

    from edusync.web.api import create_app

    _, store, _ = _open()
    console.print(f"[blue]Class server on http://{host}:{port}[/blue]")
    uvicorn.run(create_app(store), host=host, port=port)


# =============================================================================
# REPORTS
# =============================================================================


@app.command()
def leaderboard(
    class_id: str | None = typer.Option(None, "--class-id", "-c", help="Only this class"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Top N"),
) -> None:
    """Show students ranked by stars, then score."""
    _, store, _ = _open()
    entries = compute_leaderboard(store, scope_class_id=class_id, limit=limit)

    if not entries:
        console.print("[yellow]⚠ No students to rank[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Student")
    table.add_column("Stars", justify="right")
    table.add_column("Score", justify="right")
    for e in entries:
        table.add_row(str(e.rank), f"{e.avatar_id} {e.name}", str(e.total_stars), str(e.total_score))
    console.print(table)


@app.command()
def history() -> None:
    """Show recent sync activity."""
    config = load_app_config()
    state = load_device_state(config.storage.state_dir)
    entries = state.activity_log

    if not entries:
        console.print("[dim]No sync activity yet[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Date", style="cyan")
    table.add_column("Activity")
    table.add_column("Type")
    table.add_column("From")
    table.add_column("Phone")
    for e in entries:
        table.add_row(e.date, e.title, e.kind, e.source, e.phone)
    console.print(table)


@app.command()
def attendance() -> None:
    """List the days marked present."""
    config = load_app_config()
    days = load_device_state(config.storage.state_dir).attendance

    if not days:
        console.print("[dim]No attendance recorded[/dim]")
        return
    for day in days:
        console.print(f"  [green]✓[/green] {day}")
    console.print(f"\n[bold]{len(days)}[/bold] days present")
