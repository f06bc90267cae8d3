"""Code Counter settings CLI — presentation layer.

Thin adapter: all behaviour lives in ``ccs.core``.  The CLI only maps
user intents to service calls and formats output.  Relative PATH
arguments are taken relative to the project root.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, NoReturn

import structlog
import typer
from rich import print
from rich.markup import escape
from rich.table import Table

from ccs.core.errors import CCSError, RepoRootNotFound
from ccs.core.logging import configure_logging
from ccs.core.models import SettingField
from ccs.core.service import SettingsService
from ccs.core.settings import Settings
from ccs.modules.badges import classify, file_emoji, folder_emoji, format_line_count, threshold_config

logger = structlog.get_logger()

app = typer.Typer(help="Code Counter — per-directory settings with inheritance.")


# ── Callback (runs before every command) ────────────────────
@app.callback(invoke_without_command=True)
def _main_callback(  # pyright: ignore[reportUnusedFunction]
    ctx: typer.Context,
    root: Path = typer.Option(None, "--root", help="Project root (default: detected from cwd)."),
    log_level: str = typer.Option("INFO", "--log-level", envvar="CCS_LOG_LEVEL", help="Log level."),
    log_json: bool = typer.Option(True, "--log-json/--log-text", envvar="CCS_LOG_JSON", help="JSON or human logs."),
) -> None:
    """Configure logging + settings, then store in context for sub-commands."""
    configure_logging(level=log_level, json_output=log_json)
    try:
        settings = Settings(project_root=root, log_level=log_level, log_json=log_json)
    except RepoRootNotFound:
        print("[red]ERROR:[/red] could not find project root (.vscode or .git not found in parents).")
        raise typer.Exit(code=2)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings

    if ctx.invoked_subcommand is None:
        print(ctx.get_help())


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


def _service(ctx: typer.Context, *, migrate_legacy: bool = True) -> SettingsService:
    """Return the open settings service, caching it in the context.

    The first open imports legacy settings files unless *migrate_legacy* is
    off or ``CCS_MIGRATE_ON_OPEN`` disables it.
    """
    if "service" not in ctx.obj:
        settings = _settings(ctx)
        try:
            service = SettingsService.open(
                settings, migrate_legacy=migrate_legacy and settings.migrate_on_open
            )
        except CCSError as exc:
            _fail("open", exc)
        ctx.obj["service"] = service
        ctx.call_on_close(service.close)
    return ctx.obj["service"]


def _fail(operation: str, exc: Exception) -> NoReturn:
    print(f"[red]ERROR:[/red] {operation}: {escape(str(exc))}")
    raise typer.Exit(code=1)


def _parse_value(raw: str) -> Any:
    """JSON if it parses (``300``, ``true``, ``["a"]``), else the raw string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _pattern_field(include: bool) -> SettingField:
    return SettingField.INCLUDE_PATTERNS if include else SettingField.EXCLUDE_PATTERNS


# ── Commands ────────────────────────────────────────────────
@app.command()
def status(ctx: typer.Context) -> None:
    """Show project root, store location and configured directories."""
    s = _settings(ctx)
    assert s.defaults_file is not None  # guaranteed by model_validator

    print("[bold]Code Counter settings[/bold]")
    print(f"  Project root : {s.project_root}")
    print(f"  Database     : {s.db_path}  {'[green]OK[/green]' if s.db_path.exists() else '[yellow]NOT CREATED[/yellow]'}")
    print(f"  Defaults     : {s.defaults_file}  {'[green]OK[/green]' if s.defaults_file.exists() else '[yellow]BUILT-IN[/yellow]'}")

    if s.db_path.exists():
        try:
            configured = _service(ctx, migrate_legacy=False).list_directories_with_settings()
        except CCSError as exc:
            _fail("status", exc)
        print(f"\n  Configured directories : {len(configured)}")

    logger.info("status_checked", project_root=s.project_root)


@app.command()
def show(
    ctx: typer.Context,
    path: str = typer.Argument(".", help="Directory to resolve."),
    as_json: bool = typer.Option(False, "--json", help="Print the resolution as JSON."),
) -> None:
    """Show the effective settings for a directory and where each comes from."""
    try:
        resolution = _service(ctx).resolve(path)
    except CCSError as exc:
        _fail("show", exc)

    if as_json:
        payload = {
            "directory": resolution.directory,
            "resolved": dict(resolution.resolved),
            "current": dict(resolution.current.values),
            "parent": dict(resolution.parent) if resolution.parent is not None else None,
            "provenance": dict(resolution.provenance),
        }
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    table = Table(title=resolution.directory, show_lines=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_column("Source")
    for setting in SettingField:
        value = resolution[setting]
        shown = ", ".join(value) if setting.is_list else str(value)
        source = resolution.source_of(setting)
        color = "green" if resolution.is_local(setting) else "white"
        table.add_row(setting.value, escape(shown), f"[{color}]{escape(source)}[/{color}]")
    print(table)


@app.command(name="set")
def set_cmd(
    ctx: typer.Context,
    path: str = typer.Argument(help="Directory to configure."),
    field: str = typer.Argument(help="Field name, e.g. lineThresholds.midThreshold."),
    value: str = typer.Argument(help="Value (parsed as JSON when possible)."),
) -> None:
    """Override one field at a directory."""
    service = _service(ctx)
    try:
        service.write(path, {field: _parse_value(value)})
        directory = service.scope.normalize(path)
    except CCSError as exc:
        _fail("set", exc)
    print(f"[green]Set:[/green] {escape(field)} at {escape(directory)}")


@app.command()
def reset(
    ctx: typer.Context,
    path: str = typer.Argument(help="Directory to reset."),
    field: str = typer.Argument(help="Field or group (emojis, lineThresholds)."),
) -> None:
    """Make a directory inherit a field again."""
    try:
        removed = _service(ctx).reset_field(path, field)
    except CCSError as exc:
        _fail("reset", exc)
    if not removed:
        print(f"[yellow]Nothing to reset:[/yellow] {escape(field)} is not set there.")
        return
    print(f"[green]Reset:[/green] {', '.join(f.value for f in removed)}")


@app.command()
def delete(
    ctx: typer.Context,
    path: str = typer.Argument(help="Directory whose settings to drop."),
) -> None:
    """Drop every local setting of a directory."""
    try:
        deleted = _service(ctx).delete(path)
    except CCSError as exc:
        _fail("delete", exc)
    if deleted:
        print("[green]Deleted.[/green]")
    else:
        print("[yellow]No settings stored there.[/yellow]")


@app.command()
def dirs(ctx: typer.Context) -> None:
    """List directories that have their own settings."""
    try:
        directories = _service(ctx).list_directories_with_settings()
    except CCSError as exc:
        _fail("dirs", exc)
    if not directories:
        print("[yellow]No directory has its own settings.[/yellow]")
        return
    for directory in directories:
        typer.echo(directory)


@app.command()
def patterns(
    ctx: typer.Context,
    path: str = typer.Argument(".", help="Directory to inspect."),
    include: bool = typer.Option(False, "--include", help="Include patterns instead of exclude patterns."),
) -> None:
    """List the patterns in effect and where they come from."""
    try:
        sources = _service(ctx).patterns_with_sources(path, _pattern_field(include))
    except CCSError as exc:
        _fail("patterns", exc)

    table = Table(title="Include patterns" if include else "Exclude patterns")
    table.add_column("Pattern", style="bold")
    table.add_column("Source")
    for item in sources:
        table.add_row(escape(item.pattern), escape(item.source))
    print(table)


@app.command(name="add-pattern")
def add_pattern(
    ctx: typer.Context,
    path: str = typer.Argument(help="Directory to configure."),
    pattern: str = typer.Argument(help="Glob pattern to add."),
    include: bool = typer.Option(False, "--include", help="Add to include patterns instead."),
) -> None:
    """Copy the inherited pattern list to a directory and add a pattern."""
    try:
        stored = _service(ctx).add_pattern(path, pattern, _pattern_field(include))
    except CCSError as exc:
        _fail("add-pattern", exc)
    print(f"[green]Stored {len(stored)} patterns.[/green]")


@app.command()
def migrate(ctx: typer.Context) -> None:
    """Import legacy .code-counter.json files into the store."""
    try:
        result = _service(ctx, migrate_legacy=False).migrate()
    except CCSError as exc:
        _fail("migrate", exc)

    print(
        f"Migrated: {result.migrated}  Skipped: {result.skipped}  "
        f"Removed: {result.removed}  Errors: {len(result.errors)}"
    )
    for error in result.errors:
        print(f"[red]ERROR:[/red] migrate: {escape(error.path)}: {escape(error.reason)}")
    if result.errors:
        raise typer.Exit(code=1)


@app.command()
def badge(
    ctx: typer.Context,
    path: str = typer.Argument(help="File or directory the count belongs to."),
    lines: int = typer.Argument(help="Line count."),
    folder: bool = typer.Option(False, "--folder", help="Use folder emojis."),
) -> None:
    """Show the badge a line count gets at a path."""
    service = _service(ctx)
    try:
        resolution = service.resolve(service.scope.directory_for(path))
        level = classify(lines, threshold_config(resolution))
    except CCSError as exc:
        _fail("badge", exc)

    emoji = folder_emoji(resolution, lines) if folder else file_emoji(resolution, lines)
    typer.echo(f"{emoji} {format_line_count(lines)} ({level})")


# ── Entrypoint ──────────────────────────────────────────────
def main() -> None:  # noqa: D103
    app()
