# Overview: Flask CLI command groups for sheet setup, sequence counters and cache maintenance.

# backend/gridledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Database:
# - python -m flask db upgrade
#   Create the counter and cache tables (Flask-Migrate).
#
# Sheets:
# - python -m flask sheets init
#   Create every store and master sheet with its header row; seed the journal configuration.
# - python -m flask sheets show 見積リスト [--limit 20]
#   Print the first rows of a sheet.
#
# Sequence counters:
# - python -m flask sequences show SEQ_ORDER
# - python -m flask sequences set SEQ_ORDER 120
#   Move a counter (e.g. after importing records minted elsewhere).
#
# Cache:
# - python -m flask cache clear
#   Drop every cached aggregate.

import click
from flask import current_app
from flask.cli import with_appcontext

from .services.concurrency import LockTimeout
from .services.grid_storage import SheetNotFoundError, display_value
from .services import record_service


def _context():
    return current_app.extensions["gridledger"]


@click.group('sheets')
def sheets_group():
    """Grid sheet setup and inspection."""


@sheets_group.command('init')
@with_appcontext
def init_sheets():
    """Create all sheets with header rows (idempotent)."""
    result = record_service.initialize_sheets(_context())
    if not result.success:
        raise click.ClickException(f"Initialization failed: {result.message}")
    created = result.extra["created"]
    if created:
        for name in created:
            click.echo(f"PASS Initialized sheet: {name}")
    else:
        click.echo("PASS All sheets already exist")


@sheets_group.command('show')
@click.argument('name')
@click.option('--limit', default=20, show_default=True, help='Rows to print')
@with_appcontext
def show_sheet(name, limit):
    """Print the first rows of a sheet."""
    grid = _context().grid
    try:
        rows = grid.get_values(name, display=True)
    except SheetNotFoundError:
        raise click.ClickException(f"Sheet not found: {name}")
    if not rows:
        click.echo("(empty)")
        return
    for index, row in enumerate(rows[:limit], start=1):
        click.echo(f"{index:>4}  " + " | ".join(display_value(v) for v in row))
    if len(rows) > limit:
        click.echo(f"... {len(rows) - limit} more rows")


@click.group('sequences')
def sequences_group():
    """Sequence counter inspection and repair."""


@sequences_group.command('show')
@click.argument('key')
@with_appcontext
def show_sequence(key):
    click.echo(f"{key} = {_context().sequences.peek(key)}")


@sequences_group.command('set')
@click.argument('key')
@click.argument('value', type=int)
@with_appcontext
def set_sequence(key, value):
    """Set a counter; the next id minted is VALUE + 1."""
    if value < 0:
        raise click.BadParameter("value must be >= 0")
    try:
        _context().sequences.set(key, value)
    except LockTimeout as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS {key} = {value}")


@click.group('cache')
def cache_group():
    """Read cache maintenance."""


@cache_group.command('clear')
@with_appcontext
def clear_cache():
    count = _context().cache.clear()
    click.echo(f"PASS Cleared {count} cache entries")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(sheets_group)
    app.cli.add_command(sequences_group)
    app.cli.add_command(cache_group)
