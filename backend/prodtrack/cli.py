# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/prodtrack/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Zones:
# - python -m flask zones init [--count 23]
#   Create missing work station rows (idempotent).
# - python -m flask zones list
#   Show each zone's car, worker and daily counters.
# - python -m flask zones reset-stats
#   Start-of-day reset of cars_processed_today / average_processing_time.
# - python -m flask zones cleanup-ghosts
#   Reconcile cars and stations that disagree about occupancy.
#
# Inspection:
# - python -m flask boms list
#   List BOM definitions with their component counts.
# - python -m flask inventory show [--location production_zone_3] [--sku A001]
#   Print ledger quantities (non-zero rows only unless --all).

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import bom_service, quantity_service, zone_service
from .services.concurrency import run_in_transaction


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask zones init' to create work stations.")


@click.group('zones')
def zones_group():
    """Production zone commands."""


@zones_group.command('init')
@click.option('--count', type=int, help='Number of zones (defaults to PRODUCTION_ZONE_COUNT)')
@with_appcontext
def init_zones(count):
    """Create work station rows for zones 1..count."""
    created = run_in_transaction(lambda: zone_service.init_work_stations(count))
    click.echo(f"PASS {created} work station(s) created.")


@zones_group.command('list')
@with_appcontext
def list_zones():
    """List all work stations."""
    stations = zone_service.list_work_stations()

    if not stations:
        click.echo("No work stations found. Run 'python -m flask zones init'.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'Zone':<6} {'Car':<19} {'Type':<12} {'Worker':<28} {'Today':<7} {'Avg min'}")
    click.echo("="*90)

    for station in stations:
        click.echo(
            f"{station.zone_id:<6} {station.current_vin or '-':<19} {station.current_car_type or '-':<12} "
            f"{station.worker_email or '-':<28} {station.cars_processed_today:<7} "
            f"{station.average_processing_time or 0:.1f}"
        )

    click.echo("="*90 + "\n")


@zones_group.command('reset-stats')
@with_appcontext
def reset_stats():
    """Reset daily counters on every work station."""
    count = run_in_transaction(zone_service.reset_daily_stats)
    click.echo(f"PASS Daily stats reset on {count} work station(s).")


@zones_group.command('cleanup-ghosts')
@with_appcontext
def cleanup_ghosts():
    """Clear stations and cars that disagree about occupancy."""
    result = run_in_transaction(zone_service.cleanup_ghost_cars)
    for issue in result["issues"]:
        click.echo(f"FIX  {issue}")
    click.echo(f"PASS {result['fixed']} issue(s) fixed.")


@click.group('boms')
def boms_group():
    """BOM inspection commands."""


@boms_group.command('list')
@with_appcontext
def list_boms():
    """List BOM definitions."""
    boms = bom_service.list_boms()

    if not boms:
        click.echo("No BOMs found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'Code':<20} {'Name':<40} {'Lines':<7} {'Units'}")
    click.echo("="*80)

    for bom in boms:
        click.echo(f"{bom.bom_code:<20} {bom.name[:40]:<40} {len(bom.components):<7} {bom.total_components}")

    click.echo("="*80 + "\n")


@click.group('inventory')
def inventory_group():
    """Quantity ledger inspection commands."""


@inventory_group.command('show')
@click.option('--location', help='Location key, e.g. logistics or production_zone_3')
@click.option('--sku', help='Filter by SKU')
@click.option('--all', 'show_all', is_flag=True, help='Include zero quantities')
@with_appcontext
def show_inventory(location, sku, show_all):
    """Print ledger quantities."""
    rows = quantity_service.list_quantities(location=location, sku=sku, include_zero=show_all)

    if not rows:
        click.echo("No inventory rows found.")
        return

    for row in rows:
        flag = "  NEGATIVE" if row.quantity < 0 else ""
        click.echo(f"{row.sku:<20} {row.location:<22} {row.quantity:>8}{flag}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(zones_group)
    app.cli.add_command(boms_group)
    app.cli.add_command(inventory_group)
