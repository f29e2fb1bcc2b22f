# Overview: Flask CLI command groups for bootstrap and ledger maintenance.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "posledger:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default cashbox.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger inspection:
# - python -m flask ledger verify
#   Rebuild stock, cashbox and customer balances from their logs and list mismatches.
#   Exits non-zero when any aggregate disagrees with its log.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import cashbox_service, reporting_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the ledger database.

    Creates:
    - All tables (no-op for tables that exist)
    - The default cashbox with zero balances
    """
    click.echo("START Initializing posledger...")

    db.create_all()
    click.echo("PASS Tables ready")

    box = cashbox_service.ensure_default_cashbox()
    click.echo(f"PASS Cashbox: {box.name} (ID: {box.id})")

    click.echo("DONE posledger initialized")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('ledger')
def ledger_group():
    """Ledger inspection commands."""


@ledger_group.command('verify')
@click.option('--json', 'as_json', is_flag=True, help='Print the full report as JSON')
@with_appcontext
def verify_ledgers(as_json):
    """Fold every log and compare it with its materialized balance."""
    report = reporting_service.verify_ledgers()

    if as_json:
        click.echo(json.dumps(report, indent=2))
    else:
        counts = report["counts"]
        click.echo(
            f"Checked {counts['products']} products, {counts['cashboxes']} cashboxes, "
            f"{counts['customers']} customers, {counts['sales']} sales"
        )
        for mismatch in report["mismatches"]:
            click.echo(f"FAIL {mismatch['kind']}: {json.dumps(mismatch)}")

    if not report["ok"]:
        raise click.exceptions.Exit(1)
    click.echo("PASS All ledgers reconcile")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
