# Overview: Flask CLI command group for return reconciliation maintenance.

# backend/purchase_returns/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to purchase_returns (PowerShell: $env:FLASK_APP="purchase_returns").
# - Use: python -m flask <group> <command> [options]
#
# Reconciliation:
# - python -m flask returns resync 42
#   Re-run return reconciliation for purchase order 42.
# - python -m flask returns resync-all
#   Re-run return reconciliation for every purchase order.
#
# Inspection:
# - python -m flask returns list --status completed --type purchase
#   List returns (optionally filtered by status and type).

import click
from flask.cli import with_appcontext

from .services import purchase_order_service, return_service
from .services.concurrency import StoreError
from .validation import ValidationError


@click.group('returns')
def returns_group():
    """Return reconciliation and inspection commands."""


@returns_group.command('resync')
@click.argument('purchase_order_id', type=int)
@with_appcontext
def resync_purchase_order(purchase_order_id):
    """Re-run return reconciliation for one purchase order."""
    if purchase_order_service.get_purchase_order(purchase_order_id) is None:
        raise click.ClickException(f"Purchase order {purchase_order_id} not found")

    try:
        adjustment = purchase_order_service.sync_purchase_order_returns(purchase_order_id)
    except StoreError as e:
        raise click.ClickException(str(e))

    if adjustment is None:
        click.echo(f"SKIP Purchase order {purchase_order_id}: nothing to adjust")
        return
    click.echo(
        f"PASS Purchase order {purchase_order_id}: subtotal={adjustment.subtotal} "
        f"tax={adjustment.tax_amount} total={adjustment.total_amount} "
        f"remaining={adjustment.remaining_amount} returned={adjustment.total_returned_amount}"
    )


@returns_group.command('resync-all')
@with_appcontext
def resync_all_purchase_orders():
    """Re-run return reconciliation for every purchase order."""
    click.echo("START Reconciling purchase orders...")
    try:
        results = purchase_order_service.sync_all_purchase_orders()
    except StoreError as e:
        raise click.ClickException(str(e))

    adjusted = sum(1 for adjustment in results.values() if adjustment is not None)
    click.echo(f"DONE {len(results)} purchase orders checked, {adjusted} adjusted")


@returns_group.command('list')
@click.option('--status', default=None, help='pending, approved, rejected, completed or all')
@click.option('--type', 'return_type', default=None, help='purchase, expense or all')
@click.option('--search', default=None, help='Substring of number, reference, supplier or reason')
@with_appcontext
def list_returns_cli(status, return_type, search):
    """List returns, newest first."""
    try:
        records = return_service.list_returns(search=search, return_type=return_type, status=status)
    except ValidationError as e:
        raise click.BadParameter(str(e))

    if not records:
        click.echo("No returns found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<6} {'Type':<10} {'Status':<10} {'Number':<20} {'Supplier':<25} {'Total':>12}")
    click.echo("="*100)

    for record in records:
        number = record.purchase_number or record.expense_number or record.manual_reference or '-'
        click.echo(
            f"{record.id:<6} {record.type:<10} {record.status:<10} {number:<20} "
            f"{record.supplier_name or '-':<25} {record.total_amount:>12}"
        )

    click.echo("="*100 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(returns_group)
