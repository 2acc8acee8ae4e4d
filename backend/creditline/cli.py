# Overview: Flask CLI command groups for bootstrap and ledger verification.

# backend/creditline/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to creditline:create_app (PowerShell: $env:FLASK_APP="creditline:create_app").
# - Use: python -m flask <group> <command> [options]
#
# Ledger:
# - python -m flask ledger init-db
#   DEV only: create every table directly (production uses `flask db upgrade`).
# - python -m flask ledger verify [--org-id 1]
#   Recompute debt, amount paid and stock from the audit trail and print drift.
#
# Registers:
# - python -m flask registers list --date 2026-03-01 [--org-id 1]
#   List daily cash registers for a business day.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import DailyCashRegister, Organization
from .time_utils import parse_iso_date


@click.group('ledger')
def ledger_group():
    """Ledger bootstrap and verification commands."""


@ledger_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (development databases only)."""
    from . import models  # noqa: F401

    db.create_all()
    click.echo("PASS Tables created")


@ledger_group.command('verify')
@click.option('--org-id', type=int, help='Only verify this organization')
@with_appcontext
def verify_ledger(org_id):
    """
    Check every invariant against the audit trail.

    Exit code 1 when any discrepancy is found.
    """
    from .services import audit_service

    query = db.session.query(Organization)
    if org_id:
        query = query.filter_by(id=org_id)
    orgs = query.order_by(Organization.id).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    total_issues = 0
    for org in orgs:
        issues = audit_service.verify_organization(org.id)
        total_issues += len(issues)
        status = "PASS" if not issues else "FAIL"
        click.echo(f"{status} {org.code} ({org.name}): {len(issues)} issue(s)")
        for issue in issues:
            click.echo(
                f"   {issue['check']:<30} {issue['entity']} {issue['id']}: "
                f"expected {issue['expected']}, actual {issue['actual']}"
            )

    if total_issues:
        raise SystemExit(1)


@click.group('registers')
def registers_group():
    """Daily cash register inspection commands."""


@registers_group.command('list')
@click.option('--date', 'day', required=True, help='Business date (YYYY-MM-DD)')
@click.option('--org-id', type=int, help='Filter by organization ID')
@with_appcontext
def list_registers_cli(day, org_id):
    """
    List daily cash registers for a business day.

    Example:
        flask registers list --date 2026-03-01
    """
    try:
        business_date = parse_iso_date(day)
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--date")

    query = db.session.query(DailyCashRegister).filter_by(business_date=business_date)
    if org_id:
        query = query.filter_by(org_id=org_id)
    registers = query.order_by(DailyCashRegister.deliverer_id).all()

    if not registers:
        click.echo("No registers found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(
        f"{'ID':<5} {'Deliverer':<10} {'Expected':>12} {'Collected':>12} "
        f"{'New debt':>12} {'Handed':>12} {'Discrep.':>10} {'Status'}"
    )
    click.echo("=" * 100)
    for r in registers:
        click.echo(
            f"{r.id:<5} {r.deliverer_id:<10} {str(r.expected_collection):>12} {str(r.actual_collection):>12} "
            f"{str(r.new_debt_created):>12} {str(r.cash_handed_over or '-'):>12} "
            f"{str(r.discrepancy if r.discrepancy is not None else '-'):>10} "
            f"{'CLOSED' if r.is_closed else 'OPEN'}"
        )
    click.echo("=" * 100 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
    app.cli.add_command(registers_group)
