# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/retailpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables and a default owner account (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --email owner@store.local --name "Owner" --password "Password123" --role OWNER
# - python -m flask users list
#
# Stock ledger:
# - python -m flask stock check
#   Report every variant whose computed on-hand is negative (exit code 1 if any).
# - python -m flask stock on-hand --variant-id 1
#   Print the ledger-derived on-hand for one variant.

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import User, UserRole
from .services import ledger_service
from .services.auth_service import create_user

DEFAULT_OWNER_EMAIL = "owner@retailpos.local"
DEFAULT_PASSWORD = "Password123"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--owner-email', default=DEFAULT_OWNER_EMAIL, help='Email for the default owner')
@click.option('--owner-password', default=DEFAULT_PASSWORD, help='Password for the default owner')
@with_appcontext
def init_system(owner_email, owner_password):
    """
    Create tables and a default OWNER account.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing retailpos...")
    db.create_all()
    click.echo("PASS Schema ready")

    existing = db.session.query(User).filter_by(email=owner_email.lower()).first()
    if existing:
        click.echo(f"PASS Owner already exists: {existing.email} (ID: {existing.id})")
        return

    try:
        user = create_user(email=owner_email, name="Owner", password=owner_password, role=UserRole.OWNER)
    except DomainError as e:
        raise click.ClickException(f"Failed to create owner: {e.message}")
    click.echo(f"PASS Created owner: {user.email} (ID: {user.id})")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the stock ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([r.value for r in UserRole], case_sensitive=False), prompt=True, help='Role')
@with_appcontext
def create_user_cli(email, name, password, role):
    """
    Create a new user.

    Password must be 8+ characters with at least one letter and one digit.
    """
    try:
        user = create_user(email=email, name=name, password=password, role=role)
    except DomainError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user: {user.email} with role '{user.role.value}'")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Email':<35} {'Role':<10} {'Active':<8} {'Name'}")
    click.echo("=" * 80)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<35} {user.role.value:<10} {active_str:<8} {user.name}")
    click.echo("=" * 80 + "\n")


@click.group('stock')
def stock_group():
    """Stock ledger inspection commands."""


@stock_group.command('check')
@with_appcontext
def check_stock():
    """
    Scan the ledger for negative on-hand.

    A negative sum means some writer bypassed the stock check. Nothing is
    corrected here; investigate the listed variants' ledgers.
    """
    violations = ledger_service.find_integrity_violations()
    if not violations:
        click.echo("PASS No negative on-hand found")
        return

    click.echo(f"FAIL {len(violations)} variant(s) with negative on-hand:")
    for variant_id, on_hand in violations:
        click.echo(f"     variant {variant_id}: {on_hand}")
    raise SystemExit(1)


@stock_group.command('on-hand')
@click.option('--variant-id', type=int, required=True, help='Variant ID')
@with_appcontext
def show_on_hand(variant_id):
    """Print the ledger-derived on-hand for one variant."""
    try:
        variant = ledger_service.require_variant(variant_id)
    except DomainError as e:
        raise click.ClickException(e.message)
    click.echo(f"{variant.sku}: {ledger_service.compute_on_hand(variant.id)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
