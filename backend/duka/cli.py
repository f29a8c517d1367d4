# Overview: Flask CLI command groups for bootstrap, users and inventory checks.

# backend/duka/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent: creates tables plus default admin and seller users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username jane --full-name "Jane W" --password "Secret123" --role seller
#
# Inventory:
# - python -m flask inventory low-stock [--notify]
#   List products at or below their low-stock threshold; --notify logs the
#   alert and appends a NOTIFICATION ledger row.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, ROLE_SELLER, ROLES
from .services import inventory_service
from .services.auth_service import create_user
from .validation import DukaError

DEFAULT_PASSWORD = "Password123"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables and the default users (admin, seller).

    All passwords default to "Password123". Change them in production!
    """
    click.echo("START Initializing Duka...")
    db.create_all()
    click.echo("PASS Tables ready")

    for username, full_name, role in (
        ("admin", "Administrator", ROLE_ADMIN),
        ("seller", "Default Seller", ROLE_SELLER),
    ):
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"SKIP User '{username}' already exists")
            continue
        create_user(username, DEFAULT_PASSWORD, full_name=full_name, role=role)
        click.echo(f"PASS Created user: {username} ({role})")

    click.echo("DONE Duka initialized")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """DANGER: Drop all tables and recreate schema."""
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<8} {status}")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--full-name', default=None, help='Display name on receipts')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), default=ROLE_SELLER, show_default=True, help='Role')
@with_appcontext
def create_user_cli(username, full_name, password, role):
    """
    Create a new user.

    Password must be 8+ characters with at least one letter and one digit.
    """
    try:
        user = create_user(username, password, full_name=full_name, role=role)
    except DukaError as e:
        click.echo(f"FAIL Failed to create user: {e.message}")
        return

    click.echo(f"PASS Created user: {user.username} with role '{user.role}'")


@click.group('inventory')
def inventory_group():
    """Inventory checks."""


_SEVERITY_LABELS = {0: "OUT OF STOCK", 1: "CRITICAL", 2: "CRITICAL"}


@inventory_group.command('low-stock')
@click.option('--notify', is_flag=True, help='Log the alert and record a NOTIFICATION ledger row')
@with_appcontext
def low_stock(notify):
    """List products at or below their low-stock threshold, worst first."""
    products = inventory_service.find_low_stock_products()
    if not products:
        click.echo("PASS All products adequately stocked")
        return

    for product in products:
        label = _SEVERITY_LABELS.get(product.quantity, "LOW")
        click.echo(
            f"{label:<13} {product.item_code:<16} {product.description:<32} "
            f"qty={product.quantity} threshold={product.low_stock_threshold}"
        )

    if notify:
        recipient = current_app.config.get("ADMIN_EMAIL")
        if not recipient:
            click.echo("FAIL ADMIN_EMAIL is not configured")
            return
        current_app.logger.warning(
            "Low stock alert: %d product(s) at or below threshold, notifying %s",
            len(products), recipient,
        )
        inventory_service.record_low_stock_notification(recipient, len(products))
        click.echo(f"PASS Alert for {len(products)} item(s) recorded for {recipient}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
