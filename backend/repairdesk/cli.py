# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/repairdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app wsgi <group> <command> [options]
#
# System bootstrap/repair:
# - flask --app wsgi system init [--admin-username admin] [--admin-password "Password123!"]
#   Idempotent bootstrap: creates tables and the first admin account.
# - flask --app wsgi system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Staff accounts:
# - flask --app wsgi users create --name "Budi" --username budi --password "Password123!" --role technician
#   Create a user (prompts if options are omitted).
# - flask --app wsgi users list [--role technician] [--all]
#   List users with role and active status.
#
# Inventory:
# - flask --app wsgi inventory low-stock
#   Items at or below their minimum stock alert.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, ROLES
from .services import auth_service, inventory_service
from .validation import ConflictError, ValidationError


@click.group("system")
def system_group():
    """System bootstrap and repair commands."""


@system_group.command("init")
@click.option("--admin-name", default="Administrator", help="Display name of the first admin")
@click.option("--admin-username", default="admin", help="Username of the first admin")
@click.option("--admin-password", default="Password123!", help="Password of the first admin")
@with_appcontext
def init_system(admin_name, admin_username, admin_password):
    """
    Create all tables and the first admin account.

    Safe to re-run: existing tables and users are left alone.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing RepairDesk...")
    db.create_all()
    click.echo("PASS Tables ready")

    existing_admin = db.session.query(User).filter_by(role=ROLE_ADMIN, is_active=True).first()
    if existing_admin:
        click.echo(f"WARN  Admin '{existing_admin.username}' already exists, skipping...")
        return

    try:
        user = auth_service.create_user(
            name=admin_name,
            username=admin_username,
            password=admin_password,
            role=ROLE_ADMIN,
        )
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(f"Failed to create admin: {e}")

    click.echo(f"PASS Created admin: {user.username}")
    click.echo("\nSECURITY Change the admin password after first login!")


@system_group.command("reset-db")
@click.option("--yes", is_flag=True, help="Skip confirmation")
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

    click.echo("PASS Database reset complete. Run 'flask system init' to create an admin.")


@click.group("users")
def users_group():
    """Staff account commands."""


@users_group.command("create")
@click.option("--name", prompt=True, help="Display name")
@click.option("--username", prompt=True, help="Username")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True, help="Password")
@click.option("--role", type=click.Choice(list(ROLES)), prompt=True, help="Role")
@with_appcontext
def create_user_cli(name, username, password, role):
    """
    Create a staff account.

    Password must be 8+ characters with uppercase, lowercase, digit and
    special character.
    """
    try:
        user = auth_service.create_user(name=name, username=username, password=password, role=role)
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.username} (ID: {user.id}) with role '{user.role}'")


@users_group.command("list")
@click.option("--role", type=click.Choice(list(ROLES)), help="Filter by role")
@click.option("--all", "include_inactive", is_flag=True, help="Include deactivated accounts")
@with_appcontext
def list_users(role, include_inactive):
    """List staff accounts."""
    users = auth_service.list_users(role=role, is_active=None if include_inactive else True)

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 72)
    click.echo(f"{'ID':<5} {'Username':<20} {'Name':<25} {'Role':<12} {'Active'}")
    click.echo("=" * 72)
    for user in users:
        click.echo(f"{user.id:<5} {user.username:<20} {user.name[:24]:<25} {user.role:<12} {user.is_active}")


@click.group("inventory")
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command("low-stock")
@with_appcontext
def low_stock_cli():
    """List active items at or below their minimum stock alert."""
    items = inventory_service.low_stock_items()
    if not items:
        click.echo("PASS No items below their stock alert.")
        return

    click.echo(f"{'SKU':<20} {'Name':<40} {'Stock':>6} {'Min':>6}")
    for item in items:
        click.echo(f"{item.sku:<20} {item.name[:39]:<40} {item.stock:>6} {item.min_stock_alert:>6}")
    click.echo(f"\nWARN {len(items)} item(s) need restocking")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
