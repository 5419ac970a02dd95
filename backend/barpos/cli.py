# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/barpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask db upgrade
#   Apply Alembic migrations (Flask-Migrate).
# - python -m flask system init-db
#   Create any missing tables directly from the models (dev/test).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --name "Ana" --email ana@bar.local --role ADMIN
#   Create a user (prompts for the password).
# - python -m flask users list
#   List all users with role and active status.
#
# Stock:
# - python -m flask stock low
#   List UNIT products at or below minimum stock and barrels at or below residue.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Barrel
from .models.auth import ROLES
from .models.inventory import BARREL_ACTIVE
from .services.auth_service import create_user, PasswordValidationError
from .services.inventory_service import list_low_stock
from .validation import ConflictError


@click.group('system')
def system_group():
    """Schema bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address (login)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), default='USER', show_default=True, help='Role')
@with_appcontext
def create_user_cli(name, email, password, role):
    """Create a new user. The password is hashed with bcrypt."""
    try:
        user = create_user(name=name, email=email, password=password, role=role)
    except PasswordValidationError as e:
        raise click.ClickException(f"Password validation failed: {e}")
    except (ConflictError, ValueError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created user: {user.name} ({user.email}) with role '{user.role}'")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found. Run 'python -m flask users create'.")
        return

    click.echo(f"{'ID':<5} {'Name':<24} {'Email':<32} {'Role':<6} {'Active':<6}")
    click.echo("-" * 77)
    for u in users:
        click.echo(f"{u.id:<5} {u.name[:24]:<24} {u.email[:32]:<32} {u.role:<6} {'yes' if u.is_active else 'no':<6}")


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('low')
@with_appcontext
def low_stock():
    """Show products and barrels that need restocking."""
    rows = list_low_stock()
    click.echo("Unit stock at or below minimum:")
    if not rows:
        click.echo("  (none)")
    for row in rows:
        click.echo(f"  {row['product_name']}: {row['quantity']} (min {row['min_quantity']})")

    barrels = (
        db.session.query(Barrel)
        .filter(Barrel.status == BARREL_ACTIVE)
        .filter(Barrel.volume_available_ml <= Barrel.min_residue_ml)
        .order_by(Barrel.name.asc())
        .all()
    )
    click.echo("Barrels at or below residue:")
    if not barrels:
        click.echo("  (none)")
    for b in barrels:
        click.echo(f"  {b.name}: {b.volume_available_ml}ml (residue {b.min_residue_ml}ml)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
