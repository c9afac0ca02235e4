# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-email admin@storefront.local]
#   Idempotent bootstrap: creates tables, default shipping regions, VAT, and an admin.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with role and suspension state.
# - python -m flask users create --name "Jane" --email jane@example.com --password "Password123!" --role user
#   Create a user (prompts if options are omitted).
# - python -m flask users unsuspend jane@example.com
#   Lift an automatic suspension.
# - python -m flask users cancellation-count jane@example.com
#   Show how many cancellations count toward suspension.

import click
from flask.cli import with_appcontext

from .config import get_commerce_config
from .extensions import db
from .models import ShippingPrice, TaxPrice, User
from .models.auth import ROLE_ADMIN, ROLE_USER
from .services.auth_service import create_user, AuthError, PasswordValidationError
from .services.region_service import KNOWN_REGIONS
from .services import suspension_service
from .services.suspension_service import SuspensionError


# Flat-rate starting prices per region (centavos); editable later via /api/admin
DEFAULT_SHIPPING_CENTS = {
    "local": 5000,
    "cebu": 8000,
    "luzon": 15000,
    "visayas": 12000,
    "mindanao": 15000,
}

DEFAULT_TAX_NAME = "VAT"
DEFAULT_TAX_RATE_BPS = 1200


def _find_user(email: str):
    return db.session.query(User).filter_by(email=email.strip().lower()).first()


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-name', default='Store Admin', help='Admin display name')
@click.option('--admin-email', default='admin@storefront.local', help='Admin email')
@click.option('--admin-password', default='Password123!', help='Admin password')
@with_appcontext
def init_system(admin_name, admin_email, admin_password):
    """
    Initialize the storefront: schema, shipping regions, tax, and an admin.

    Existing rows are left untouched, so this is safe to re-run.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing storefront...")

    db.create_all()
    click.echo("PASS Schema ready")

    # 1. Shipping regions
    for region in KNOWN_REGIONS:
        if db.session.query(ShippingPrice).filter_by(region=region).first():
            click.echo(f"PASS Shipping region exists: {region}")
            continue
        db.session.add(ShippingPrice(region=region, price_cents=DEFAULT_SHIPPING_CENTS[region], is_active=True))
        click.echo(f"PASS Created shipping region: {region}")
    db.session.commit()

    # 2. Default tax
    if not db.session.query(TaxPrice).filter_by(name=DEFAULT_TAX_NAME).first():
        db.session.add(TaxPrice(name=DEFAULT_TAX_NAME, rate_bps=DEFAULT_TAX_RATE_BPS, is_active=True))
        db.session.commit()
        click.echo(f"PASS Created tax: {DEFAULT_TAX_NAME} ({DEFAULT_TAX_RATE_BPS / 100:.2f}%)")
    else:
        click.echo(f"PASS Tax exists: {DEFAULT_TAX_NAME}")

    # 3. Admin account
    if _find_user(admin_email):
        click.echo(f"PASS Admin exists: {admin_email}")
    else:
        try:
            create_user(admin_name, admin_email, admin_password, role=ROLE_ADMIN)
            click.echo(f"PASS Created admin: {admin_email}")
        except (AuthError, PasswordValidationError) as e:
            db.session.rollback()
            click.echo(f"FAIL Could not create admin: {e}")
            return

    click.echo("DONE Storefront initialized")


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


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        flags = []
        if not user.is_active:
            flags.append("inactive")
        if user.is_suspended:
            flags.append("suspended")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"{user.id:>4}  {user.email:<40} {user.role:<6}{suffix}")


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([ROLE_USER, ROLE_ADMIN]), default=ROLE_USER, show_default=True, help='Role')
@with_appcontext
def create_user_cli(name, email, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(name, email, password, role=role)
        click.echo(f"PASS Created {user.role} {user.email} (ID: {user.id})")
    except (AuthError, PasswordValidationError) as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")


@users_group.command('unsuspend')
@click.argument('email')
@with_appcontext
def unsuspend_user_cli(email):
    """Lift a suspension for EMAIL."""
    user = _find_user(email)
    if not user:
        click.echo(f"FAIL User not found: {email}")
        return
    try:
        suspension_service.unsuspend_user(user.id)
        click.echo(f"PASS Unsuspended {user.email}")
    except SuspensionError as e:
        click.echo(f"FAIL {e}")


@users_group.command('cancellation-count')
@click.argument('email')
@with_appcontext
def cancellation_count_cli(email):
    """Show cancellations counted toward automatic suspension for EMAIL."""
    user = _find_user(email)
    if not user:
        click.echo(f"FAIL User not found: {email}")
        return
    count = suspension_service.get_cancellation_count(user.id)
    threshold = get_commerce_config().suspension_threshold
    state = "suspended" if user.is_suspended else "active"
    click.echo(f"{user.email}: {count} cancellation(s), threshold {threshold}, account {state}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
