# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/dsr/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--store-code MAIN --store-name "Main Store"]
#   Idempotent bootstrap: creates tables, a default store and a super user "admin".
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stores:
# - python -m flask stores list
# - python -m flask stores create --code BLR01 --name "Bengaluru Central"
#
# Users:
# - python -m flask users list
# - python -m flask users create --username asha --role cashier --store-id 1
#   Create a user; store-level roles get access to --store-id.
# - python -m flask users grant-store --username asha --store-id 2
#   Give a store-level user access to another store.
#
# Permission inspection:
# - python -m flask perms list [--role cashier]
#   List permission codes and how each role holds them.
# - python -m flask perms check cashier RECONCILE_TRANSACTIONS
#
# Cash inspection:
# - python -m flask cash balances --store-id 1
#   Show both pool balances and today's expected amounts.
# - python -m flask cash verify [--store-id 1]
#   Recompute pool balances from movements and report drift.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import POOLS, Store, User, UserStoreAccess
from .permissions import (
    DEFAULT_ROLE_PERMISSIONS,
    PERMISSION_DEFINITIONS,
    ROLE_DISPLAY_NAMES,
    ROLES,
    SUPER_USER,
    get_permission_definition,
    has_grant,
    validate_permission_code,
)
from .services import cash_position_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--store-code', default='MAIN', help='Default store code')
@click.option('--store-name', default='Main Store', help='Default store name')
@click.option('--admin-username', default='admin', help='Super user username')
@with_appcontext
def init_system(store_code, store_name, admin_username):
    """
    Initialize the database with a default store and a super user.

    Safe to re-run: existing rows are left as they are.
    """
    click.echo("START Initializing cash reconciliation system...")
    db.create_all()

    store = db.session.query(Store).filter_by(code=store_code).first()
    if not store:
        store = Store(code=store_code, name=store_name, is_active=True)
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created store: {store.name} (ID: {store.id}, Code: {store.code})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    admin = db.session.query(User).filter_by(username=admin_username).first()
    if not admin:
        admin = User(username=admin_username, full_name="Administrator", role=SUPER_USER, default_store_id=store.id)
        db.session.add(admin)
        db.session.commit()
        click.echo(f"PASS Created super user: {admin.username} (ID: {admin.id})")
    else:
        click.echo(f"PASS Using existing user: {admin.username} (ID: {admin.id}, role: {admin.role})")

    click.echo("DONE System initialized.")


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


@click.group('stores')
def stores_group():
    """Store management commands."""


@stores_group.command('list')
@with_appcontext
def list_stores():
    stores = db.session.query(Store).order_by(Store.code).all()
    if not stores:
        click.echo("No stores found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Code':<12} {'Name':<40} {'Active'}")
    click.echo("="*70)
    for store in stores:
        click.echo(f"{store.id:<5} {store.code:<12} {store.name:<40} {'Yes' if store.is_active else 'No'}")
    click.echo("="*70 + "\n")


@stores_group.command('create')
@click.option('--code', prompt=True, help='Unique store code')
@click.option('--name', prompt=True, help='Store name')
@with_appcontext
def create_store(code, name):
    if db.session.query(Store).filter_by(code=code).first():
        click.echo(f"FAIL Store code {code} already exists")
        return
    store = Store(code=code, name=name, is_active=True)
    db.session.add(store)
    db.session.commit()
    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, Code: {store.code})")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--full-name', default=None, help='Display name')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@click.option('--store-id', type=int, default=None, help='Default store (also granted for store-level roles)')
@with_appcontext
def create_user_cli(username, full_name, role, store_id):
    """Create a new user. Credentials live with the identity provider."""
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL Username {username} already exists")
        return
    if store_id is not None and db.session.get(Store, store_id) is None:
        click.echo(f"FAIL Store ID {store_id} not found")
        return

    user = User(username=username, full_name=full_name, role=role, default_store_id=store_id)
    db.session.add(user)
    db.session.flush()
    if store_id is not None:
        db.session.add(UserStoreAccess(user_id=user.id, store_id=store_id, can_view=True))
    db.session.commit()
    click.echo(f"PASS Created user: {username} (ID: {user.id}) with role '{role}'")


@users_group.command('grant-store')
@click.option('--username', required=True)
@click.option('--store-id', type=int, required=True)
@with_appcontext
def grant_store_cli(username, store_id):
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User {username} not found")
        return
    if db.session.get(Store, store_id) is None:
        click.echo(f"FAIL Store ID {store_id} not found")
        return

    grant = db.session.query(UserStoreAccess).filter_by(user_id=user.id, store_id=store_id).first()
    if grant:
        grant.can_view = True
    else:
        db.session.add(UserStoreAccess(user_id=user.id, store_id=store_id, can_view=True))
    db.session.commit()
    click.echo(f"PASS {username} can access store {store_id}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles and stores."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<20} {'Active':<8} {'Stores'}")
    click.echo("="*90)
    for user in users:
        store_ids = sorted(g.store_id for g in user.store_access if g.can_view)
        stores_str = ", ".join(str(s) for s in store_ids) if store_ids else "-"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {ROLE_DISPLAY_NAMES.get(user.role, user.role):<20} {active_str:<8} {stores_str}")
    click.echo("="*90 + "\n")


@click.group('perms')
def perms_group():
    """Permission inspection commands."""


@perms_group.command('list')
@click.option('--role', type=click.Choice(list(ROLES)), default=None, help='Show one role only')
@with_appcontext
def list_permissions_cli(role):
    roles = [role] if role else list(ROLES)
    click.echo("\n" + "="*100)
    click.echo(f"{'Code':<28} {'Category':<16} " + " ".join(f"{r:<18}" for r in roles))
    click.echo("="*100)
    for code, _name, _description, category in PERMISSION_DEFINITIONS:
        cells = []
        for r in roles:
            rule = DEFAULT_ROLE_PERMISSIONS.get(r, {}).get(code)
            cells.append(f"{('yes' if rule is True else rule or '-'):<18}")
        click.echo(f"{code:<28} {category:<16} " + " ".join(cells))
    click.echo("="*100 + "\n")


@perms_group.command('check')
@click.argument('role', type=click.Choice(list(ROLES)))
@click.argument('permission_code')
@with_appcontext
def check_permission_cli(role, permission_code):
    if not validate_permission_code(permission_code):
        click.echo(f"FAIL Unknown permission code: {permission_code}")
        raise SystemExit(1)

    definition = get_permission_definition(permission_code)
    click.echo(f"{definition['code']}: {definition['description']}")
    rule = DEFAULT_ROLE_PERMISSIONS.get(role, {}).get(permission_code)
    if not has_grant(role, permission_code):
        click.echo(f"DENY {role} does not hold {permission_code}")
    elif rule is True:
        click.echo(f"ALLOW {role} holds {permission_code}")
    else:
        click.echo(f"ALLOW {role} holds {permission_code} when '{rule}' holds")


@click.group('cash')
def cash_group():
    """Cash position inspection."""


@cash_group.command('balances')
@click.option('--store-id', type=int, required=True)
@with_appcontext
def balances_cli(store_id):
    if db.session.get(Store, store_id) is None:
        click.echo(f"FAIL Store ID {store_id} not found")
        return

    balances = cash_position_service.get_balances(store_id)
    click.echo(f"{'Pool':<12} {'Balance':>14} {'Expected today':>16}")
    for pool in POOLS:
        expected = cash_position_service.get_expected_balance(store_id, pool)
        click.echo(f"{pool:<12} {balances[pool] / 100:>14.2f} {expected / 100:>16.2f}")


@cash_group.command('verify')
@click.option('--store-id', type=int, default=None, help='Verify one store (default: all)')
@with_appcontext
def verify_cli(store_id):
    """Exit code 1 when any pool has drifted from its movements."""
    query = db.session.query(Store)
    if store_id is not None:
        query = query.filter_by(id=store_id)

    drifted = 0
    for store in query.order_by(Store.id).all():
        for pool in POOLS:
            result = cash_position_service.verify_pool_balance(store.id, pool)
            status = "PASS" if result["ok"] else "FAIL"
            if not result["ok"]:
                drifted += 1
            click.echo(
                f"{status} store={store.code} pool={pool} "
                f"balance={result['materialized_paise']} movements={result['computed_paise']} "
                f"drift={result['drift_paise']}"
            )

    if drifted:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(cash_group)
