# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/invictos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables and the global commission config (idempotent).
# - python -m flask system seed
#   Load the demo store: accounts u1/u2/u3, categories, providers, products.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Account inspection/bootstrap:
# - python -m flask accounts list
#   List accounts with role, rate override and lockout state.
# - python -m flask accounts create --name "Vendedor 3" --role seller --pin 2222
#   Create an account (prompts for the PIN if omitted).
# - python -m flask accounts unlock u1
#   Reset the lockout state of an account (for a blocked admin with no other admin).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Account, Category, Provider, Product
from .services import auth_service, commission_service, lockout_service
from .services.entity_store import AccountNotFoundError
from .validation import ValidationError, ConflictError


DEMO_ACCOUNTS = [
    {"id": "u1", "name": "Administrador", "role": "admin", "pin": "1234"},
    {"id": "u2", "name": "Vendedor 1", "role": "seller", "pin": "0000", "commission_percentage": 3},
    {"id": "u3", "name": "Vendedor 2", "role": "seller", "pin": "1111"},
]

DEMO_CATEGORIES = [
    ("c1", "Jerseys"),
    ("c2", "Shorts"),
    ("c3", "Calzado"),
    ("c4", "Accesorios"),
    ("c5", "Equipamiento"),
]

DEMO_PROVIDERS = [
    ("p1", "Adidas Oficial"),
    ("p2", "Importadora Depor"),
    ("p3", "Nike Dist"),
    ("p4", "Textil Local"),
]

# (id, code, name, category, provider, price, cost, stock, description); prices in pesos
DEMO_PRODUCTS = [
    ("1", "J-ARG-24", "Camiseta Selección Arg 2024", "Jerseys", "Adidas Oficial", 65000, 40000, 15, "Titular oficial"),
    ("2", "S-RUN-01", "Short Deportivo Running", "Shorts", "Importadora Depor", 25000, 12000, 8, "Tela dry-fit"),
    ("3", "Z-RUN-X", "Zapatillas Runner X", "Calzado", "Nike Dist", 120000, 80000, 4, "Alta performance"),
    ("4", "A-SOC-03", "Medias 3/4 Pack x3", "Accesorios", "Textil Local", 8000, 3000, 50, None),
    ("5", "E-BAL-PRO", "Pelota Fútbol Pro", "Equipamiento", "Adidas Oficial", 45000, 25000, 2, None),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables and the global commission config."""
    click.echo("BUILD  Creating all tables...")
    db.create_all()
    config = commission_service.get_config()
    click.echo(f"PASS Database ready. Global commission: {config.commission_percentage}%")


@system_group.command('seed')
@with_appcontext
def seed_defaults():
    """
    Load the demo store. Safe to run twice: existing ids are skipped.

    Default PINs: u1 (admin) 1234, u2 0000, u3 1111.
    SECURITY: Change PINs immediately in production!
    """
    db.create_all()
    commission_service.get_config()

    click.echo("USERS Creating demo accounts...")
    for entry in DEMO_ACCOUNTS:
        if db.session.get(Account, entry["id"]) is not None:
            click.echo(f"SKIP  {entry['id']} already exists")
            continue
        payload = {k: v for k, v in entry.items() if k != "id"}
        account = auth_service.create_account(payload, account_id=entry["id"])
        click.echo(f"PASS  {account.id} {account.name} ({account.role})")

    for cid, name in DEMO_CATEGORIES:
        if db.session.get(Category, cid) is None:
            db.session.add(Category(id=cid, name=name))
    for pid, name in DEMO_PROVIDERS:
        if db.session.get(Provider, pid) is None:
            db.session.add(Provider(id=pid, name=name))

    created = 0
    for pid, code, name, category, provider, price, cost, stock, description in DEMO_PRODUCTS:
        if db.session.get(Product, pid) is not None:
            continue
        db.session.add(Product(
            id=pid,
            code=code,
            name=name,
            category=category,
            provider=provider,
            price_cents=price * 100,
            cost_cents=cost * 100,
            stock=stock,
            description=description,
        ))
        created += 1
    db.session.commit()

    click.echo(f"PASS Seeded {len(DEMO_CATEGORIES)} categories, {len(DEMO_PROVIDERS)} providers, {created} new products")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' to load demo data.")


@click.group('accounts')
def accounts_group():
    """Account inspection and bootstrap commands."""


@accounts_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include deactivated accounts')
@with_appcontext
def list_accounts_cli(show_all):
    """List accounts with rate override and lockout state."""
    accounts = auth_service.list_accounts(include_inactive=show_all)

    if not accounts:
        click.echo("No accounts found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<34} {'Name':<20} {'Role':<8} {'Rate':<7} {'Active':<7} {'Lockout'}")
    click.echo("="*90)

    for account in accounts:
        rate = f"{account.commission_percentage}%" if account.commission_percentage is not None else "auto"
        active_str = "Yes" if account.is_active else "No"
        state = lockout_service.lockout_state(account).value
        click.echo(f"{account.id:<34} {account.name:<20} {account.role:<8} {rate:<7} {active_str:<7} {state}")

    click.echo("="*90 + "\n")


@accounts_group.command('create')
@click.option('--id', 'account_id', default=None, help='Account id (random if omitted)')
@click.option('--name', prompt=True, help='Display name')
@click.option('--role', type=click.Choice(['admin', 'seller']), default='seller', show_default=True)
@click.option('--pin', prompt=True, hide_input=True, confirmation_prompt=True, help='4 to 8 digit PIN')
@click.option('--commission', type=str, default=None, help='Commission override percentage')
@with_appcontext
def create_account_cli(account_id, name, role, pin, commission):
    """Create an account."""
    payload = {"name": name, "role": role, "pin": pin}
    if commission is not None:
        payload["commission_percentage"] = commission
    try:
        account = auth_service.create_account(payload, account_id=account_id)
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created {account.role} {account.name} (ID: {account.id})")


@accounts_group.command('unlock')
@click.argument('account_id')
@with_appcontext
def unlock_account_cli(account_id):
    """Reset an account's lockout state from the server console."""
    try:
        account = lockout_service.admin_recover(account_id, recovered_by="cli", reason="CLI unlock")
    except AccountNotFoundError:
        raise click.ClickException(f"Account {account_id} not found")
    click.echo(f"PASS {account.name} ({account.id}) is unlocked")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(accounts_group)
