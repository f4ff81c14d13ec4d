# Overview: Flask CLI command groups for bootstrap, network setup and billing maintenance.

# backend/vouchernet/cli.py
# Run from backend/ with FLASK_APP=wsgi.py:
#
#   flask system init --franchisor "Rede Exemplo" --email admin@vouchernet.local
#   flask system reset-db --yes                     (dev only, wipes everything)
#   flask network create-franchisor --name "Rede Exemplo"
#   flask network create-franchisee --franchisor-id 1 --name "Franquia Centro" \
#       --document 12345678000190 --email centro@example.com --commission-rate 10
#   flask network create-merchant --franchisee-id 1 --name "Padaria Sol"
#   flask network set-rate --franchisee-id 1 --commission-rate 12.5
#   flask users create --email ana@example.com --name Ana --role MERCHANT --merchant-id 1
#   flask users list
#   flask vouchers issue --franchisee-id 1 --code VCH-0001 --scan-code QR-0001
#   flask billing expire-overdue [--today 2024-05-01]   (schedule daily)
#   flask billing reconcile 42                          (poll gateway for charge 42)

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Franchisor, Role, User
from .services import billing_service, network_service, reconciliation_service, voucher_service
from .services.audit_service import SOURCE_CLI
from .services.auth_service import create_user, PasswordValidationError, UserError
from .services.billing_service import BillingError
from .services.network_service import NetworkError
from .services.voucher_service import VoucherError
from .time_utils import parse_iso_date
from .validation import ValidationError, parse_rate_bps


BOOTSTRAP_PASSWORD = "Password123!"


def _scope_label(user: User) -> str:
    for label, value in (
        ("franchisor", user.franchisor_id),
        ("franchisee", user.franchisee_id),
        ("merchant", user.merchant_id),
    ):
        if value:
            return f"{label}:{value}"
    return "-"


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """Schema bootstrap."""


@system_group.command('init')
@click.option('--franchisor', 'franchisor_name', default='Default Franchisor', help='Franchisor name')
@click.option('--email', default='admin@vouchernet.local', show_default=True, help='Franchisor admin email')
@click.option('--password', default=BOOTSTRAP_PASSWORD, show_default=True, help='Franchisor admin password')
@with_appcontext
def init_system(franchisor_name, email, password):
    """Create the schema, the franchisor and its admin; safe to rerun."""
    db.create_all()
    click.echo("PASS Schema ready")

    franchisor = db.session.query(Franchisor).first()
    if franchisor is None:
        franchisor = network_service.create_franchisor(franchisor_name)
        click.echo(f"PASS Created franchisor: {franchisor.name} (ID: {franchisor.id})")
    else:
        click.echo(f"PASS Using existing franchisor: {franchisor.name} (ID: {franchisor.id})")

    admin = db.session.query(User).filter_by(role=Role.FRANCHISOR, franchisor_id=franchisor.id).first()
    if admin is not None:
        click.echo(f"PASS Using existing franchisor admin: {admin.email}")
        return

    try:
        admin = create_user(
            email=email,
            name="Franchisor Admin",
            password=password,
            role=Role.FRANCHISOR,
            franchisor_id=franchisor.id,
        )
    except (PasswordValidationError, UserError) as e:
        click.echo(f"FAIL Could not create franchisor admin: {e}")
        return
    click.echo(f"PASS Created franchisor admin: {admin.email}")
    if password == BOOTSTRAP_PASSWORD:
        click.echo("WARN Bootstrap password in use; change it before going live")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """Drop and recreate every table. Development only."""
    if not yes:
        click.confirm("All vouchers, ledger entries and charges will be lost. Continue?", abort=True)
    db.drop_all()
    db.create_all()
    click.echo("PASS Empty schema created; run 'flask system init' next")


# =============================================================================
# NETWORK
# =============================================================================

@click.group('network')
def network_group():
    """Franchisor, franchisee and merchant setup."""


@network_group.command('create-franchisor')
@click.option('--name', required=True, help='Franchisor name')
@with_appcontext
def create_franchisor_cli(name):
    try:
        franchisor = network_service.create_franchisor(name)
        click.echo(f"PASS Created franchisor: {franchisor.name} (ID: {franchisor.id})")
    except NetworkError as e:
        click.echo(f"FAIL {e}")


@network_group.command('create-franchisee')
@click.option('--franchisor-id', type=int, required=True, help='Franchisor ID')
@click.option('--name', required=True, help='Franchisee name')
@click.option('--document', required=True, help='CNPJ (digits or formatted)')
@click.option('--email', required=True, help='Billing email')
@click.option('--phone', help='Contact phone')
@click.option('--commission-rate', required=True, help='Commission rate in percent, e.g. 10 or 12.5')
@with_appcontext
def create_franchisee_cli(franchisor_id, name, document, email, phone, commission_rate):
    try:
        franchisee = network_service.create_franchisee(
            franchisor_id=franchisor_id,
            name=name,
            document=document,
            email=email,
            phone=phone,
            commission_rate_bps=parse_rate_bps(commission_rate),
        )
        click.echo(f"PASS Created franchisee: {franchisee.name} (ID: {franchisee.id}, rate {franchisee.to_dict()['commission_rate']}%)")
    except (NetworkError, ValidationError) as e:
        click.echo(f"FAIL {e}")


@network_group.command('set-rate')
@click.option('--franchisee-id', type=int, required=True, help='Franchisee ID')
@click.option('--commission-rate', required=True, help='Commission rate in percent')
@with_appcontext
def set_rate_cli(franchisee_id, commission_rate):
    """Change a franchisee's rate for future recharges."""
    try:
        franchisee = network_service.set_commission_rate(franchisee_id, parse_rate_bps(commission_rate))
        click.echo(f"PASS Franchisee {franchisee.id} rate is now {franchisee.to_dict()['commission_rate']}%")
    except (NetworkError, ValidationError) as e:
        click.echo(f"FAIL {e}")


@network_group.command('create-merchant')
@click.option('--franchisee-id', type=int, required=True, help='Franchisee ID')
@click.option('--name', required=True, help='Merchant name')
@click.option('--document', help='Merchant CNPJ')
@with_appcontext
def create_merchant_cli(franchisee_id, name, document):
    try:
        merchant = network_service.create_merchant(franchisee_id=franchisee_id, name=name, document=document)
        click.echo(f"PASS Created merchant: {merchant.name} (ID: {merchant.id}, status {merchant.status})")
    except NetworkError as e:
        click.echo(f"FAIL {e}")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """Accounts for franchisor staff, franchisees and merchant operators."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(Role.ALL)), prompt=True, help='Role')
@click.option('--franchisor-id', type=int, help='Required for FRANCHISOR')
@click.option('--franchisee-id', type=int, help='Required for FRANCHISEE')
@click.option('--merchant-id', type=int, help='Required for MERCHANT')
@with_appcontext
def create_user_cli(email, name, password, role, franchisor_id, franchisee_id, merchant_id):
    try:
        user = create_user(
            email=email,
            name=name,
            password=password,
            role=role,
            franchisor_id=franchisor_id,
            franchisee_id=franchisee_id,
            merchant_id=merchant_id,
        )
    except (PasswordValidationError, UserError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created {user.role} user {user.email} ({_scope_label(user)})")


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo(f"{'ID':<5} {'Email':<32} {'Role':<12} {'Scope':<20} Active")
    for user in users:
        active = "yes" if user.is_active else "no"
        click.echo(f"{user.id:<5} {user.email:<32} {user.role:<12} {_scope_label(user):<20} {active}")


# =============================================================================
# VOUCHERS
# =============================================================================

@click.group('vouchers')
def vouchers_group():
    """Voucher issuance."""


@vouchers_group.command('issue')
@click.option('--franchisee-id', type=int, required=True, help='Owning franchisee')
@click.option('--code', required=True, help='Printed voucher code')
@click.option('--scan-code', required=True, help='QR / barcode payload')
@with_appcontext
def issue_voucher_cli(franchisee_id, code, scan_code):
    try:
        voucher = voucher_service.issue_voucher(franchisee_id, code, scan_code)
        click.echo(f"PASS Issued voucher {voucher.code} (ID: {voucher.id})")
    except VoucherError as e:
        click.echo(f"FAIL {e}")


# =============================================================================
# BILLING
# =============================================================================

@click.group('billing')
def billing_group():
    """Activation charge maintenance."""


@billing_group.command('expire-overdue')
@click.option('--today', help='Reference date YYYY-MM-DD (defaults to today, UTC)')
@with_appcontext
def expire_overdue_cli(today):
    """Expire PENDING charges whose due date has passed."""
    try:
        reference = parse_iso_date(today)
    except ValueError:
        click.echo(f"FAIL Invalid date: {today}")
        return
    expired = billing_service.expire_overdue_charges(reference, source=SOURCE_CLI)
    if expired:
        click.echo(f"PASS Expired {len(expired)} charge(s): {', '.join(str(i) for i in expired)}")
    else:
        click.echo("PASS No overdue charges")


@billing_group.command('reconcile')
@click.argument('charge_id', type=int)
@with_appcontext
def reconcile_cli(charge_id):
    """Poll the gateway for one charge and apply its status."""
    try:
        result = reconciliation_service.poll_and_reconcile(charge_id)
    except BillingError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS charge {charge_id}: {result.outcome} (status {result.status})")
    if result.reason:
        click.echo(f"     {result.reason}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(network_group)
    app.cli.add_command(users_group)
    app.cli.add_command(vouchers_group)
    app.cli.add_command(billing_group)
