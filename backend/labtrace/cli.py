# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/labtrace/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Lab bootstrap/repair:
# - python -m flask lab init-db
#   Create all tables (development; use `flask db upgrade` with migrations otherwise).
# - python -m flask lab reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask lab seed-demo
#   Insert a demo dentist, price list, materials and lots (skipped if dentists exist).
# - python -m flask lab roles [--role TECHNICIAN]
#   Print the static role -> capability table.
#
# Materials:
# - python -m flask materials expire-lots
#   Flip AVAILABLE lots past their expiry date to EXPIRED (audit-logged).
# - python -m flask materials alerts [--days 30] [--threshold 20]
#   Print expiring lots and low-stock materials.
# - python -m flask materials trace LOT-NUMBER [--material-id 1]
#   Forward traceability: every worksheet/patient that used the LOT.
#
# Invoices:
# - python -m flask invoices next-number [--year 2026]
#   Preview the next RAC-YYYY-NNN number.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .errors import LabTraceError
from .extensions import db
from .models import Dentist
from .permissions import Role, ROLE_CAPABILITIES, get_capability_definition
from .services import catalog_service, material_service, settings_service, traceability_service
from .services.numbering_service import preview_next_invoice_number
from .services.permission_service import SYSTEM_ACTOR
from .time_utils import utcnow


@click.group('lab')
def lab_group():
    """Lab bootstrap and repair commands."""


@lab_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@lab_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including traceability records that MDR
    requires you to keep. Never run this against a production database.
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask lab seed-demo' for demo data.")


@lab_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Insert demo master data (dentist, products, materials, lots)."""
    if db.session.query(Dentist).count():
        click.echo("SKIP Dentists already exist; demo data not inserted.")
        return

    settings_service.update_lab_config(
        {"lab_name": "Demo Dental Lab", "country": "SI", "responsible_person": "Lab Manager"},
        actor=SYSTEM_ACTOR,
    )
    dentist = catalog_service.create_dentist(
        {
            "clinic_name": "Smile Clinic",
            "dentist_name": "Dr. Demo",
            "email": "dr.demo@example.com",
            "payment_terms": 30,
        },
        actor=SYSTEM_ACTOR,
    )
    click.echo(f"PASS Dentist: {dentist.dentist_name} (ID: {dentist.id})")

    for code, name, price in (
        ("ZR-CROWN", "Zirconia crown", "180.00"),
        ("EMAX-VEN", "E.max veneer", "220.00"),
        ("PFM-CROWN", "PFM crown", "150.00"),
    ):
        product = catalog_service.create_product(
            {"code": code, "name": name, "category": "FIXED", "current_price": price},
            actor=SYSTEM_ACTOR,
        )
        click.echo(f"PASS Product: {product.code} @ {product.current_price}")

    now = utcnow()
    for code, mtype, name, manufacturer, lot_number, qty in (
        ("ZR-DISC-98", "CERAMIC", "Zirconia disc 98mm", "Ivoclar", "ZR2026A", "50"),
        ("EMAX-INGOT", "CERAMIC", "IPS e.max Press ingot", "Ivoclar", "EM2026A", "40"),
        ("CO-CR-ALLOY", "METAL", "Co-Cr alloy", "Dentaurum", "CC2026A", "15"),
    ):
        material = material_service.create_material(
            {
                "code": code,
                "type": mtype,
                "name": name,
                "manufacturer": manufacturer,
                "ce_marked": True,
                "biocompatible": True,
                "unit": "g" if mtype == "METAL" else "piece",
            },
            actor=SYSTEM_ACTOR,
        )
        lot = material_service.record_arrival(
            material.id,
            lot_number,
            qty,
            now + timedelta(days=730),
            supplier_name=manufacturer,
            actor=SYSTEM_ACTOR,
        )
        click.echo(f"PASS Material: {material.code} LOT {lot.lot_number} qty {lot.quantity_available}")

    click.echo("PASS Demo data inserted.")


@lab_group.command('roles')
@click.option('--role', 'role_name', default=None, help='Only this role')
@with_appcontext
def list_roles(role_name):
    """Print the static role -> capability table."""
    roles = list(Role)
    if role_name:
        role = Role.parse(role_name)
        if role is None:
            raise click.BadParameter(f"Unknown role {role_name!r}", param_hint="--role")
        roles = [role]

    for role in roles:
        click.echo(f"\n{role.value}")
        for code in sorted(ROLE_CAPABILITIES.get(role, ())):
            definition = get_capability_definition(code) or {}
            click.echo(f"  {code:<24} {definition.get('name', '')}")


@click.group('materials')
def materials_group():
    """Material lot maintenance and traceability commands."""


@materials_group.command('expire-lots')
@with_appcontext
def expire_lots():
    """Flip AVAILABLE lots past their expiry date to EXPIRED."""
    lots = material_service.mark_expired_lots(actor=SYSTEM_ACTOR)
    for lot in lots:
        click.echo(f"EXPIRED LOT {lot.lot_number} (material {lot.material.code}, expiry {lot.expiry_date:%Y-%m-%d})")
    click.echo(f"PASS {len(lots)} lot(s) marked EXPIRED.")


@materials_group.command('alerts')
@click.option('--days', type=int, default=None, help='Expiry horizon in days')
@click.option('--threshold', default=None, help='Low-stock threshold')
@with_appcontext
def alerts(days, threshold):
    """Print expiring lots and low-stock materials."""
    try:
        expiring = traceability_service.expiring_within(days)
        low = traceability_service.low_stock(threshold)
    except LabTraceError as e:
        raise click.ClickException(str(e))

    click.echo(f"Expiring lots: {len(expiring)}")
    for alert in expiring:
        click.echo(
            f"  [{alert['severity'].upper():<8}] {alert['material_code']} LOT {alert['lot_number']} "
            f"in {alert['days_until_expiry']}d (qty {alert['quantity_available']})"
        )

    click.echo(f"Low stock materials: {len(low)}")
    for alert in low:
        click.echo(
            f"  {alert['material_code']}: {alert['total_available_quantity']} "
            f"({alert['percentage_of_threshold']}% of {alert['threshold']})"
        )


@materials_group.command('trace')
@click.argument('lot_number')
@click.option('--material-id', type=int, default=None, help='Disambiguate a LOT number shared by materials')
@with_appcontext
def trace(lot_number, material_id):
    """Forward traceability for a LOT (recall query)."""
    try:
        result = traceability_service.forward_trace(lot_number, material_id=material_id)
    except LabTraceError as e:
        raise click.ClickException(str(e))

    summary = result["summary"]
    click.echo(
        f"LOT {lot_number}: {summary['worksheet_count']} worksheet(s), "
        f"{summary['unique_patients']} patient(s), {summary['total_quantity_used']} used"
    )
    for usage in result["usages"]:
        click.echo(
            f"  {usage['worksheet_number']} rev {usage['revision']} [{usage['worksheet_status']}] "
            f"patient={usage['patient_name'] or '-'} clinic={usage['dentist']['clinic_name']} "
            f"qty={usage['quantity_used']} at {usage['consumed_at']}"
        )


@click.group('invoices')
def invoices_group():
    """Invoice inspection commands."""


@invoices_group.command('next-number')
@click.option('--year', type=int, default=None, help='Invoice year (default: current)')
@with_appcontext
def next_number(year):
    """Preview the next invoice number (not reserved)."""
    click.echo(preview_next_invoice_number(year))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(lab_group)
    app.cli.add_command(materials_group)
    app.cli.add_command(invoices_group)
