# Overview: Service-layer operations for material consumption, forward/reverse traceability and stock alerts.

"""
LabTrace Consumption & Traceability Engine

================================================================================
consume() IS THE REGULATORY-CRITICAL OPERATION
================================================================================

One atomic unit, one transaction:
    1. FIFO selection (row lock on the chosen lot)
    2. lot.quantity_available -= quantity  (DEPLETED at zero)
    3. INSERT worksheet_materials (immutable material -> device link)
    4. audit MATERIAL_ASSIGN

Any failure rolls back all four. A WorksheetMaterial row always resolves to
a real lot that had the stock at that moment.

Traceability queries are read-only and derive from worksheet_materials, so
they include consumption from lots later DEPLETED, EXPIRED or RECALLED.
================================================================================
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransition, NotFound
from ..models import (
    Dentist,
    Material,
    MaterialLot,
    Order,
    WorkSheet,
    WorksheetMaterial,
)
from ..validation import QUANTITY_PLACES, coerce_decimal
from .audit_service import record_audit
from .concurrency import begin_serialized, lock_for_update, run_with_retry
from .material_service import find_lots_by_number, select_fifo
from labtrace.time_utils import to_utc_z, utcnow


# Worksheet states in which material may still be consumed against it
CONSUMABLE_WORKSHEET_STATUSES = {"DRAFT", "IN_PRODUCTION"}

CRITICAL_EXPIRY_DAYS = 7
WARNING_EXPIRY_DAYS = 30


@dataclass
class ConsumptionResult:
    worksheet_material: WorksheetMaterial
    lot: MaterialLot
    quantity_used: Decimal
    remaining_quantity: Decimal
    warnings: list[str] = field(default_factory=list)

    @property
    def lot_depleted(self) -> bool:
        return self.lot.status == "DEPLETED"

    def to_dict(self) -> dict:
        return {
            "worksheet_material": self.worksheet_material.to_dict(),
            "lot_id": self.lot.id,
            "lot_number": self.lot.lot_number,
            "quantity_used": str(self.quantity_used),
            "remaining_quantity": str(self.remaining_quantity),
            "lot_depleted": self.lot_depleted,
            "warnings": list(self.warnings),
        }


# =============================================================================
# CONSUMPTION
# =============================================================================

def _consume_locked(
    worksheet: WorkSheet,
    material_id: int,
    quantity_needed: Decimal,
    *,
    actor=None,
    notes: str | None = None,
    now: datetime | None = None,
) -> ConsumptionResult:
    """
    Consume within the caller's (already serialized) transaction.

    Does NOT commit. Callers: consume() and the IN_PRODUCTION entry hook.
    """
    now = now or utcnow()
    selection = select_fifo(material_id, quantity_needed, lock=True, now=now)
    lot = selection.lot

    before = Decimal(lot.quantity_available)
    remaining = before - selection.quantity_needed
    lot.quantity_available = remaining

    warnings: list[str] = []
    if remaining <= 0:
        lot.status = "DEPLETED"
        warnings.append(f"LOT {lot.lot_number} is now depleted")
    if lot.expiry_date is not None and lot.expiry_date - now < timedelta(days=CRITICAL_EXPIRY_DAYS):
        warnings.append(f"LOT {lot.lot_number} expires on {lot.expiry_date.date().isoformat()}")

    usage = WorksheetMaterial(
        worksheet_id=worksheet.id,
        material_id=material_id,
        material_lot_id=lot.id,
        quantity_used=selection.quantity_needed,
        notes=notes,
        consumed_by=actor.user_id if actor is not None else None,
        consumed_at=now,
    )
    db.session.add(usage)
    db.session.flush()

    record_audit(
        actor=actor,
        action="MATERIAL_ASSIGN",
        entity_type="WorkSheet",
        entity_id=worksheet.id,
        old_values={"lot_id": lot.id, "quantity_available": before},
        new_values={
            "worksheet_number": worksheet.worksheet_number,
            "material_id": material_id,
            "lot_id": lot.id,
            "lot_number": lot.lot_number,
            "quantity_used": selection.quantity_needed,
            "quantity_available": remaining,
            "lot_status": lot.status,
        },
        reason=f"FIFO consumption from LOT {lot.lot_number}",
    )

    return ConsumptionResult(
        worksheet_material=usage,
        lot=lot,
        quantity_used=selection.quantity_needed,
        remaining_quantity=remaining,
        warnings=warnings,
    )


def _load_consumable_worksheet(worksheet_id: int) -> WorkSheet:
    worksheet = lock_for_update(db.session.query(WorkSheet).filter_by(id=worksheet_id)).first()
    if worksheet is None or worksheet.deleted_at is not None:
        raise NotFound(f"Worksheet {worksheet_id} not found")
    if worksheet.status not in CONSUMABLE_WORKSHEET_STATUSES:
        raise InvalidTransition(
            f"Cannot consume materials for worksheet {worksheet.worksheet_number} "
            f"in status {worksheet.status}"
        )
    return worksheet


def consume(worksheet_id: int, material_id: int, quantity_needed, *, actor=None, notes: str | None = None) -> ConsumptionResult:
    """
    Consume `quantity_needed` of a material for a worksheet via FIFO.

    Raises:
        NotFound: worksheet or material missing
        InvalidTransition: worksheet not DRAFT / IN_PRODUCTION
        InsufficientStock: oldest eligible lot cannot cover the need
    """
    quantity_needed = coerce_decimal(quantity_needed, "quantity_needed", positive=True, places=QUANTITY_PLACES)

    def _op() -> ConsumptionResult:
        begin_serialized()
        worksheet = _load_consumable_worksheet(worksheet_id)
        result = _consume_locked(worksheet, material_id, quantity_needed, actor=actor, notes=notes)
        db.session.commit()
        current_app.logger.info(
            "Consumed %s from LOT %s for %s", quantity_needed, result.lot.lot_number, worksheet.worksheet_number
        )
        return result

    return run_with_retry(_op)


def consume_planned_materials(worksheet: WorkSheet, *, actor=None) -> list[ConsumptionResult]:
    """
    Consume every open material plan of a worksheet (IN_PRODUCTION entry hook).

    All or nothing: the first InsufficientStock propagates and the caller's
    transaction rolls back every consumption made so far. Does NOT commit.
    """
    results = []
    now = utcnow()
    for plan in worksheet.material_plans:
        if plan.consumed_at is not None:
            continue
        result = _consume_locked(
            worksheet,
            plan.material_id,
            Decimal(plan.quantity_planned),
            actor=actor,
            notes=plan.notes,
            now=now,
        )
        plan.consumed_at = now
        results.append(result)
    return results


# =============================================================================
# TRACEABILITY QUERIES
# =============================================================================

def forward_trace(lot_number: str, *, material_id: int | None = None) -> dict:
    """
    Lot -> every worksheet/patient/dentist made from it (recall query).

    Raises:
        NotFound: no lot with this number
    """
    lots = find_lots_by_number(lot_number, material_id)
    if not lots:
        raise NotFound(f"LOT {lot_number} not found")

    lot_ids = [lot.id for lot in lots]
    rows = (
        db.session.query(WorksheetMaterial, WorkSheet, Order, Dentist, MaterialLot, Material)
        .join(WorkSheet, WorksheetMaterial.worksheet_id == WorkSheet.id)
        .join(Order, WorkSheet.order_id == Order.id)
        .join(Dentist, WorkSheet.dentist_id == Dentist.id)
        .join(MaterialLot, WorksheetMaterial.material_lot_id == MaterialLot.id)
        .join(Material, WorksheetMaterial.material_id == Material.id)
        .filter(WorksheetMaterial.material_lot_id.in_(lot_ids))
        .order_by(WorksheetMaterial.consumed_at.asc(), WorksheetMaterial.id.asc())
        .all()
    )

    usages = []
    total_used = Decimal("0")
    worksheet_ids: set[int] = set()
    patients: set[str] = set()
    for usage, worksheet, order, dentist, lot, material in rows:
        total_used += Decimal(usage.quantity_used)
        worksheet_ids.add(worksheet.id)
        if order.patient_name:
            patients.add(order.patient_name)
        usages.append({
            "worksheet_material_id": usage.id,
            "worksheet_id": worksheet.id,
            "worksheet_number": worksheet.worksheet_number,
            "revision": worksheet.revision,
            "worksheet_status": worksheet.status,
            "order_number": order.order_number,
            "patient_name": order.patient_name,
            "dentist": {
                "id": dentist.id,
                "clinic_name": dentist.clinic_name,
                "dentist_name": dentist.dentist_name,
                "email": dentist.email,
                "phone": dentist.phone,
            },
            "material_code": material.code,
            "lot_id": lot.id,
            "quantity_used": str(usage.quantity_used),
            "consumed_at": to_utc_z(usage.consumed_at),
        })

    return {
        "lot_number": lot_number,
        "lots": [
            {**lot.to_dict(), "material_code": lot.material.code, "material_name": lot.material.name}
            for lot in lots
        ],
        "usages": usages,
        "summary": {
            "total_quantity_used": str(total_used),
            "worksheet_count": len(worksheet_ids),
            "unique_patients": len(patients),
            "first_use": usages[0]["consumed_at"] if usages else None,
            "last_use": usages[-1]["consumed_at"] if usages else None,
        },
    }


def reverse_trace(worksheet_id: int) -> dict:
    """
    Worksheet -> every material lot consumed to make it (Annex XIII input).
    Soft-deleted and voided worksheets are still traceable.

    Raises:
        NotFound: worksheet missing
    """
    worksheet = db.session.get(WorkSheet, worksheet_id)
    if worksheet is None:
        raise NotFound(f"Worksheet {worksheet_id} not found")

    rows = (
        db.session.query(WorksheetMaterial, MaterialLot, Material)
        .join(MaterialLot, WorksheetMaterial.material_lot_id == MaterialLot.id)
        .join(Material, WorksheetMaterial.material_id == Material.id)
        .filter(WorksheetMaterial.worksheet_id == worksheet_id)
        .order_by(WorksheetMaterial.consumed_at.asc(), WorksheetMaterial.id.asc())
        .all()
    )

    materials = []
    for usage, lot, material in rows:
        materials.append({
            "worksheet_material_id": usage.id,
            "material_id": material.id,
            "material_code": material.code,
            "material_name": material.name,
            "material_type": material.type,
            "manufacturer": material.manufacturer,
            "ce_marked": material.ce_marked,
            "ce_number": material.ce_number,
            "biocompatible": material.biocompatible,
            "iso_standard": material.iso_standard,
            "lot_id": lot.id,
            "lot_number": lot.lot_number,
            "lot_status": lot.status,
            "expiry_date": to_utc_z(lot.expiry_date),
            "supplier_name": lot.supplier_name,
            "quantity_used": str(usage.quantity_used),
            "unit": material.unit,
            "consumed_at": to_utc_z(usage.consumed_at),
        })

    return {
        "worksheet_id": worksheet.id,
        "worksheet_number": worksheet.worksheet_number,
        "revision": worksheet.revision,
        "status": worksheet.status,
        "order_number": worksheet.order.order_number,
        "patient_name": worksheet.order.patient_name,
        "manufacture_date": to_utc_z(worksheet.manufacture_date),
        "materials": materials,
    }


# =============================================================================
# ALERTS
# =============================================================================

def classify_expiry(days_until_expiry: int) -> str:
    if days_until_expiry < CRITICAL_EXPIRY_DAYS:
        return "critical"
    if days_until_expiry < WARNING_EXPIRY_DAYS:
        return "warning"
    return "info"


def expiring_within(days: int | None = None, *, now: datetime | None = None) -> list[dict]:
    """
    AVAILABLE lots with stock that expire between now and now + days.

    Severity from ceil(days until expiry): critical < 7, warning < 30, else info.
    """
    if days is None:
        days = current_app.config.get("EXPIRY_ALERT_DAYS", 30)
    now = now or utcnow()
    horizon = now + timedelta(days=days)

    lots = (
        db.session.query(MaterialLot)
        .filter(
            MaterialLot.status == "AVAILABLE",
            MaterialLot.quantity_available > 0,
            MaterialLot.expiry_date.isnot(None),
            MaterialLot.expiry_date >= now,
            MaterialLot.expiry_date <= horizon,
        )
        .order_by(MaterialLot.expiry_date.asc())
        .all()
    )

    alerts = []
    for lot in lots:
        days_left = math.ceil((lot.expiry_date - now).total_seconds() / 86400)
        alerts.append({
            "material_lot_id": lot.id,
            "material_id": lot.material_id,
            "material_code": lot.material.code,
            "material_name": lot.material.name,
            "lot_number": lot.lot_number,
            "expiry_date": to_utc_z(lot.expiry_date),
            "days_until_expiry": days_left,
            "quantity_available": str(lot.quantity_available),
            "severity": classify_expiry(days_left),
        })
    return alerts


def low_stock(threshold=None) -> list[dict]:
    """
    Active materials whose total AVAILABLE quantity is below `threshold`,
    worst first (ascending percentage of threshold). Materials with no
    stock at all are included at 0%.
    """
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", Decimal("20"))
    threshold = coerce_decimal(threshold, "threshold", positive=True)

    materials = (
        db.session.query(Material)
        .filter(Material.is_active.is_(True))
        .order_by(Material.code.asc())
        .all()
    )

    alerts = []
    for material in materials:
        total = sum(
            (
                Decimal(lot.quantity_available)
                for lot in material.lots
                if lot.status == "AVAILABLE" and Decimal(lot.quantity_available) > 0
            ),
            Decimal("0"),
        )
        if total < threshold:
            percentage = (total / threshold * 100).quantize(Decimal("0.01"))
            alerts.append({
                "material_id": material.id,
                "material_code": material.code,
                "material_name": material.name,
                "type": material.type,
                "unit": material.unit,
                "total_available_quantity": str(total),
                "threshold": str(threshold),
                "percentage_of_threshold": str(percentage),
            })

    alerts.sort(key=lambda a: Decimal(a["percentage_of_threshold"]))
    return alerts
