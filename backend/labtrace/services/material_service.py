# Overview: Service-layer operations for the material lot ledger; catalog, arrivals, FIFO selection, corrections.

"""
LabTrace Material Lot Ledger

================================================================================
PURPOSE: Track physical stock lots per material for MDR traceability
================================================================================

LOT STATES:
    AVAILABLE -> DEPLETED   (automatic when quantity_available reaches 0)
    AVAILABLE -> EXPIRED    (mark_expired_lots, or admin correction)
    AVAILABLE -> RECALLED   (admin correction)

RULES (NON-NEGOTIABLE):
1. (material_id, lot_number) is unique: re-recording a lot is DuplicateLot
2. 0 <= quantity_available <= quantity_received, always
3. FIFO returns the single oldest eligible lot; no splitting across lots
4. A lot or material with any WorksheetMaterial row is never deleted
   (ComplianceViolation). Mark the lot RECALLED instead.
5. All quantities are Decimal, never float

Consumption itself (decrement + traceability row) lives in
traceability_service; this module only selects.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..errors import (
    ComplianceViolation,
    DuplicateCode,
    DuplicateLot,
    InsufficientStock,
    NotFound,
    ValidationFailed,
)
from ..models import Material, MaterialLot, WorksheetMaterial, WorksheetMaterialPlan
from ..validation import QUANTITY_PLACES, clean_text, coerce_datetime, coerce_decimal
from .audit_service import record_audit
from .concurrency import begin_serialized, lock_for_update, run_with_retry
from labtrace.time_utils import utcnow


LOT_STATUSES = {"AVAILABLE", "DEPLETED", "EXPIRED", "RECALLED"}
MATERIAL_TYPES = {
    "CERAMIC", "METAL", "RESIN", "COMPOSITE", "PORCELAIN", "ZIRCONIA",
    "TITANIUM", "ALLOY", "ACRYLIC", "WAX", "OTHER",
}

# Fields that make up a material's regulatory identity
_IDENTITY_FIELDS = ("code", "type", "manufacturer", "ce_marked", "ce_number", "biocompatible", "iso_standard")
_MATERIAL_FIELDS = (
    "code", "type", "name", "manufacturer", "description", "biocompatible",
    "iso_standard", "ce_marked", "ce_number", "unit", "is_active",
)


@dataclass(frozen=True)
class LotSelection:
    """Result of FIFO selection: the lot that will satisfy the need."""
    lot: MaterialLot
    quantity_needed: Decimal

    @property
    def quantity_available(self) -> Decimal:
        return Decimal(self.lot.quantity_available)

    def to_dict(self) -> dict:
        return {
            "lot": self.lot.to_dict(),
            "quantity_needed": str(self.quantity_needed),
            "quantity_available": str(self.quantity_available),
        }


# =============================================================================
# CATALOG
# =============================================================================

def _material_snapshot(material: Material) -> dict:
    return {field: getattr(material, field) for field in _MATERIAL_FIELDS}


def _clean_material_payload(payload: dict, *, partial: bool) -> dict:
    if payload is None or not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")

    unknown = [k for k in payload if k not in _MATERIAL_FIELDS]
    if unknown:
        raise ValidationFailed(f"Field not allowed: {unknown[0]}")

    if not partial:
        missing = [f for f in ("code", "type", "name", "manufacturer") if not payload.get(f)]
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}")

    patch: dict = {}
    for key, raw in payload.items():
        if key in ("biocompatible", "ce_marked", "is_active"):
            patch[key] = bool(raw)
        elif key == "type":
            value = str(raw).strip().upper()
            if value not in MATERIAL_TYPES:
                raise ValidationFailed(f"Invalid material type '{raw}'")
            patch[key] = value
        elif key == "code":
            patch[key] = clean_text(raw, key, max_length=64, required=True).upper()
        else:
            patch[key] = clean_text(raw, key, max_length=255, required=key in ("name", "manufacturer"))
    return patch


def material_has_traceability(material_id: int) -> bool:
    return db.session.query(
        db.session.query(WorksheetMaterial.id).filter_by(material_id=material_id).exists()
    ).scalar()


def lot_has_traceability(lot_id: int) -> bool:
    return db.session.query(
        db.session.query(WorksheetMaterial.id).filter_by(material_lot_id=lot_id).exists()
    ).scalar()


def assert_deletable(*, material: Material | None = None, lot: MaterialLot | None = None) -> None:
    """
    Single invariant gate for every hard delete in the ledger.

    Raises:
        ComplianceViolation: the material (any of its lots) or the lot has
        been consumed by at least one worksheet
    """
    if lot is not None and lot_has_traceability(lot.id):
        raise ComplianceViolation(
            f"LOT {lot.lot_number} has been used in worksheets and cannot be deleted "
            f"(MDR traceability). Mark it RECALLED instead."
        )
    if material is not None and material_has_traceability(material.id):
        raise ComplianceViolation(
            f"Material {material.code} has lots used in worksheets and cannot be deleted "
            f"(MDR traceability). Deactivate it instead."
        )


def get_material(material_id: int) -> Material:
    material = db.session.get(Material, material_id)
    if material is None:
        raise NotFound(f"Material {material_id} not found")
    return material


def list_materials(*, active_only: bool = False, material_type: str | None = None) -> list[Material]:
    query = db.session.query(Material)
    if active_only:
        query = query.filter(Material.is_active.is_(True))
    if material_type:
        query = query.filter(Material.type == material_type.upper())
    return query.order_by(Material.code.asc()).all()


def create_material(payload: dict, *, actor=None) -> Material:
    """
    Create a catalog material.

    Raises:
        ValidationFailed: bad/missing fields
        DuplicateCode: code already exists
    """
    patch = _clean_material_payload(payload, partial=False)

    def _op() -> Material:
        begin_serialized()
        if db.session.query(Material.id).filter_by(code=patch["code"]).first():
            raise DuplicateCode(f"Material code {patch['code']} already exists")

        material = Material(**patch)
        db.session.add(material)
        db.session.flush()

        record_audit(
            actor=actor,
            action="CREATE",
            entity_type="Material",
            entity_id=material.id,
            new_values=_material_snapshot(material),
        )
        db.session.commit()
        return material

    return run_with_retry(_op)


def update_material(material_id: int, payload: dict, *, actor=None) -> Material:
    """
    Update catalog data.

    Identity fields (code, type, manufacturer, CE/biocompatibility data) are
    frozen once the material has traceability history.
    """
    patch = _clean_material_payload(payload, partial=True)

    def _op() -> Material:
        begin_serialized()
        material = lock_for_update(db.session.query(Material).filter_by(id=material_id)).first()
        if material is None:
            raise NotFound(f"Material {material_id} not found")

        changed_identity = [
            k for k in _IDENTITY_FIELDS if k in patch and patch[k] != getattr(material, k)
        ]
        if changed_identity and material_has_traceability(material.id):
            raise ComplianceViolation(
                f"Material {material.code} is referenced by worksheets; "
                f"cannot change {', '.join(changed_identity)}"
            )

        if "code" in patch and patch["code"] != material.code:
            clash = db.session.query(Material.id).filter(
                Material.code == patch["code"], Material.id != material.id
            ).first()
            if clash:
                raise DuplicateCode(f"Material code {patch['code']} already exists")

        before = _material_snapshot(material)
        for key, value in patch.items():
            setattr(material, key, value)
        db.session.flush()

        record_audit(
            actor=actor,
            action="UPDATE",
            entity_type="Material",
            entity_id=material.id,
            old_values=before,
            new_values=_material_snapshot(material),
        )
        db.session.commit()
        return material

    return run_with_retry(_op)


def delete_material(material_id: int, *, actor=None, reason: str | None = None) -> dict:
    """
    Smart delete: removes the material and its (never used) lots.

    Raises:
        NotFound
        ComplianceViolation: any lot of this material was consumed
    """
    def _op() -> dict:
        begin_serialized()
        material = lock_for_update(db.session.query(Material).filter_by(id=material_id)).first()
        if material is None:
            raise NotFound(f"Material {material_id} not found")

        assert_deletable(material=material)

        if db.session.query(WorksheetMaterialPlan.id).filter_by(material_id=material.id).first():
            raise ComplianceViolation(
                f"Material {material.code} is planned on worksheets; remove it from them first"
            )

        snapshot = _material_snapshot(material)
        lot_count = len(material.lots)
        for lot in list(material.lots):
            db.session.delete(lot)
        db.session.delete(material)
        db.session.flush()

        record_audit(
            actor=actor,
            action="DELETE",
            entity_type="Material",
            entity_id=material_id,
            old_values={**snapshot, "lots_deleted": lot_count},
            reason=reason or "Material deleted (no traceability history)",
        )
        db.session.commit()
        return {"material_id": material_id, "code": snapshot["code"], "lots_deleted": lot_count}

    return run_with_retry(_op)


# =============================================================================
# LOTS
# =============================================================================

def get_lot(lot_id: int) -> MaterialLot:
    lot = db.session.get(MaterialLot, lot_id)
    if lot is None:
        raise NotFound(f"Material lot {lot_id} not found")
    return lot


def find_lots_by_number(lot_number: str, material_id: int | None = None) -> list[MaterialLot]:
    query = db.session.query(MaterialLot).filter(MaterialLot.lot_number == lot_number)
    if material_id is not None:
        query = query.filter(MaterialLot.material_id == material_id)
    return query.order_by(MaterialLot.arrival_date.asc()).all()


def record_arrival(
    material_id: int,
    lot_number: str,
    quantity,
    expiry_date=None,
    *,
    arrival_date=None,
    supplier_name: str | None = None,
    notes: str | None = None,
    actor=None,
) -> MaterialLot:
    """
    Record a stock arrival as a new AVAILABLE lot.

    Raises:
        NotFound: material missing
        ValidationFailed: quantity <= 0, bad dates, expiry before arrival
        DuplicateLot: (material_id, lot_number) already recorded
    """
    lot_number = clean_text(lot_number, "lot_number", max_length=64, required=True)
    quantity = coerce_decimal(quantity, "quantity", positive=True, places=QUANTITY_PLACES)
    expiry = coerce_datetime(expiry_date, "expiry_date")
    arrival = coerce_datetime(arrival_date, "arrival_date") or utcnow()
    if expiry is not None and expiry <= arrival:
        raise ValidationFailed("expiry_date must be after arrival_date")

    def _op() -> MaterialLot:
        begin_serialized()
        material = db.session.get(Material, material_id)
        if material is None:
            raise NotFound(f"Material {material_id} not found")

        duplicate = (
            db.session.query(MaterialLot.id)
            .filter_by(material_id=material_id, lot_number=lot_number)
            .first()
        )
        if duplicate:
            raise DuplicateLot(f"LOT {lot_number} already exists for material {material.code}")

        lot = MaterialLot(
            material_id=material_id,
            lot_number=lot_number,
            arrival_date=arrival,
            expiry_date=expiry,
            quantity_received=quantity,
            quantity_available=quantity,
            status="AVAILABLE",
            supplier_name=clean_text(supplier_name, "supplier_name", max_length=255),
            notes=clean_text(notes, "notes"),
        )
        db.session.add(lot)
        db.session.flush()

        record_audit(
            actor=actor,
            action="CREATE",
            entity_type="MaterialLot",
            entity_id=lot.id,
            new_values={
                "material_code": material.code,
                "lot_number": lot.lot_number,
                "quantity_received": quantity,
                "expiry_date": expiry,
                "supplier_name": lot.supplier_name,
            },
            reason="Stock arrival",
        )
        db.session.commit()
        current_app.logger.info(
            "Stock arrival: material=%s lot=%s qty=%s", material.code, lot.lot_number, quantity
        )
        return lot

    return run_with_retry(_op)


def _lot_snapshot(lot: MaterialLot) -> dict:
    return {
        "status": lot.status,
        "quantity_received": lot.quantity_received,
        "quantity_available": lot.quantity_available,
        "expiry_date": lot.expiry_date,
        "supplier_name": lot.supplier_name,
        "notes": lot.notes,
    }


def update_lot(lot_id: int, patch: dict, *, actor=None, reason: str | None = None) -> MaterialLot:
    """
    Admin correction path: status, quantity_available, expiry_date,
    supplier_name, notes. Always audit-logged with before/after.

    Raises:
        NotFound
        ValidationFailed: unknown field/status, quantity outside [0, received]
    """
    if not isinstance(patch, dict) or not patch:
        raise ValidationFailed("Nothing to update")
    allowed = {"status", "quantity_available", "expiry_date", "supplier_name", "notes"}
    unknown = [k for k in patch if k not in allowed]
    if unknown:
        raise ValidationFailed(f"Field not allowed: {unknown[0]}")

    cleaned: dict = {}
    if "status" in patch:
        status = str(patch["status"]).strip().upper()
        if status not in LOT_STATUSES:
            raise ValidationFailed(
                f"Invalid status '{patch['status']}'. Must be one of: {', '.join(sorted(LOT_STATUSES))}"
            )
        cleaned["status"] = status
    if "quantity_available" in patch:
        cleaned["quantity_available"] = coerce_decimal(
            patch["quantity_available"], "quantity_available", places=QUANTITY_PLACES
        )
    if "expiry_date" in patch:
        cleaned["expiry_date"] = coerce_datetime(patch["expiry_date"], "expiry_date")
    if "supplier_name" in patch:
        cleaned["supplier_name"] = clean_text(patch["supplier_name"], "supplier_name", max_length=255)
    if "notes" in patch:
        cleaned["notes"] = clean_text(patch["notes"], "notes")

    def _op() -> MaterialLot:
        begin_serialized()
        lot = lock_for_update(db.session.query(MaterialLot).filter_by(id=lot_id)).first()
        if lot is None:
            raise NotFound(f"Material lot {lot_id} not found")

        new_qty = cleaned.get("quantity_available", Decimal(lot.quantity_available))
        if new_qty > Decimal(lot.quantity_received):
            raise ValidationFailed(
                f"quantity_available ({new_qty}) cannot exceed quantity_received ({lot.quantity_received})"
            )

        before = _lot_snapshot(lot)
        for key, value in cleaned.items():
            setattr(lot, key, value)

        # Keep status coherent with a corrected quantity
        if "status" not in cleaned and lot.status == "AVAILABLE" and new_qty <= 0:
            lot.status = "DEPLETED"
        db.session.flush()

        record_audit(
            actor=actor,
            action="UPDATE",
            entity_type="MaterialLot",
            entity_id=lot.id,
            old_values=before,
            new_values=_lot_snapshot(lot),
            reason=reason or "Lot correction",
        )
        db.session.commit()
        return lot

    return run_with_retry(_op)


def delete_lot(lot_id: int, *, actor=None, reason: str | None = None) -> dict:
    """
    Hard-delete a lot that was never consumed.

    Raises:
        NotFound
        ComplianceViolation: lot referenced by a WorksheetMaterial row
    """
    def _op() -> dict:
        begin_serialized()
        lot = lock_for_update(db.session.query(MaterialLot).filter_by(id=lot_id)).first()
        if lot is None:
            raise NotFound(f"Material lot {lot_id} not found")

        assert_deletable(lot=lot)

        snapshot = {"lot_number": lot.lot_number, "material_id": lot.material_id, **_lot_snapshot(lot)}
        db.session.delete(lot)
        db.session.flush()

        record_audit(
            actor=actor,
            action="DELETE",
            entity_type="MaterialLot",
            entity_id=lot_id,
            old_values=snapshot,
            reason=reason or "Lot deleted (never used)",
        )
        db.session.commit()
        return {"lot_id": lot_id, "lot_number": snapshot["lot_number"]}

    return run_with_retry(_op)


# =============================================================================
# FIFO SELECTION
# =============================================================================

def _eligible_lots_query(material_id: int, now: datetime):
    return (
        db.session.query(MaterialLot)
        .filter(
            MaterialLot.material_id == material_id,
            MaterialLot.status == "AVAILABLE",
            MaterialLot.quantity_available > 0,
            or_(MaterialLot.expiry_date.is_(None), MaterialLot.expiry_date > now),
        )
        .order_by(MaterialLot.arrival_date.asc(), MaterialLot.id.asc())
    )


def select_fifo(material_id: int, quantity_needed, *, lock: bool = False, now: datetime | None = None) -> LotSelection:
    """
    Select the single oldest eligible lot for a material.

    Eligible: AVAILABLE, quantity_available > 0, not expired (expiry is
    NULL or in the future). Ordered by arrival_date ascending.

    DESIGN CHOICE: no multi-lot splitting. If the oldest lot cannot cover
    the whole need this fails even when a newer lot could.

    Args:
        lock: take a row lock on the chosen lot (consumption path)

    Raises:
        NotFound: material missing
        InsufficientStock: no eligible lot, or oldest lot too small
    """
    quantity_needed = coerce_decimal(quantity_needed, "quantity_needed", positive=True, places=QUANTITY_PLACES)
    material = db.session.get(Material, material_id)
    if material is None:
        raise NotFound(f"Material {material_id} not found")

    query = _eligible_lots_query(material_id, now or utcnow())
    if lock:
        query = lock_for_update(query)
    lot = query.first()

    if lot is None:
        raise InsufficientStock(
            f"No available stock for material {material.code}",
            material_code=material.code,
            available=Decimal("0"),
            needed=quantity_needed,
        )

    available = Decimal(lot.quantity_available)
    if available < quantity_needed:
        raise InsufficientStock(
            f"Insufficient stock in LOT {lot.lot_number} for material {material.code}: "
            f"available {available}, needed {quantity_needed}",
            material_code=material.code,
            available=available,
            needed=quantity_needed,
        )

    return LotSelection(lot=lot, quantity_needed=quantity_needed)


# =============================================================================
# INVENTORY QUERIES
# =============================================================================

def list_available_materials(*, now: datetime | None = None) -> list[dict]:
    """Active materials with usable stock, plus the lot FIFO would pick next."""
    now = now or utcnow()
    results = []
    for material in list_materials(active_only=True):
        lots = _eligible_lots_query(material.id, now).all()
        if not lots:
            continue
        total = sum((Decimal(l.quantity_available) for l in lots), Decimal("0"))
        results.append({
            "material": material.to_dict(),
            "total_available": str(total),
            "next_fifo_lot": lots[0].to_dict(),
            "available_lot_count": len(lots),
        })
    return results


def get_expired_lots(*, now: datetime | None = None) -> list[MaterialLot]:
    """Lots past expiry that are still flagged AVAILABLE (need attention)."""
    now = now or utcnow()
    return (
        db.session.query(MaterialLot)
        .filter(
            MaterialLot.status == "AVAILABLE",
            MaterialLot.expiry_date.isnot(None),
            MaterialLot.expiry_date < now,
        )
        .order_by(MaterialLot.expiry_date.asc())
        .all()
    )


def get_depleted_lots() -> list[MaterialLot]:
    return (
        db.session.query(MaterialLot)
        .filter(MaterialLot.status == "DEPLETED", MaterialLot.quantity_available <= 0)
        .order_by(MaterialLot.updated_at.desc())
        .all()
    )


def mark_expired_lots(*, actor=None, now: datetime | None = None) -> list[MaterialLot]:
    """
    Flip every AVAILABLE lot past its expiry date to EXPIRED.

    Each flip is audit-logged. Traceability rows are untouched.
    """
    def _op() -> list[MaterialLot]:
        begin_serialized()
        lots = get_expired_lots(now=now)
        for lot in lots:
            lot.status = "EXPIRED"
            record_audit(
                actor=actor,
                action="STATUS_CHANGE",
                entity_type="MaterialLot",
                entity_id=lot.id,
                old_values={"status": "AVAILABLE"},
                new_values={"status": "EXPIRED"},
                reason=f"LOT {lot.lot_number} passed expiry date",
            )
        db.session.commit()
        if lots:
            current_app.logger.info("Marked %d lot(s) EXPIRED", len(lots))
        return lots

    return run_with_retry(_op)


def inventory_overview(*, now: datetime | None = None, expiry_days: int = 30) -> list[dict]:
    """Per-material stock summary (all lots, any status)."""
    now = now or utcnow()
    horizon = now + timedelta(days=expiry_days)
    overview = []
    for material in list_materials():
        lots = material.lots
        available_lots = [l for l in lots if l.status == "AVAILABLE" and Decimal(l.quantity_available) > 0]
        overview.append({
            "material": material.to_dict(),
            "total_lots": len(lots),
            "available_lots": len(available_lots),
            "total_received": str(sum((Decimal(l.quantity_received) for l in lots), Decimal("0"))),
            "total_available": str(
                sum((Decimal(l.quantity_available) for l in lots if l.status == "AVAILABLE"), Decimal("0"))
            ),
            "expiring_lots": len([
                l for l in available_lots
                if l.expiry_date is not None and now < l.expiry_date <= horizon
            ]),
            "expired_lots": len([l for l in lots if l.status == "EXPIRED"]),
            "recalled_lots": len([l for l in lots if l.status == "RECALLED"]),
        })
    return overview


def lot_status_counts() -> dict:
    rows = (
        db.session.query(MaterialLot.status, func.count(MaterialLot.id))
        .group_by(MaterialLot.status)
        .all()
    )
    counts = {status: 0 for status in sorted(LOT_STATUSES)}
    counts.update({status: count for status, count in rows})
    return counts
