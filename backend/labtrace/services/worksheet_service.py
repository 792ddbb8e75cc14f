# Overview: Service-layer operations for worksheets; creation per order, draft edits, state machine transitions, void and delete.

"""
LabTrace Worksheet Lifecycle

================================================================================
ONE ACTIVE WORKSHEET PER ORDER
================================================================================

    Order 26001 ── DN-26001 rev 1 (VOIDED)
               └─ DN-26001 rev 2 (IN_PRODUCTION)   <- the active one

- A worksheet is "active" while it is neither soft-deleted nor VOIDED.
- Revisions share the DN- number; revision = max(existing) + 1.
- Products, teeth and material plans are editable only in DRAFT.
- Every status write goes through _apply_worksheet_transition so the order
  status, the production hooks and the audit entry can never diverge.
- QC_APPROVED / QC_REJECTED are reached only via qc_service.submit_qc and
  VOIDED only via void_worksheet.
================================================================================
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransition, NotFound, ValidationFailed
from ..models import (
    Material,
    Order,
    Product,
    WorkSheet,
    WorksheetMaterialPlan,
    WorksheetProduct,
    WorksheetTooth,
)
from ..permissions import Role
from ..validation import MONEY_PLACES, QUANTITY_PLACES, clean_text, coerce_decimal, coerce_int
from .audit_service import record_audit
from .concurrency import begin_serialized, lock_for_update, run_with_retry
from .numbering_service import worksheet_number_for
from .order_service import active_worksheet_for
from .permission_service import require_role
from .state_machine import (
    ORDER_STATUS_FOR_WORKSHEET,
    QC_RESULT_STATUSES,
    WORKSHEET_STATUSES,
    assert_worksheet_transition,
    roles_for_worksheet_target,
)
from .traceability_service import consume_planned_materials
from labtrace.time_utils import utcnow


WORKSHEET_TEXT_FIELDS = {"device_description", "intended_use", "technical_notes", "qc_notes"}
WORKSHEET_MUTABLE_FIELDS = WORKSHEET_TEXT_FIELDS | {"products", "teeth", "material_plans"}

# FDI notation: quadrant 1-4, position 1-8
VALID_TEETH = {f"{q}{p}" for q in range(1, 5) for p in range(1, 9)}


# =============================================================================
# LOOKUPS
# =============================================================================

def get_worksheet(worksheet_id: int, *, include_deleted: bool = False) -> WorkSheet:
    worksheet = db.session.get(WorkSheet, worksheet_id)
    if worksheet is None or (worksheet.deleted_at is not None and not include_deleted):
        raise NotFound(f"Worksheet {worksheet_id} not found")
    return worksheet


def list_worksheets(
    *,
    order_id: int | None = None,
    dentist_id: int | None = None,
    status: str | None = None,
    include_deleted: bool = False,
) -> dict:
    query = db.session.query(WorkSheet)
    if not include_deleted:
        query = query.filter(WorkSheet.deleted_at.is_(None))
    if order_id is not None:
        query = query.filter(WorkSheet.order_id == order_id)
    if dentist_id is not None:
        query = query.filter(WorkSheet.dentist_id == dentist_id)
    if status:
        if status not in WORKSHEET_STATUSES:
            raise ValidationFailed(f"Invalid worksheet status '{status}'")
        query = query.filter(WorkSheet.status == status)
    items = query.order_by(WorkSheet.created_at.desc(), WorkSheet.id.desc()).all()
    return {"items": items, "count": len(items)}


def _lock_worksheet(worksheet_id: int) -> WorkSheet:
    worksheet = lock_for_update(db.session.query(WorkSheet).filter_by(id=worksheet_id)).first()
    if worksheet is None or worksheet.deleted_at is not None:
        raise NotFound(f"Worksheet {worksheet_id} not found")
    return worksheet


# =============================================================================
# LINE PARSING
# =============================================================================

def _build_products(raw_items) -> list[WorksheetProduct]:
    if not isinstance(raw_items, list):
        raise ValidationFailed("products must be a list")
    lines = []
    for idx, item in enumerate(raw_items):
        if not isinstance(item, dict) or "product_id" not in item:
            raise ValidationFailed(f"products[{idx}] requires product_id")
        product_id = coerce_int(item["product_id"], f"products[{idx}].product_id", minimum=1)
        product = db.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise NotFound(f"Product {product_id} not found")
        quantity = coerce_int(item.get("quantity", 1), f"products[{idx}].quantity", minimum=1)
        if item.get("price_at_selection") is not None:
            price = coerce_decimal(
                item["price_at_selection"], f"products[{idx}].price_at_selection", places=MONEY_PLACES
            )
        else:
            price = Decimal(product.current_price)
        lines.append(
            WorksheetProduct(
                product_id=product.id,
                quantity=quantity,
                price_at_selection=price,
                notes=clean_text(item.get("notes"), "notes"),
            )
        )
    return lines


def _build_teeth(raw_items) -> list[WorksheetTooth]:
    if not isinstance(raw_items, list):
        raise ValidationFailed("teeth must be a list")
    seen: set[str] = set()
    teeth = []
    for idx, item in enumerate(raw_items):
        if not isinstance(item, dict):
            raise ValidationFailed(f"teeth[{idx}] must be an object")
        tooth = str(item.get("tooth_number", "")).strip()
        if tooth not in VALID_TEETH:
            raise ValidationFailed(f"teeth[{idx}].tooth_number '{tooth}' is not a valid FDI tooth (11-48)")
        if tooth in seen:
            raise ValidationFailed(f"Tooth {tooth} listed twice")
        seen.add(tooth)
        teeth.append(
            WorksheetTooth(
                tooth_number=tooth,
                work_type=clean_text(item.get("work_type"), f"teeth[{idx}].work_type", max_length=64, required=True),
                shade=clean_text(item.get("shade"), f"teeth[{idx}].shade", max_length=16),
                notes=clean_text(item.get("notes"), "notes"),
            )
        )
    return teeth


def _build_material_plans(raw_items) -> list[WorksheetMaterialPlan]:
    if not isinstance(raw_items, list):
        raise ValidationFailed("material_plans must be a list")
    plans = []
    for idx, item in enumerate(raw_items):
        if not isinstance(item, dict) or "material_id" not in item:
            raise ValidationFailed(f"material_plans[{idx}] requires material_id")
        material_id = coerce_int(item["material_id"], f"material_plans[{idx}].material_id", minimum=1)
        material = db.session.get(Material, material_id)
        if material is None or not material.is_active:
            raise NotFound(f"Material {material_id} not found")
        plans.append(
            WorksheetMaterialPlan(
                material_id=material.id,
                quantity_planned=coerce_decimal(
                    item.get("quantity_planned"), f"material_plans[{idx}].quantity_planned", positive=True,
                    places=QUANTITY_PLACES,
                ),
                notes=clean_text(item.get("notes"), "notes"),
            )
        )
    return plans


def _apply_draft_patch(worksheet: WorkSheet, payload: dict) -> dict:
    """Apply a draft edit; returns the audit-friendly summary of what changed."""
    changed: dict = {}
    for key in payload:
        if key not in WORKSHEET_MUTABLE_FIELDS:
            raise ValidationFailed(f"Field not allowed: {key}")

    for key in WORKSHEET_TEXT_FIELDS & payload.keys():
        value = clean_text(payload[key], key)
        setattr(worksheet, key, value)
        changed[key] = value

    # Relationship collections are replaced wholesale (delete-orphan cascade)
    if "products" in payload:
        worksheet.products = _build_products(payload["products"])
        changed["products"] = [
            {"product_id": p.product_id, "quantity": p.quantity, "price_at_selection": p.price_at_selection}
            for p in worksheet.products
        ]
    if "teeth" in payload:
        worksheet.teeth = _build_teeth(payload["teeth"])
        changed["teeth"] = [t.tooth_number for t in worksheet.teeth]
    if "material_plans" in payload:
        worksheet.material_plans = _build_material_plans(payload["material_plans"])
        changed["material_plans"] = [
            {"material_id": m.material_id, "quantity_planned": m.quantity_planned}
            for m in worksheet.material_plans
        ]
    return changed


# =============================================================================
# CREATE / UPDATE
# =============================================================================

def create_worksheet(order_id: int, payload: dict | None = None, *, actor=None) -> WorkSheet:
    """
    Open the production worksheet for an order.

    Raises:
        NotFound: order missing or soft-deleted
        InvalidTransition: order cancelled or already has an active worksheet
    """
    payload = dict(payload or {})

    def _op() -> WorkSheet:
        begin_serialized()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None or order.deleted_at is not None:
            raise NotFound(f"Order {order_id} not found")
        if order.status == "CANCELLED":
            raise InvalidTransition(f"Order {order.order_number} is cancelled")
        existing = active_worksheet_for(order.id)
        if existing is not None:
            raise InvalidTransition(
                f"Order {order.order_number} already has active worksheet "
                f"{existing.worksheet_number} rev {existing.revision}"
            )

        max_revision = (
            db.session.query(db.func.max(WorkSheet.revision))
            .filter(WorkSheet.order_id == order.id)
            .scalar()
        ) or 0

        worksheet = WorkSheet(
            order_id=order.id,
            dentist_id=order.dentist_id,
            worksheet_number=worksheet_number_for(order.order_number),
            revision=max_revision + 1,
            status="DRAFT",
            created_by=actor.user_id if actor is not None else None,
        )
        db.session.add(worksheet)
        changed = _apply_draft_patch(worksheet, payload)
        db.session.flush()

        record_audit(
            actor=actor,
            action="CREATE",
            entity_type="WorkSheet",
            entity_id=worksheet.id,
            new_values={
                "worksheet_number": worksheet.worksheet_number,
                "revision": worksheet.revision,
                "order_number": order.order_number,
                **changed,
            },
        )
        db.session.commit()
        current_app.logger.info(
            "Worksheet %s rev %s created", worksheet.worksheet_number, worksheet.revision
        )
        return worksheet

    return run_with_retry(_op)


def update_worksheet(worksheet_id: int, payload: dict, *, actor=None) -> WorkSheet:
    """Edit a DRAFT worksheet. Past DRAFT the worksheet content is frozen."""
    payload = dict(payload or {})

    def _op() -> WorkSheet:
        begin_serialized()
        worksheet = _lock_worksheet(worksheet_id)
        if worksheet.status != "DRAFT":
            raise InvalidTransition(
                f"Worksheet {worksheet.worksheet_number} is {worksheet.status}; only DRAFT worksheets can be edited"
            )
        changed = _apply_draft_patch(worksheet, payload)
        db.session.flush()
        record_audit(
            actor=actor,
            action="UPDATE",
            entity_type="WorkSheet",
            entity_id=worksheet.id,
            new_values=changed,
        )
        db.session.commit()
        return worksheet

    return run_with_retry(_op)


# =============================================================================
# TRANSITIONS
# =============================================================================

def sync_order_status(worksheet: WorkSheet) -> str | None:
    """Move the parent order to the status implied by the worksheet. Returns the old order status."""
    target = ORDER_STATUS_FOR_WORKSHEET.get(worksheet.status)
    if target is None:
        return None
    order = worksheet.order
    old = order.status
    order.status = target
    return old


def _apply_worksheet_transition(
    worksheet: WorkSheet,
    to_status: str,
    *,
    actor=None,
    reason: str | None = None,
    now=None,
) -> None:
    """
    Perform a validated status change inside the caller's transaction.

    Hooks:
        IN_PRODUCTION  consume open material plans (FIFO), stamp manufacture_date once
        DELIVERED      stamp completed_at

    Does NOT commit.
    """
    assert_worksheet_transition(worksheet.status, to_status)
    now = now or utcnow()
    from_status = worksheet.status

    consumed = []
    if to_status == "IN_PRODUCTION":
        consumed = consume_planned_materials(worksheet, actor=actor)
        if worksheet.manufacture_date is None:
            worksheet.manufacture_date = now
    elif to_status == "DELIVERED":
        worksheet.completed_at = now

    worksheet.status = to_status
    old_order_status = sync_order_status(worksheet)

    new_values = {"status": to_status, "order_status": worksheet.order.status}
    if consumed:
        new_values["consumed_lots"] = [r.lot.lot_number for r in consumed]
    record_audit(
        actor=actor,
        action="STATUS_CHANGE",
        entity_type="WorkSheet",
        entity_id=worksheet.id,
        old_values={"status": from_status, "order_status": old_order_status},
        new_values=new_values,
        reason=reason,
        occurred_at=now,
    )


def transition_worksheet(worksheet_id: int, to_status: str, *, actor=None, notes: str | None = None) -> WorkSheet:
    """
    Generic worksheet transition (production steps and delivery).

    Raises:
        InvalidTransition: illegal edge, QC outcome or void requested here
        Forbidden: role not allowed to move the worksheet into to_status
        InsufficientStock: a material plan cannot be covered on IN_PRODUCTION entry
    """
    to_status = str(to_status or "").strip().upper()
    if to_status not in WORKSHEET_STATUSES:
        raise InvalidTransition(f"Invalid worksheet status '{to_status}'")
    if to_status in QC_RESULT_STATUSES:
        raise InvalidTransition(f"{to_status} can only be reached by submitting a QC inspection")
    if to_status == "VOIDED":
        raise InvalidTransition("Use the void operation to void a worksheet")
    require_role(actor, roles_for_worksheet_target(to_status), action=f"move worksheet to {to_status}")

    def _op() -> WorkSheet:
        begin_serialized()
        worksheet = _lock_worksheet(worksheet_id)
        _apply_worksheet_transition(worksheet, to_status, actor=actor, reason=notes)
        db.session.commit()
        current_app.logger.info("Worksheet %s -> %s", worksheet.worksheet_number, to_status)
        return worksheet

    return run_with_retry(_op)


def void_worksheet(worksheet_id: int, *, actor=None, reason: str | None = None) -> WorkSheet:
    """
    Admin override: any non-terminal worksheet -> VOIDED; order back to PENDING.

    Consumed material stays linked to the voided worksheet for traceability.
    """
    require_role(actor, {Role.ADMIN}, action="void worksheets")
    reason = clean_text(reason, "reason", required=True)

    def _op() -> WorkSheet:
        begin_serialized()
        worksheet = _lock_worksheet(worksheet_id)
        now = utcnow()
        _apply_worksheet_transition(worksheet, "VOIDED", actor=actor, reason=reason, now=now)
        worksheet.void_reason = reason
        worksheet.voided_at = now
        worksheet.voided_by = actor.user_id
        db.session.commit()
        current_app.logger.warning("Worksheet %s rev %s voided: %s", worksheet.worksheet_number, worksheet.revision, reason)
        return worksheet

    return run_with_retry(_op)


def delete_worksheet(worksheet_id: int, *, actor=None, reason: str | None = None) -> WorkSheet:
    """Soft-delete a DRAFT worksheet; the order goes back to PENDING."""
    def _op() -> WorkSheet:
        begin_serialized()
        worksheet = _lock_worksheet(worksheet_id)
        if worksheet.status != "DRAFT":
            raise InvalidTransition(
                f"Only DRAFT worksheets can be deleted ({worksheet.worksheet_number} is {worksheet.status}); void it instead"
            )
        worksheet.deleted_at = utcnow()
        order = worksheet.order
        old_order_status = order.status
        if order.status != "CANCELLED":
            order.status = "PENDING"
        record_audit(
            actor=actor,
            action="DELETE",
            entity_type="WorkSheet",
            entity_id=worksheet.id,
            old_values={
                "worksheet_number": worksheet.worksheet_number,
                "revision": worksheet.revision,
                "order_status": old_order_status,
            },
            reason=reason or "Draft worksheet deleted",
        )
        db.session.commit()
        return worksheet

    return run_with_retry(_op)
