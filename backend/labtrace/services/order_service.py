# Overview: Service-layer operations for orders; intake with sequential numbering, edits, cancellation, soft delete.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransition, NotFound, ValidationFailed
from ..models import Dentist, Order, WorkSheet
from ..validation import clean_text, coerce_date, coerce_datetime
from .audit_service import record_audit
from .concurrency import begin_serialized, lock_for_update, run_with_retry
from .numbering_service import next_order_number
from .state_machine import ORDER_STATUSES
from labtrace.time_utils import utcnow


ORDER_MUTABLE_FIELDS = {"due_date", "patient_name", "priority", "impression_type", "notes"}
ORDER_PRIORITIES = {"LOW", "NORMAL", "HIGH", "URGENT"}

# Order fields are frozen once billing/delivery has happened
ORDER_LOCKED_STATUSES = {"INVOICED", "DELIVERED", "CANCELLED"}


def _clean_order_patch(payload: dict) -> dict:
    patch = {}
    for key, raw in payload.items():
        if key not in ORDER_MUTABLE_FIELDS:
            raise ValidationFailed(f"Field not allowed: {key}")
        if key == "due_date":
            patch[key] = coerce_date(raw, key)
        elif key == "priority":
            value = str(raw).strip().upper()
            if value not in ORDER_PRIORITIES:
                raise ValidationFailed(f"Invalid priority '{raw}'")
            patch[key] = value
        else:
            patch[key] = clean_text(raw, key, max_length=255 if key != "notes" else None)
    return patch


def active_worksheet_for(order_id: int) -> WorkSheet | None:
    """The order's live worksheet (not soft-deleted, not VOIDED), if any."""
    return (
        db.session.query(WorkSheet)
        .filter(
            WorkSheet.order_id == order_id,
            WorkSheet.deleted_at.is_(None),
            WorkSheet.status != "VOIDED",
        )
        .order_by(WorkSheet.revision.desc())
        .first()
    )


def get_order(order_id: int, *, include_deleted: bool = False) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or (order.deleted_at is not None and not include_deleted):
        raise NotFound(f"Order {order_id} not found")
    return order


def list_orders(
    *,
    dentist_id: int | None = None,
    status: str | None = None,
    include_deleted: bool = False,
) -> dict:
    query = db.session.query(Order)
    if not include_deleted:
        query = query.filter(Order.deleted_at.is_(None))
    if dentist_id is not None:
        query = query.filter(Order.dentist_id == dentist_id)
    if status:
        if status not in ORDER_STATUSES:
            raise ValidationFailed(f"Invalid order status '{status}'")
        query = query.filter(Order.status == status)
    items = query.order_by(Order.order_date.desc(), Order.id.desc()).all()
    return {"items": items, "count": len(items)}


def create_order(dentist_id: int, payload: dict | None = None, *, actor=None) -> Order:
    """
    Intake a new order and allocate its YYNNN number.

    The number is drawn inside the same transaction as the insert, so a
    rolled-back intake never consumes a number.

    Raises:
        NotFound: dentist missing or inactive
        ValidationFailed: bad payload
    """
    payload = dict(payload or {})
    order_date = coerce_datetime(payload.pop("order_date", None), "order_date") or utcnow()
    patch = _clean_order_patch(payload)

    def _op() -> Order:
        begin_serialized()
        dentist = db.session.get(Dentist, dentist_id)
        if dentist is None or not dentist.is_active:
            raise NotFound(f"Dentist {dentist_id} not found")

        order = Order(
            order_number=next_order_number(order_date.year),
            dentist_id=dentist.id,
            status="PENDING",
            order_date=order_date,
            created_by=actor.user_id if actor is not None else None,
            **patch,
        )
        db.session.add(order)
        db.session.flush()

        record_audit(
            actor=actor,
            action="CREATE",
            entity_type="Order",
            entity_id=order.id,
            new_values={"order_number": order.order_number, "dentist_id": dentist.id, **patch},
        )
        db.session.commit()
        current_app.logger.info("Order %s created for dentist %s", order.order_number, dentist.id)
        return order

    return run_with_retry(_op)


def update_order(order_id: int, payload: dict, *, actor=None) -> Order:
    patch = _clean_order_patch(payload or {})

    def _op() -> Order:
        begin_serialized()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None or order.deleted_at is not None:
            raise NotFound(f"Order {order_id} not found")
        if order.status in ORDER_LOCKED_STATUSES:
            raise InvalidTransition(f"Order {order.order_number} is {order.status} and can no longer be edited")

        before = {k: getattr(order, k) for k in patch}
        for key, value in patch.items():
            setattr(order, key, value)
        db.session.flush()

        record_audit(
            actor=actor,
            action="UPDATE",
            entity_type="Order",
            entity_id=order.id,
            old_values=before,
            new_values=patch,
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def cancel_order(order_id: int, *, actor=None, reason: str | None = None) -> Order:
    """
    PENDING -> CANCELLED. Only legal while no active worksheet exists
    (void the worksheet first).
    """
    def _op() -> Order:
        begin_serialized()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None or order.deleted_at is not None:
            raise NotFound(f"Order {order_id} not found")
        if order.status != "PENDING":
            raise InvalidTransition(
                f"Cannot cancel order {order.order_number}: status is {order.status}, must be PENDING"
            )
        if active_worksheet_for(order.id) is not None:
            raise InvalidTransition(
                f"Cannot cancel order {order.order_number}: it has an active worksheet"
            )

        order.status = "CANCELLED"
        record_audit(
            actor=actor,
            action="STATUS_CHANGE",
            entity_type="Order",
            entity_id=order.id,
            old_values={"status": "PENDING"},
            new_values={"status": "CANCELLED"},
            reason=reason or "Order cancelled",
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def delete_order(order_id: int, *, actor=None, reason: str | None = None) -> Order:
    """
    Soft delete. Orders are never hard-deleted: their number and any
    (voided) worksheet history must stay resolvable.
    """
    def _op() -> Order:
        begin_serialized()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None or order.deleted_at is not None:
            raise NotFound(f"Order {order_id} not found")
        if order.status not in ("PENDING", "CANCELLED"):
            raise InvalidTransition(
                f"Cannot delete order {order.order_number} in status {order.status}"
            )
        if active_worksheet_for(order.id) is not None:
            raise InvalidTransition(
                f"Cannot delete order {order.order_number}: it has an active worksheet"
            )

        order.deleted_at = utcnow()
        record_audit(
            actor=actor,
            action="DELETE",
            entity_type="Order",
            entity_id=order.id,
            old_values={"order_number": order.order_number, "status": order.status},
            reason=reason or "Order soft-deleted",
        )
        db.session.commit()
        return order

    return run_with_retry(_op)
