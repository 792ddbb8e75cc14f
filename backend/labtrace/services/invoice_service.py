# Overview: Service-layer operations for invoices; aggregation of worksheets, amount calculation, finalization, payment progress, cancellation and deletion.

"""
LabTrace Invoice Engine

================================================================================
DRAFT -> NUMBERED
================================================================================

create_invoice / update_invoice (draft):
    lines = manual items (first) + one line per ordered product of every
            QC_APPROVED worksheet (unit price = price_at_selection snapshot)

finalize_invoice (single transaction):
    1. per-year numbering lock, max-scan -> RAC-YYYY-NNN
    2. every referenced worksheet -> DELIVERED, its order -> INVOICED
    3. audit INVOICE_GENERATE

cancel_invoice (compensating, idempotent):
    worksheet DELIVERED -> QC_APPROVED, order INVOICED -> QC_APPROVED

AMOUNTS: computed on unrounded Decimals; ROUND_HALF_UP to 2dp only on the
final four figures (subtotal, discount, tax, total).
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransition, NotFound, ValidationFailed
from ..models import Dentist, Document, EmailLog, Invoice, InvoiceLineItem, Order, WorkSheet
from ..validation import MONEY_PLACES, QUANTITY_PLACES, clean_text, coerce_date, coerce_decimal, coerce_int
from .audit_service import record_audit
from .concurrency import begin_serialized, lock_for_update, run_with_retry
from .document_service import (
    DOC_TYPE_INVOICE,
    build_invoice_payload,
    get_document_generator,
    register_document,
    remove_document_file,
)
from .numbering_service import next_invoice_number
from .settings_service import get_lab_config
from .state_machine import (
    INVOICE_CANCELLABLE,
    INVOICE_STATUSES,
    assert_invoice_payment_transition,
)
from .worksheet_service import _apply_worksheet_transition
from labtrace.time_utils import utcnow


TWO_PLACES = Decimal("0.01")
INVOICE_MUTABLE_FIELDS = {
    "worksheet_ids",
    "line_items",
    "tax_rate",
    "discount_rate",
    "invoice_date",
    "due_date",
    "notes",
}


@dataclass
class InvoiceAmounts:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "discount_amount": str(self.discount_amount),
            "tax_amount": str(self.tax_amount),
            "total_amount": str(self.total_amount),
        }


def _round(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def calculate_invoice_amounts(lines, tax_rate, discount_rate=Decimal("0")) -> InvoiceAmounts:
    """
    lines: iterable of (quantity, unit_price) pairs.

    subtotal = sum(q * p)
    discount = subtotal * discount_rate / 100
    tax      = (subtotal - discount) * tax_rate / 100
    total    = subtotal - discount + tax
    """
    tax_rate = Decimal(str(tax_rate))
    discount_rate = Decimal(str(discount_rate))
    subtotal = sum((Decimal(str(q)) * Decimal(str(p)) for q, p in lines), Decimal("0"))
    discount = subtotal * discount_rate / Decimal("100")
    tax = (subtotal - discount) * tax_rate / Decimal("100")
    total = subtotal - discount + tax
    return InvoiceAmounts(
        subtotal=_round(subtotal),
        discount_amount=_round(discount),
        tax_amount=_round(tax),
        total_amount=_round(total),
    )


def _coerce_rate(value, field: str) -> Decimal:
    rate = coerce_decimal(value, field, places=MONEY_PLACES)
    if rate > 100:
        raise ValidationFailed(f"{field} must be between 0 and 100")
    return rate


def _parse_manual_items(raw_items) -> list[dict]:
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        raise ValidationFailed("line_items must be a list")
    items = []
    for idx, item in enumerate(raw_items):
        if not isinstance(item, dict):
            raise ValidationFailed(f"line_items[{idx}] must be an object")
        items.append({
            "description": clean_text(item.get("description"), f"line_items[{idx}].description", max_length=512, required=True),
            "product_code": clean_text(item.get("product_code"), f"line_items[{idx}].product_code", max_length=64),
            "quantity": coerce_decimal(
                item.get("quantity", 1), f"line_items[{idx}].quantity", positive=True, places=QUANTITY_PLACES
            ),
            "unit_price": coerce_decimal(
                item.get("unit_price"), f"line_items[{idx}].unit_price", places=MONEY_PLACES
            ),
        })
    return items


def _parse_worksheet_ids(raw) -> list[int]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationFailed("worksheet_ids must be a list")
    ids: list[int] = []
    for idx, value in enumerate(raw):
        worksheet_id = coerce_int(value, f"worksheet_ids[{idx}]", minimum=1)
        if worksheet_id not in ids:
            ids.append(worksheet_id)
    return ids


def _open_invoices_for(worksheet_id: int, *, exclude_invoice_id: int | None = None) -> list[Invoice]:
    query = (
        db.session.query(Invoice)
        .join(InvoiceLineItem, InvoiceLineItem.invoice_id == Invoice.id)
        .filter(
            InvoiceLineItem.worksheet_id == worksheet_id,
            Invoice.payment_status != "CANCELLED",
        )
    )
    if exclude_invoice_id is not None:
        query = query.filter(Invoice.id != exclude_invoice_id)
    return query.distinct().order_by(Invoice.id.asc()).all()


def _load_invoiceable_worksheets(
    worksheet_ids: list[int],
    dentist_id: int,
    *,
    invoice_id: int | None = None,
) -> list[WorkSheet]:
    """
    Raises:
        NotFound: a worksheet is missing or soft-deleted
        InvalidTransition: not QC_APPROVED, or already on another open invoice
        ValidationFailed: worksheets of another dentist
    """
    worksheets = []
    for worksheet_id in worksheet_ids:
        worksheet = lock_for_update(db.session.query(WorkSheet).filter_by(id=worksheet_id)).first()
        if worksheet is None or worksheet.deleted_at is not None:
            raise NotFound(f"Worksheet {worksheet_id} not found")
        if worksheet.status != "QC_APPROVED":
            raise InvalidTransition(
                f"Worksheet {worksheet.worksheet_number} is {worksheet.status}; only QC_APPROVED worksheets can be invoiced"
            )
        if worksheet.dentist_id != dentist_id:
            raise ValidationFailed(
                f"Worksheet {worksheet.worksheet_number} belongs to another dentist; "
                "all worksheets on an invoice must share the invoice's dentist"
            )
        others = _open_invoices_for(worksheet.id, exclude_invoice_id=invoice_id)
        if others:
            label = others[0].invoice_number or f"draft #{others[0].id}"
            raise InvalidTransition(f"Worksheet {worksheet.worksheet_number} is already on invoice {label}")
        worksheets.append(worksheet)
    return worksheets


def _build_line_items(manual_items: list[dict], worksheets: list[WorkSheet]) -> list[InvoiceLineItem]:
    lines = []
    position = 0
    for item in manual_items:
        lines.append(
            InvoiceLineItem(
                worksheet_id=None,
                product_code=item["product_code"],
                description=item["description"],
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                line_type="manual",
                position=position,
            )
        )
        position += 1
    for worksheet in worksheets:
        for wp in worksheet.products:
            product = wp.product
            lines.append(
                InvoiceLineItem(
                    worksheet_id=worksheet.id,
                    product_code=product.code,
                    description=f"{product.code} - {product.name}",
                    quantity=Decimal(wp.quantity),
                    unit_price=Decimal(wp.price_at_selection),
                    line_type="product",
                    position=position,
                )
            )
            position += 1
    return lines


def _manual_items_of(invoice: Invoice) -> list[dict]:
    return [
        {
            "description": item.description,
            "product_code": item.product_code,
            "quantity": Decimal(item.quantity),
            "unit_price": Decimal(item.unit_price),
        }
        for item in invoice.line_items
        if item.worksheet_id is None
    ]


def _recompute(invoice: Invoice) -> InvoiceAmounts:
    amounts = calculate_invoice_amounts(
        [(item.quantity, item.unit_price) for item in invoice.line_items],
        invoice.tax_rate,
        invoice.discount_rate,
    )
    invoice.subtotal = amounts.subtotal
    invoice.discount_amount = amounts.discount_amount
    invoice.tax_amount = amounts.tax_amount
    invoice.total_amount = amounts.total_amount
    return amounts


def _default_due_date(invoice_date: date, dentist: Dentist) -> date:
    terms = dentist.payment_terms
    if terms is None:
        terms = get_lab_config().default_payment_terms
    return invoice_date + timedelta(days=int(terms))


def _lock_invoice(invoice_id: int) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise NotFound(f"Invoice {invoice_id} not found")
    return invoice


# =============================================================================
# QUERIES
# =============================================================================

def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFound(f"Invoice {invoice_id} not found")
    return invoice


def list_invoices(
    *,
    dentist_id: int | None = None,
    payment_status: str | None = None,
    is_draft: bool | None = None,
) -> dict:
    query = db.session.query(Invoice)
    if dentist_id is not None:
        query = query.filter(Invoice.dentist_id == dentist_id)
    if payment_status:
        if payment_status not in INVOICE_STATUSES:
            raise ValidationFailed(f"Invalid payment status '{payment_status}'")
        query = query.filter(Invoice.payment_status == payment_status)
    if is_draft is not None:
        query = query.filter(Invoice.is_draft.is_(is_draft))
    items = query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc()).all()
    return {"items": items, "count": len(items)}


def check_worksheet_invoice_status(worksheet_id: int) -> dict:
    worksheet = db.session.get(WorkSheet, worksheet_id)
    if worksheet is None:
        raise NotFound(f"Worksheet {worksheet_id} not found")
    invoices = _open_invoices_for(worksheet.id)
    return {
        "worksheet_id": worksheet.id,
        "worksheet_number": worksheet.worksheet_number,
        "worksheet_status": worksheet.status,
        "is_invoiced": any(not inv.is_draft for inv in invoices),
        "invoices": [
            {
                "id": inv.id,
                "invoice_number": inv.invoice_number,
                "is_draft": inv.is_draft,
                "payment_status": inv.payment_status,
            }
            for inv in invoices
        ],
    }


# =============================================================================
# CREATE / UPDATE
# =============================================================================

def create_invoice(dentist_id: int, payload: dict | None = None, *, actor=None) -> Invoice:
    """
    Build an invoice from QC_APPROVED worksheets plus manual lines.

    payload:
        worksheet_ids, line_items, tax_rate, discount_rate,
        invoice_date, due_date, notes, is_draft (default True)

    is_draft=False finalizes in the same transaction.
    """
    payload = dict(payload or {})
    worksheet_ids = _parse_worksheet_ids(payload.get("worksheet_ids"))
    manual_items = _parse_manual_items(payload.get("line_items"))
    tax_rate = _coerce_rate(payload["tax_rate"], "tax_rate") if payload.get("tax_rate") is not None else None
    discount_rate = (
        _coerce_rate(payload["discount_rate"], "discount_rate")
        if payload.get("discount_rate") is not None
        else Decimal("0")
    )
    invoice_date = coerce_date(payload.get("invoice_date"), "invoice_date") or utcnow().date()
    due_date = coerce_date(payload.get("due_date"), "due_date")
    if due_date is not None and due_date < invoice_date:
        raise ValidationFailed("due_date cannot be before invoice_date")
    notes = clean_text(payload.get("notes"), "notes")
    is_draft = payload.get("is_draft", True)
    if not isinstance(is_draft, bool):
        raise ValidationFailed("is_draft must be a boolean")

    def _op() -> Invoice:
        begin_serialized()
        dentist = db.session.get(Dentist, dentist_id)
        if dentist is None:
            raise NotFound(f"Dentist {dentist_id} not found")
        worksheets = _load_invoiceable_worksheets(worksheet_ids, dentist.id)

        invoice = Invoice(
            dentist_id=dentist.id,
            is_draft=True,
            payment_status="DRAFT",
            invoice_date=invoice_date,
            due_date=due_date or _default_due_date(invoice_date, dentist),
            tax_rate=tax_rate if tax_rate is not None else Decimal(get_lab_config().default_tax_rate),
            discount_rate=discount_rate,
            notes=notes,
            created_by=actor.user_id if actor is not None else None,
        )
        invoice.line_items = _build_line_items(manual_items, worksheets)
        amounts = _recompute(invoice)
        db.session.add(invoice)
        db.session.flush()

        record_audit(
            actor=actor,
            action="CREATE",
            entity_type="Invoice",
            entity_id=invoice.id,
            new_values={
                "dentist_id": dentist.id,
                "worksheet_ids": worksheet_ids,
                "line_count": len(invoice.line_items),
                **amounts.to_dict(),
            },
        )
        if not is_draft:
            _finalize_locked(invoice, actor=actor)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def update_invoice(invoice_id: int, payload: dict, *, actor=None) -> Invoice:
    """
    Edit a draft. Line items are rebuilt wholesale: whichever of
    worksheet_ids / line_items is omitted keeps its current content.
    """
    payload = dict(payload or {})
    for key in payload:
        if key not in INVOICE_MUTABLE_FIELDS:
            raise ValidationFailed(f"Field not allowed: {key}")
    new_worksheet_ids = _parse_worksheet_ids(payload["worksheet_ids"]) if "worksheet_ids" in payload else None
    new_manual = _parse_manual_items(payload["line_items"]) if "line_items" in payload else None

    def _op() -> Invoice:
        begin_serialized()
        invoice = _lock_invoice(invoice_id)
        if not invoice.is_draft:
            raise InvalidTransition(f"Invoice {invoice.invoice_number} is finalized and can no longer be edited")

        before = invoice.to_dict(include_lines=False)
        if "tax_rate" in payload:
            invoice.tax_rate = _coerce_rate(payload["tax_rate"], "tax_rate")
        if "discount_rate" in payload:
            invoice.discount_rate = _coerce_rate(payload["discount_rate"], "discount_rate")
        if "invoice_date" in payload:
            invoice.invoice_date = coerce_date(payload["invoice_date"], "invoice_date") or invoice.invoice_date
        if "due_date" in payload:
            invoice.due_date = coerce_date(payload["due_date"], "due_date") or _default_due_date(
                invoice.invoice_date, invoice.dentist
            )
        if invoice.due_date < invoice.invoice_date:
            raise ValidationFailed("due_date cannot be before invoice_date")
        if "notes" in payload:
            invoice.notes = clean_text(payload["notes"], "notes")

        if new_worksheet_ids is not None or new_manual is not None:
            worksheet_ids = new_worksheet_ids if new_worksheet_ids is not None else invoice.worksheet_ids()
            manual = new_manual if new_manual is not None else _manual_items_of(invoice)
            worksheets = _load_invoiceable_worksheets(worksheet_ids, invoice.dentist_id, invoice_id=invoice.id)
            invoice.line_items = _build_line_items(manual, worksheets)

        amounts = _recompute(invoice)
        db.session.flush()
        record_audit(
            actor=actor,
            action="UPDATE",
            entity_type="Invoice",
            entity_id=invoice.id,
            old_values={k: before[k] for k in ("subtotal", "tax_rate", "discount_rate", "total_amount")},
            new_values={
                "worksheet_ids": invoice.worksheet_ids(),
                "line_count": len(invoice.line_items),
                "tax_rate": invoice.tax_rate,
                "discount_rate": invoice.discount_rate,
                **amounts.to_dict(),
            },
        )
        db.session.commit()
        return invoice

    return run_with_retry(_op)


# =============================================================================
# FINALIZE
# =============================================================================

def _finalize_locked(invoice: Invoice, *, actor=None) -> str:
    """
    Number the invoice and deliver its worksheets. Caller holds the
    serialized transaction. Does NOT commit.
    """
    if not invoice.is_draft:
        raise InvalidTransition(f"Invoice {invoice.invoice_number} is already finalized")
    if not invoice.line_items:
        raise InvalidTransition("Cannot finalize an invoice without line items")

    worksheets = _load_invoiceable_worksheets(invoice.worksheet_ids(), invoice.dentist_id, invoice_id=invoice.id)
    now = utcnow()

    number = next_invoice_number(invoice.invoice_date)
    invoice.invoice_number = number
    invoice.payment_reference = number
    invoice.is_draft = False
    invoice.payment_status = "FINALIZED"
    invoice.finalized_at = now
    _recompute(invoice)

    for worksheet in worksheets:
        _apply_worksheet_transition(
            worksheet, "DELIVERED", actor=actor, reason=f"Invoiced on {number}", now=now
        )
        worksheet.order.status = "INVOICED"
    db.session.flush()

    record_audit(
        actor=actor,
        action="INVOICE_GENERATE",
        entity_type="Invoice",
        entity_id=invoice.id,
        old_values={"is_draft": True, "payment_status": "DRAFT"},
        new_values={
            "invoice_number": number,
            "payment_status": "FINALIZED",
            "worksheet_ids": [w.id for w in worksheets],
            "total_amount": invoice.total_amount,
        },
        occurred_at=now,
    )
    return number


def finalize_invoice(invoice_id: int, *, actor=None) -> Invoice:
    """
    Raises:
        NotFound: invoice missing
        InvalidTransition: already numbered, no lines, or a worksheet no longer QC_APPROVED
    """
    def _op() -> Invoice:
        begin_serialized()
        invoice = _lock_invoice(invoice_id)
        number = _finalize_locked(invoice, actor=actor)
        db.session.commit()
        current_app.logger.info("Invoice %s finalized (%s)", number, invoice.total_amount)
        return invoice

    return run_with_retry(_op)


# =============================================================================
# PAYMENT STATUS
# =============================================================================

def update_payment_status(
    invoice_id: int,
    payment_status: str,
    *,
    actor=None,
    payment_reference: str | None = None,
) -> Invoice:
    """Forward-only payment progression; DRAFT and CANCELLED are not reachable here."""
    payment_status = str(payment_status or "").strip().upper()
    payment_reference = clean_text(payment_reference, "payment_reference", max_length=64)

    def _op() -> Invoice:
        begin_serialized()
        invoice = _lock_invoice(invoice_id)
        if invoice.is_draft:
            raise InvalidTransition("Finalize the invoice before changing its payment status")
        old_status = invoice.payment_status
        assert_invoice_payment_transition(old_status, payment_status)

        now = utcnow()
        invoice.payment_status = payment_status
        if payment_status == "SENT":
            invoice.sent_at = now
        elif payment_status == "PAID":
            invoice.paid_at = now
        if payment_reference:
            invoice.payment_reference = payment_reference

        record_audit(
            actor=actor,
            action="STATUS_CHANGE",
            entity_type="Invoice",
            entity_id=invoice.id,
            old_values={"payment_status": old_status},
            new_values={"payment_status": payment_status, "payment_reference": invoice.payment_reference},
            occurred_at=now,
        )
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def mark_invoice_sent(invoice_id: int, *, actor=None) -> Invoice:
    return update_payment_status(invoice_id, "SENT", actor=actor)


# =============================================================================
# CANCEL / DELETE
# =============================================================================

def _reverse_finalization(invoice: Invoice, *, actor=None, reason: str | None = None) -> list[int]:
    """
    Compensating transition for a cancelled invoice. Only worksheets still
    DELIVERED and orders still INVOICED are touched, so running it twice
    changes nothing the second time. Does NOT commit.
    """
    reverted = []
    now = utcnow()
    for worksheet_id in invoice.worksheet_ids():
        worksheet = lock_for_update(db.session.query(WorkSheet).filter_by(id=worksheet_id)).first()
        if worksheet is None or worksheet.status != "DELIVERED":
            continue
        worksheet.status = "QC_APPROVED"
        worksheet.completed_at = None
        order = db.session.get(Order, worksheet.order_id)
        old_order_status = order.status
        if order.status == "INVOICED":
            order.status = "QC_APPROVED"
        record_audit(
            actor=actor,
            action="STATUS_CHANGE",
            entity_type="WorkSheet",
            entity_id=worksheet.id,
            old_values={"status": "DELIVERED", "order_status": old_order_status},
            new_values={"status": "QC_APPROVED", "order_status": order.status},
            reason=reason or f"Invoice {invoice.invoice_number} cancelled",
            occurred_at=now,
        )
        reverted.append(worksheet.id)
    return reverted


def cancel_invoice(invoice_id: int, *, actor=None, reason: str | None = None) -> Invoice:
    """
    Cancel a numbered invoice. Cancelling an already cancelled invoice is a no-op.

    Raises:
        InvalidTransition: invoice is a draft (delete it instead)
    """
    reason = clean_text(reason, "reason")

    def _op() -> Invoice:
        begin_serialized()
        invoice = _lock_invoice(invoice_id)
        if invoice.payment_status == "CANCELLED":
            db.session.rollback()
            return invoice
        if invoice.is_draft or invoice.payment_status not in INVOICE_CANCELLABLE:
            raise InvalidTransition(
                f"Invoice in status {invoice.payment_status} cannot be cancelled; delete the draft instead"
            )
        old_status = invoice.payment_status
        reverted = _reverse_finalization(invoice, actor=actor, reason=reason)
        invoice.payment_status = "CANCELLED"
        invoice.cancelled_at = utcnow()
        record_audit(
            actor=actor,
            action="STATUS_CHANGE",
            entity_type="Invoice",
            entity_id=invoice.id,
            old_values={"payment_status": old_status},
            new_values={"payment_status": "CANCELLED", "reverted_worksheet_ids": reverted},
            reason=reason,
        )
        db.session.commit()
        current_app.logger.info("Invoice %s cancelled; %d worksheet(s) reverted", invoice.invoice_number, len(reverted))
        return invoice

    return run_with_retry(_op)


def delete_invoice(invoice_id: int, *, actor=None, reason: str | None = None) -> dict:
    """
    Hard delete a draft, or a cancelled invoice after re-running the reversal.
    The PDF is purged after commit, best effort.

    Raises:
        InvalidTransition: invoice is numbered and not cancelled
    """
    def _op() -> tuple[dict, str | None]:
        begin_serialized()
        invoice = _lock_invoice(invoice_id)
        if not invoice.is_draft and invoice.payment_status != "CANCELLED":
            raise InvalidTransition(
                f"Invoice {invoice.invoice_number} is {invoice.payment_status}; cancel it before deleting"
            )
        if not invoice.is_draft:
            _reverse_finalization(invoice, actor=actor, reason=reason or "Cancelled invoice deleted")

        snapshot = invoice.to_dict(include_lines=False)
        pdf_path = invoice.pdf_path
        for doc in db.session.query(Document).filter_by(invoice_id=invoice.id).all():
            doc.invoice_id = None
        for log in db.session.query(EmailLog).filter_by(invoice_id=invoice.id).all():
            log.invoice_id = None
        db.session.delete(invoice)
        db.session.flush()

        record_audit(
            actor=actor,
            action="DELETE",
            entity_type="Invoice",
            entity_id=invoice_id,
            old_values={
                "invoice_number": snapshot["invoice_number"],
                "payment_status": snapshot["payment_status"],
                "total_amount": snapshot["total_amount"],
            },
            reason=reason,
        )
        db.session.commit()
        return {"deleted": True, "invoice_id": invoice_id, "invoice_number": snapshot["invoice_number"]}, pdf_path

    result, pdf_path = run_with_retry(_op)
    if pdf_path and not remove_document_file(pdf_path):
        current_app.logger.warning("PDF %s of deleted invoice %s was not removed", pdf_path, invoice_id)
    return result


# =============================================================================
# PDF
# =============================================================================

def attach_invoice_pdf(invoice_id: int, *, actor=None) -> Document:
    """
    Render the invoice PDF through the document generator and store its reference.

    Raises:
        InvalidTransition: draft invoice
        ValidationFailed: no document generator configured
    """
    invoice = get_invoice(invoice_id)
    if invoice.is_draft:
        raise InvalidTransition("Only finalized invoices can be rendered")
    generator = get_document_generator()
    if generator is None:
        raise ValidationFailed("No document generator configured")

    rendered = generator.render_invoice(build_invoice_payload(invoice))
    db.session.rollback()

    def _op() -> Document:
        begin_serialized()
        locked = _lock_invoice(invoice_id)
        doc = register_document(
            doc_type=DOC_TYPE_INVOICE,
            rendered=rendered,
            invoice_id=locked.id,
            document_number=locked.invoice_number,
            actor=actor,
        )
        locked.pdf_path = rendered.file_path
        db.session.commit()
        return doc

    return run_with_retry(_op)
