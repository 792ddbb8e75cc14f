# Overview: Flask API routes for invoices; parses input and returns JSON responses.

"""
Invoice routes.

SECURITY:
- Reads require VIEW_INVOICES
- Create/update/finalize/payment/email/PDF require MANAGE_INVOICES
- Cancel and delete require CANCEL_INVOICES

Numbers (RAC-YYYY-NNN) are assigned by finalize only; drafts have none.
"""
from flask import Blueprint, request, g
from ..services import email_service, invoice_service, document_service
from ..services.numbering_service import preview_next_invoice_number
from ..errors import LabTraceError, error_response
from ..decorators import require_auth, require_capability

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_auth
@require_capability("VIEW_INVOICES")
def list_invoices_route():
    """
    Query params:
    - dentist_id: int (optional)
    - status: payment status (optional)
    - draft: bool (optional)
    """
    draft_raw = request.args.get("draft")
    is_draft = None if draft_raw is None else draft_raw.lower() in ("1", "true", "yes")
    try:
        result = invoice_service.list_invoices(
            dentist_id=request.args.get("dentist_id", type=int),
            payment_status=request.args.get("status"),
            is_draft=is_draft,
        )
    except LabTraceError as e:
        return error_response(e)
    return {"items": [i.to_dict(include_lines=False) for i in result["items"]], "count": result["count"]}


@invoices_bp.get("/next-number")
@require_auth
@require_capability("VIEW_INVOICES")
def next_number_route():
    """Preview only; a concurrent finalization may take this number first."""
    return {"next_invoice_number": preview_next_invoice_number(request.args.get("year", type=int))}


@invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_capability("VIEW_INVOICES")
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
    except LabTraceError as e:
        return error_response(e)
    data = invoice.to_dict()
    data["documents"] = [d.to_dict() for d in document_service.list_documents(invoice_id=invoice.id)]
    data["emails"] = [log.to_dict() for log in email_service.list_email_logs(invoice.id)]
    return {"invoice": data}


@invoices_bp.post("")
@require_auth
@require_capability("MANAGE_INVOICES")
def create_invoice_route():
    """
    Body:
    - dentist_id: int (required)
    - worksheet_ids: [int] (QC_APPROVED worksheets of that dentist)
    - line_items: [{description, quantity, unit_price, product_code?}]
    - tax_rate, discount_rate: decimal percent (optional)
    - invoice_date, due_date: ISO date (optional)
    - notes: str (optional)
    - is_draft: bool (default true; false finalizes immediately)
    """
    payload = request.get_json(silent=True) or {}
    dentist_id = payload.pop("dentist_id", None)
    if not isinstance(dentist_id, int) or isinstance(dentist_id, bool):
        return {"error": "dentist_id is required"}, 400
    try:
        invoice = invoice_service.create_invoice(dentist_id, payload, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"invoice": invoice.to_dict()}, 201


@invoices_bp.patch("/<int:invoice_id>")
@require_auth
@require_capability("MANAGE_INVOICES")
def update_invoice_route(invoice_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        invoice = invoice_service.update_invoice(invoice_id, payload, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"invoice": invoice.to_dict()}


@invoices_bp.post("/<int:invoice_id>/finalize")
@require_auth
@require_capability("MANAGE_INVOICES")
def finalize_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.finalize_invoice(invoice_id, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"invoice": invoice.to_dict()}


@invoices_bp.post("/<int:invoice_id>/payment-status")
@require_auth
@require_capability("MANAGE_INVOICES")
def payment_status_route(invoice_id: int):
    """
    Body:
    - payment_status: SENT | VIEWED | PAID
    - payment_reference: str (optional)
    """
    payload = request.get_json(silent=True) or {}
    if not payload.get("payment_status"):
        return {"error": "payment_status is required"}, 400
    try:
        invoice = invoice_service.update_payment_status(
            invoice_id,
            payload["payment_status"],
            actor=g.current_user,
            payment_reference=payload.get("payment_reference"),
        )
    except LabTraceError as e:
        return error_response(e)
    return {"invoice": invoice.to_dict()}


@invoices_bp.post("/<int:invoice_id>/mark-sent")
@require_auth
@require_capability("MANAGE_INVOICES")
def mark_sent_route(invoice_id: int):
    try:
        invoice = invoice_service.mark_invoice_sent(invoice_id, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"invoice": invoice.to_dict()}


@invoices_bp.post("/<int:invoice_id>/send")
@require_auth
@require_capability("MANAGE_INVOICES")
def send_invoice_route(invoice_id: int):
    """
    Email the invoice through the configured sender.

    Body (optional): recipient, subject, body
    200 with the EmailLog either way; check its status.
    """
    payload = request.get_json(silent=True) or {}
    try:
        log = email_service.send_invoice_email(
            invoice_id,
            actor=g.current_user,
            recipient=payload.get("recipient"),
            subject=payload.get("subject"),
            body=payload.get("body"),
        )
    except LabTraceError as e:
        return error_response(e)
    return {"email": log.to_dict()}


@invoices_bp.post("/<int:invoice_id>/pdf")
@require_auth
@require_capability("MANAGE_INVOICES")
def attach_pdf_route(invoice_id: int):
    try:
        doc = invoice_service.attach_invoice_pdf(invoice_id, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"document": doc.to_dict()}, 201


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_auth
@require_capability("CANCEL_INVOICES")
def cancel_invoice_route(invoice_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        invoice = invoice_service.cancel_invoice(invoice_id, actor=g.current_user, reason=payload.get("reason"))
    except LabTraceError as e:
        return error_response(e)
    return {"invoice": invoice.to_dict()}


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
@require_capability("CANCEL_INVOICES")
def delete_invoice_route(invoice_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        result = invoice_service.delete_invoice(invoice_id, actor=g.current_user, reason=payload.get("reason"))
    except LabTraceError as e:
        return error_response(e)
    return result
