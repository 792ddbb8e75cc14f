# Overview: Flask API routes for worksheets; draft edits, status transitions, void/delete and traceability views.

from flask import Blueprint, request, g
from ..services import document_service, invoice_service, traceability_service, worksheet_service
from ..services.state_machine import allowed_worksheet_targets
from ..errors import LabTraceError, error_response
from ..decorators import require_auth, require_capability

worksheets_bp = Blueprint("worksheets", __name__, url_prefix="/api/worksheets")


@worksheets_bp.get("")
@require_auth
@require_capability("VIEW_ORDERS")
def list_worksheets_route():
    """
    Query params:
    - order_id, dentist_id: int (optional)
    - status: str (optional)
    """
    try:
        result = worksheet_service.list_worksheets(
            order_id=request.args.get("order_id", type=int),
            dentist_id=request.args.get("dentist_id", type=int),
            status=request.args.get("status"),
        )
    except LabTraceError as e:
        return error_response(e)
    return {"items": [w.to_dict() for w in result["items"]], "count": result["count"]}


@worksheets_bp.get("/<int:worksheet_id>")
@require_auth
@require_capability("VIEW_ORDERS")
def get_worksheet_route(worksheet_id: int):
    try:
        worksheet = worksheet_service.get_worksheet(worksheet_id)
    except LabTraceError as e:
        return error_response(e)
    data = worksheet.to_dict(include_lines=True)
    data["allowed_transitions"] = allowed_worksheet_targets(worksheet.status)
    qc = worksheet.quality_control
    data["quality_control"] = qc.to_dict() if qc is not None else None
    return {"worksheet": data}


@worksheets_bp.patch("/<int:worksheet_id>")
@require_auth
@require_capability("MANAGE_WORKSHEETS")
def update_worksheet_route(worksheet_id: int):
    """DRAFT only. products / teeth / material_plans replace the current lists."""
    payload = request.get_json(silent=True) or {}
    try:
        worksheet = worksheet_service.update_worksheet(worksheet_id, payload, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"worksheet": worksheet.to_dict(include_lines=True)}


@worksheets_bp.post("/<int:worksheet_id>/transition")
@require_auth
@require_capability("TRANSITION_WORKSHEETS")
def transition_worksheet_route(worksheet_id: int):
    """
    Body:
    - to_status: IN_PRODUCTION | QC_PENDING | DELIVERED
    - notes: str (optional)

    Per-target role gates are enforced by the service (403).
    """
    payload = request.get_json(silent=True) or {}
    to_status = payload.get("to_status")
    if not to_status:
        return {"error": "to_status is required"}, 400
    try:
        worksheet = worksheet_service.transition_worksheet(
            worksheet_id, to_status, actor=g.current_user, notes=payload.get("notes")
        )
    except LabTraceError as e:
        return error_response(e)
    return {"worksheet": worksheet.to_dict(include_lines=True)}


@worksheets_bp.post("/<int:worksheet_id>/void")
@require_auth
@require_capability("VOID_WORKSHEETS")
def void_worksheet_route(worksheet_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        worksheet = worksheet_service.void_worksheet(worksheet_id, actor=g.current_user, reason=payload.get("reason"))
    except LabTraceError as e:
        return error_response(e)
    return {"worksheet": worksheet.to_dict()}


@worksheets_bp.delete("/<int:worksheet_id>")
@require_auth
@require_capability("MANAGE_WORKSHEETS")
def delete_worksheet_route(worksheet_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        worksheet = worksheet_service.delete_worksheet(worksheet_id, actor=g.current_user, reason=payload.get("reason"))
    except LabTraceError as e:
        return error_response(e)
    return {"worksheet": worksheet.to_dict()}


@worksheets_bp.get("/<int:worksheet_id>/materials")
@require_auth
@require_capability("VIEW_TRACEABILITY")
def worksheet_materials_route(worksheet_id: int):
    """Reverse traceability: every lot consumed for this worksheet."""
    try:
        return traceability_service.reverse_trace(worksheet_id)
    except LabTraceError as e:
        return error_response(e)


@worksheets_bp.get("/<int:worksheet_id>/documents")
@require_auth
@require_capability("VIEW_TRACEABILITY")
def worksheet_documents_route(worksheet_id: int):
    try:
        worksheet_service.get_worksheet(worksheet_id, include_deleted=True)
    except LabTraceError as e:
        return error_response(e)
    docs = document_service.list_documents(worksheet_id=worksheet_id)
    return {"items": [d.to_dict() for d in docs], "count": len(docs)}


@worksheets_bp.post("/<int:worksheet_id>/annex")
@require_auth
@require_capability("SUBMIT_QC")
def generate_annex_route(worksheet_id: int):
    """(Re)generate a missing Annex XIII statement for an approved worksheet."""
    try:
        worksheet = worksheet_service.get_worksheet(worksheet_id)
        if worksheet.status not in ("QC_APPROVED", "DELIVERED"):
            return {"error": f"Worksheet is {worksheet.status}; Annex XIII needs QC approval"}, 409
        doc = document_service.generate_annex_xiii(worksheet_id, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    if doc is None:
        return {"error": "No document generator configured"}, 503
    return {"document": doc.to_dict()}


@worksheets_bp.get("/<int:worksheet_id>/invoice-status")
@require_auth
@require_capability("VIEW_INVOICES")
def worksheet_invoice_status_route(worksheet_id: int):
    try:
        return invoice_service.check_worksheet_invoice_status(worksheet_id)
    except LabTraceError as e:
        return error_response(e)
