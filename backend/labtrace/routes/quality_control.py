# Overview: Flask API routes for QC inspections; parses input and returns JSON responses.

from flask import Blueprint, request, g
from ..services import qc_service, worksheet_service
from ..errors import LabTraceError, error_response
from ..decorators import require_auth, require_capability

quality_control_bp = Blueprint("quality_control", __name__, url_prefix="/api/worksheets")


@quality_control_bp.post("/<int:worksheet_id>/qc")
@require_auth
@require_capability("SUBMIT_QC")
def submit_qc_route(worksheet_id: int):
    """
    Submit the QC inspection of a QC_PENDING worksheet.

    Body:
    - result: APPROVED | CONDITIONAL | REJECTED
    - checklist: {aesthetics, fit, occlusion, shade, margins} booleans
    - notes: str (required for CONDITIONAL)
    - action_required: str (required for REJECTED)
    - emdn_code, risk_class, annex_i_deviations, document_version (optional)

    Returns the QC record and the worksheet after the transition.
    """
    payload = request.get_json(silent=True) or {}
    try:
        qc = qc_service.submit_qc(worksheet_id, payload, actor=g.current_user)
        worksheet = worksheet_service.get_worksheet(worksheet_id)
    except LabTraceError as e:
        return error_response(e)
    return {"quality_control": qc.to_dict(), "worksheet": worksheet.to_dict()}, 201


@quality_control_bp.get("/<int:worksheet_id>/qc")
@require_auth
@require_capability("VIEW_ORDERS")
def get_qc_route(worksheet_id: int):
    try:
        qc = qc_service.get_qc(worksheet_id)
    except LabTraceError as e:
        return error_response(e)
    return {"quality_control": qc.to_dict()}
