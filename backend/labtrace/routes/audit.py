# Overview: Flask API routes for querying the append-only audit ledger.

from flask import Blueprint, request
from ..services import audit_service
from ..errors import LabTraceError, error_response
from ..validation import coerce_datetime
from ..decorators import require_auth, require_capability

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")


@audit_bp.get("")
@require_auth
@require_capability("VIEW_AUDIT_LOG")
def list_audit_logs_route():
    """
    Query params:
    - entity_type: str (e.g. WorkSheet, Invoice, MaterialLot)
    - entity_id: str
    - action: str (CREATE, STATUS_CHANGE, QC_APPROVE, ...)
    - user_id: int
    - since, until: ISO datetime (inclusive)
    - limit: int (default 100, max 500)
    - offset: int (default 0)
    """
    limit = min(max(request.args.get("limit", default=100, type=int), 1), 500)
    offset = max(request.args.get("offset", default=0, type=int), 0)
    action = request.args.get("action")
    if action and action not in audit_service.AUDIT_ACTIONS:
        return {"error": f"Unknown action '{action}'"}, 400

    try:
        since = coerce_datetime(request.args.get("since"), "since")
        until = coerce_datetime(request.args.get("until"), "until")
    except LabTraceError as e:
        return error_response(e)

    rows, total = audit_service.list_audit_logs(
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id"),
        action=action,
        user_id=request.args.get("user_id", type=int),
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return {
        "items": [row.to_dict() for row in rows],
        "count": len(rows),
        "total": total,
        "limit": limit,
        "offset": offset,
    }
