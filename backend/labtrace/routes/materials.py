# Overview: Flask API routes for the material lot ledger, FIFO consumption, stock alerts and forward traceability.

"""
Material and lot routes.

SECURITY:
- Reads require VIEW_MATERIALS (traceability views require VIEW_TRACEABILITY)
- Catalog and arrivals require MANAGE_MATERIALS
- Lot corrections require CORRECT_LOTS (admin only)
- Consumption requires CONSUME_MATERIALS

Lots are identified by (material, lot_number). Lot and material deletion
is refused with 409 once any worksheet consumed from them.
"""
from flask import Blueprint, current_app, request, g
from ..services import material_service, traceability_service
from ..errors import LabTraceError, error_response
from ..decorators import require_auth, require_capability

materials_bp = Blueprint("materials", __name__, url_prefix="/api/materials")


# =============================================================================
# CATALOG
# =============================================================================

@materials_bp.get("")
@require_auth
@require_capability("VIEW_MATERIALS")
def list_materials_route():
    """
    Query params:
    - active_only: bool (optional)
    - type: str (optional) - CERAMIC, METAL, RESIN, ...
    """
    try:
        items = material_service.list_materials(
            active_only=request.args.get("active_only", "").lower() in ("1", "true", "yes"),
            material_type=request.args.get("type"),
        )
    except LabTraceError as e:
        return error_response(e)
    return {"items": [m.to_dict() for m in items], "count": len(items)}


@materials_bp.get("/<int:material_id>")
@require_auth
@require_capability("VIEW_MATERIALS")
def get_material_route(material_id: int):
    try:
        material = material_service.get_material(material_id)
    except LabTraceError as e:
        return error_response(e)
    data = material.to_dict()
    data["lots"] = [lot.to_dict() for lot in material.lots]
    return {"material": data}


@materials_bp.post("")
@require_auth
@require_capability("MANAGE_MATERIALS")
def create_material_route():
    payload = request.get_json(silent=True) or {}
    try:
        material = material_service.create_material(payload, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"material": material.to_dict()}, 201


@materials_bp.patch("/<int:material_id>")
@require_auth
@require_capability("MANAGE_MATERIALS")
def update_material_route(material_id: int):
    """Identity fields (code, type, manufacturer, CE data) are frozen once the material was consumed."""
    payload = request.get_json(silent=True) or {}
    try:
        material = material_service.update_material(material_id, payload, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"material": material.to_dict()}


@materials_bp.delete("/<int:material_id>")
@require_auth
@require_capability("MANAGE_MATERIALS")
def delete_material_route(material_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        result = material_service.delete_material(material_id, actor=g.current_user, reason=payload.get("reason"))
    except LabTraceError as e:
        return error_response(e)
    return {"deleted": True, **result}


# =============================================================================
# LOTS
# =============================================================================

@materials_bp.post("/<int:material_id>/lots")
@require_auth
@require_capability("MANAGE_MATERIALS")
def record_arrival_route(material_id: int):
    """
    Body:
    - lot_number: str (required)
    - quantity: decimal (required, > 0)
    - expiry_date, arrival_date: ISO datetime (optional)
    - supplier_name, notes: str (optional)
    """
    payload = request.get_json(silent=True) or {}
    try:
        lot = material_service.record_arrival(
            material_id,
            payload.get("lot_number"),
            payload.get("quantity"),
            payload.get("expiry_date"),
            arrival_date=payload.get("arrival_date"),
            supplier_name=payload.get("supplier_name"),
            notes=payload.get("notes"),
            actor=g.current_user,
        )
    except LabTraceError as e:
        return error_response(e)
    return {"lot": lot.to_dict()}, 201


@materials_bp.get("/lots/<int:lot_id>")
@require_auth
@require_capability("VIEW_MATERIALS")
def get_lot_route(lot_id: int):
    try:
        lot = material_service.get_lot(lot_id)
    except LabTraceError as e:
        return error_response(e)
    return {"lot": lot.to_dict()}


@materials_bp.patch("/lots/<int:lot_id>")
@require_auth
@require_capability("CORRECT_LOTS")
def update_lot_route(lot_id: int):
    """
    Admin correction. Body: any of status, quantity_available, expiry_date,
    supplier_name, notes; plus an optional reason.
    """
    payload = request.get_json(silent=True) or {}
    reason = payload.pop("reason", None)
    try:
        lot = material_service.update_lot(lot_id, payload, actor=g.current_user, reason=reason)
    except LabTraceError as e:
        return error_response(e)
    return {"lot": lot.to_dict()}


@materials_bp.delete("/lots/<int:lot_id>")
@require_auth
@require_capability("MANAGE_MATERIALS")
def delete_lot_route(lot_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        result = material_service.delete_lot(lot_id, actor=g.current_user, reason=payload.get("reason"))
    except LabTraceError as e:
        return error_response(e)
    return {"deleted": True, **result}


# =============================================================================
# FIFO / CONSUMPTION
# =============================================================================

@materials_bp.get("/<int:material_id>/fifo")
@require_auth
@require_capability("VIEW_MATERIALS")
def fifo_preview_route(material_id: int):
    """
    Which lot would a consumption of `quantity` use right now (no lock, no write).

    Query params:
    - quantity: decimal (required)
    """
    try:
        selection = material_service.select_fifo(material_id, request.args.get("quantity"))
    except LabTraceError as e:
        return error_response(e)
    return {"selection": selection.to_dict()}


@materials_bp.post("/consume")
@require_auth
@require_capability("CONSUME_MATERIALS")
def consume_route():
    """
    Body:
    - worksheet_id: int (required)
    - material_id: int (required)
    - quantity: decimal (required, > 0)
    - notes: str (optional)

    409 with material_code/available/needed when the oldest lot is short.
    """
    payload = request.get_json(silent=True) or {}
    worksheet_id = payload.get("worksheet_id")
    material_id = payload.get("material_id")
    if not isinstance(worksheet_id, int) or not isinstance(material_id, int):
        return {"error": "worksheet_id and material_id are required"}, 400
    try:
        result = traceability_service.consume(
            worksheet_id,
            material_id,
            payload.get("quantity"),
            actor=g.current_user,
            notes=payload.get("notes"),
        )
    except LabTraceError as e:
        return error_response(e)
    return {"consumption": result.to_dict()}, 201


# =============================================================================
# ALERTS / OVERVIEW
# =============================================================================

@materials_bp.get("/available")
@require_auth
@require_capability("VIEW_MATERIALS")
def available_materials_route():
    items = material_service.list_available_materials()
    return {"items": items, "count": len(items)}


@materials_bp.get("/overview")
@require_auth
@require_capability("VIEW_MATERIALS")
def inventory_overview_route():
    days = request.args.get("days", type=int) or current_app.config.get("EXPIRY_ALERT_DAYS", 30)
    items = material_service.inventory_overview(expiry_days=days)
    return {"items": items, "count": len(items), "lot_status_counts": material_service.lot_status_counts()}


@materials_bp.get("/alerts/expiring")
@require_auth
@require_capability("VIEW_MATERIALS")
def expiring_alerts_route():
    """
    Query params:
    - days: int (optional, default EXPIRY_ALERT_DAYS)
    """
    days = request.args.get("days", type=int)
    if days is not None and days < 0:
        return {"error": "days must be >= 0"}, 400
    alerts = traceability_service.expiring_within(days)
    return {"items": alerts, "count": len(alerts)}


@materials_bp.get("/alerts/low-stock")
@require_auth
@require_capability("VIEW_MATERIALS")
def low_stock_alerts_route():
    """
    Query params:
    - threshold: decimal (optional, default LOW_STOCK_THRESHOLD)
    """
    try:
        alerts = traceability_service.low_stock(request.args.get("threshold"))
    except LabTraceError as e:
        return error_response(e)
    return {"items": alerts, "count": len(alerts)}


@materials_bp.get("/alerts/expired")
@require_auth
@require_capability("VIEW_MATERIALS")
def expired_lots_route():
    """AVAILABLE lots already past expiry (not yet flipped to EXPIRED)."""
    lots = material_service.get_expired_lots()
    return {"items": [lot.to_dict() for lot in lots], "count": len(lots)}


# =============================================================================
# TRACEABILITY
# =============================================================================

@materials_bp.get("/trace/<path:lot_number>")
@require_auth
@require_capability("VIEW_TRACEABILITY")
def forward_trace_route(lot_number: str):
    """
    Forward traceability (recall): every worksheet, patient and dentist
    that received material from this LOT.

    Query params:
    - material_id: int (optional) - disambiguate a LOT number shared by materials
    """
    try:
        return traceability_service.forward_trace(
            lot_number, material_id=request.args.get("material_id", type=int)
        )
    except LabTraceError as e:
        return error_response(e)
