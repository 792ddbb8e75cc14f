# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order intake routes.

Order numbers (YYNNN) are allocated by the server on create; clients never
send one. Status is read-only here apart from cancel: it follows the
worksheet, QC and invoice operations.
"""
from flask import Blueprint, request, g
from ..services import order_service, worksheet_service
from ..errors import LabTraceError, error_response
from ..decorators import require_auth, require_capability

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_payload(order, *, with_worksheets: bool = False) -> dict:
    data = order.to_dict()
    if with_worksheets:
        data["worksheets"] = [
            ws.to_dict() for ws in sorted(order.worksheets, key=lambda w: w.revision)
        ]
    return data


@orders_bp.get("")
@require_auth
@require_capability("VIEW_ORDERS")
def list_orders_route():
    """
    Query params:
    - dentist_id: int (optional)
    - status: str (optional)
    - include_deleted: bool (optional)
    """
    try:
        result = order_service.list_orders(
            dentist_id=request.args.get("dentist_id", type=int),
            status=request.args.get("status"),
            include_deleted=request.args.get("include_deleted", "").lower() in ("1", "true", "yes"),
        )
    except LabTraceError as e:
        return error_response(e)
    return {"items": [o.to_dict() for o in result["items"]], "count": result["count"]}


@orders_bp.get("/<int:order_id>")
@require_auth
@require_capability("VIEW_ORDERS")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
    except LabTraceError as e:
        return error_response(e)
    return {"order": _order_payload(order, with_worksheets=True)}


@orders_bp.post("")
@require_auth
@require_capability("MANAGE_ORDERS")
def create_order_route():
    """
    Body:
    - dentist_id: int (required)
    - order_date, due_date, patient_name, priority, impression_type, notes
    """
    payload = request.get_json(silent=True) or {}
    dentist_id = payload.pop("dentist_id", None)
    if not isinstance(dentist_id, int) or isinstance(dentist_id, bool):
        return {"error": "dentist_id is required"}, 400
    try:
        order = order_service.create_order(dentist_id, payload, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"order": order.to_dict()}, 201


@orders_bp.patch("/<int:order_id>")
@require_auth
@require_capability("MANAGE_ORDERS")
def update_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        order = order_service.update_order(order_id, payload, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"order": order.to_dict()}


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_capability("MANAGE_ORDERS")
def cancel_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        order = order_service.cancel_order(order_id, actor=g.current_user, reason=payload.get("reason"))
    except LabTraceError as e:
        return error_response(e)
    return {"order": order.to_dict()}


@orders_bp.delete("/<int:order_id>")
@require_auth
@require_capability("MANAGE_ORDERS")
def delete_order_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        order = order_service.delete_order(order_id, actor=g.current_user, reason=payload.get("reason"))
    except LabTraceError as e:
        return error_response(e)
    return {"order": order.to_dict()}


@orders_bp.post("/<int:order_id>/worksheets")
@require_auth
@require_capability("MANAGE_WORKSHEETS")
def create_worksheet_route(order_id: int):
    """
    Open the worksheet (next revision) for an order.

    Body (all optional): device_description, intended_use, technical_notes,
    products[], teeth[], material_plans[]
    """
    payload = request.get_json(silent=True) or {}
    try:
        worksheet = worksheet_service.create_worksheet(order_id, payload, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"worksheet": worksheet.to_dict(include_lines=True)}, 201
