# Overview: Flask API routes for dentists and the product price list; parses input and returns JSON responses.

# backend/labtrace/routes/dentists.py
"""
Dentist and product catalog routes.

SECURITY: All routes require authentication.
- Read operations require VIEW_ORDERS
- Write operations require MANAGE_CATALOG
"""
from flask import Blueprint, request, g
from ..services import catalog_service
from ..errors import LabTraceError, error_response
from ..decorators import require_auth, require_capability

dentists_bp = Blueprint("dentists", __name__, url_prefix="/api")


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes")


# =============================================================================
# DENTISTS
# =============================================================================

@dentists_bp.get("/dentists")
@require_auth
@require_capability("VIEW_ORDERS")
def list_dentists_route():
    """
    Query params:
    - active_only: bool (optional)
    """
    result = catalog_service.list_dentists(active_only=_flag("active_only"))
    return {"items": [d.to_dict() for d in result["items"]], "count": result["count"]}


@dentists_bp.get("/dentists/<int:dentist_id>")
@require_auth
@require_capability("VIEW_ORDERS")
def get_dentist_route(dentist_id: int):
    try:
        dentist = catalog_service.get_dentist(dentist_id)
    except LabTraceError as e:
        return error_response(e)
    return {"dentist": dentist.to_dict()}


@dentists_bp.post("/dentists")
@require_auth
@require_capability("MANAGE_CATALOG")
def create_dentist_route():
    payload = request.get_json(silent=True) or {}
    try:
        dentist = catalog_service.create_dentist(payload, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"dentist": dentist.to_dict()}, 201


@dentists_bp.patch("/dentists/<int:dentist_id>")
@require_auth
@require_capability("MANAGE_CATALOG")
def update_dentist_route(dentist_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        dentist = catalog_service.update_dentist(dentist_id, payload, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"dentist": dentist.to_dict()}


# =============================================================================
# PRODUCTS
# =============================================================================

@dentists_bp.get("/products")
@require_auth
@require_capability("VIEW_ORDERS")
def list_products_route():
    """
    Query params:
    - active_only: bool (optional)
    - category: str (optional)
    """
    result = catalog_service.list_products(
        active_only=_flag("active_only"),
        category=request.args.get("category"),
    )
    return {"items": [p.to_dict() for p in result["items"]], "count": result["count"]}


@dentists_bp.get("/products/<int:product_id>")
@require_auth
@require_capability("VIEW_ORDERS")
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
    except LabTraceError as e:
        return error_response(e)
    return {"product": product.to_dict()}


@dentists_bp.post("/products")
@require_auth
@require_capability("MANAGE_CATALOG")
def create_product_route():
    payload = request.get_json(silent=True) or {}
    try:
        product = catalog_service.create_product(payload, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"product": product.to_dict()}, 201


@dentists_bp.patch("/products/<int:product_id>")
@require_auth
@require_capability("MANAGE_CATALOG")
def update_product_route(product_id: int):
    """Price changes apply to new worksheets only; existing ones keep their snapshot."""
    payload = request.get_json(silent=True) or {}
    try:
        product = catalog_service.update_product(product_id, payload, actor=g.current_user)
    except LabTraceError as e:
        return error_response(e)
    return {"product": product.to_dict()}
