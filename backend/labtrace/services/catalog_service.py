# backend/labtrace/services/catalog_service.py
"""
Catalog Service: dentists and pricing products.

Plain master data. Prices here are LIVE prices; worksheets snapshot them.
"""
from __future__ import annotations

from ..extensions import db
from ..errors import DuplicateCode, NotFound, ValidationFailed
from ..models import Dentist, Product
from ..validation import MONEY_PLACES, clean_text, coerce_decimal, coerce_int, require_fields
from .audit_service import record_audit
from .concurrency import begin_serialized, run_with_retry

DENTIST_MUTABLE_FIELDS = {
    "clinic_name", "dentist_name", "email", "phone", "address", "city",
    "postal_code", "tax_number", "payment_terms", "requires_invoicing", "is_active",
}
PRODUCT_MUTABLE_FIELDS = {"code", "name", "category", "unit", "current_price", "is_active"}


def _clean_dentist_patch(payload: dict) -> dict:
    patch = {}
    for key, raw in payload.items():
        if key not in DENTIST_MUTABLE_FIELDS:
            raise ValidationFailed(f"Field not allowed: {key}")
        if key == "payment_terms":
            patch[key] = coerce_int(raw, key, minimum=0)
        elif key in ("requires_invoicing", "is_active"):
            patch[key] = bool(raw)
        else:
            patch[key] = clean_text(raw, key, max_length=255, required=key in ("clinic_name", "dentist_name", "email"))
    if "email" in patch and "@" not in patch["email"]:
        raise ValidationFailed("email must be a valid address")
    return patch


def _clean_product_patch(payload: dict) -> dict:
    patch = {}
    for key, raw in payload.items():
        if key not in PRODUCT_MUTABLE_FIELDS:
            raise ValidationFailed(f"Field not allowed: {key}")
        if key == "current_price":
            patch[key] = coerce_decimal(raw, key, places=MONEY_PLACES)
        elif key == "is_active":
            patch[key] = bool(raw)
        elif key == "code":
            patch[key] = clean_text(raw, key, max_length=64, required=True).upper()
        else:
            patch[key] = clean_text(raw, key, max_length=255, required=key == "name")
    return patch


def apply_patch(obj, patch: dict, allowed: set[str]) -> None:
    for k, v in patch.items():
        if k not in allowed:
            continue
        setattr(obj, k, v)


# =============================================================================
# DENTISTS
# =============================================================================

def get_dentist(dentist_id: int) -> Dentist:
    dentist = db.session.get(Dentist, dentist_id)
    if dentist is None:
        raise NotFound(f"Dentist {dentist_id} not found")
    return dentist


def list_dentists(*, active_only: bool = False) -> dict:
    query = db.session.query(Dentist)
    if active_only:
        query = query.filter(Dentist.is_active.is_(True))
    items = query.order_by(Dentist.clinic_name.asc()).all()
    return {"items": items, "count": len(items)}


def create_dentist(payload: dict, *, actor=None) -> Dentist:
    require_fields(payload, "clinic_name", "dentist_name", "email")
    patch = _clean_dentist_patch(payload)

    def _op() -> Dentist:
        begin_serialized()
        dentist = Dentist()
        apply_patch(dentist, patch, DENTIST_MUTABLE_FIELDS)
        db.session.add(dentist)
        db.session.flush()
        record_audit(actor=actor, action="CREATE", entity_type="Dentist", entity_id=dentist.id, new_values=patch)
        db.session.commit()
        return dentist

    return run_with_retry(_op)


def update_dentist(dentist_id: int, payload: dict, *, actor=None) -> Dentist:
    patch = _clean_dentist_patch(payload or {})

    def _op() -> Dentist:
        begin_serialized()
        dentist = get_dentist(dentist_id)
        before = {k: getattr(dentist, k) for k in patch}
        apply_patch(dentist, patch, DENTIST_MUTABLE_FIELDS)
        db.session.flush()
        record_audit(
            actor=actor,
            action="UPDATE",
            entity_type="Dentist",
            entity_id=dentist.id,
            old_values=before,
            new_values=patch,
        )
        db.session.commit()
        return dentist

    return run_with_retry(_op)


# =============================================================================
# PRODUCTS
# =============================================================================

def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    return product


def list_products(*, active_only: bool = False, category: str | None = None) -> dict:
    query = db.session.query(Product)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    if category:
        query = query.filter(Product.category == category)
    items = query.order_by(Product.code.asc()).all()
    return {"items": items, "count": len(items)}


def create_product(payload: dict, *, actor=None) -> Product:
    require_fields(payload, "code", "name", "current_price")
    patch = _clean_product_patch(payload)

    def _op() -> Product:
        begin_serialized()
        if db.session.query(Product.id).filter_by(code=patch["code"]).first():
            raise DuplicateCode(f"Product code {patch['code']} already exists")
        product = Product()
        apply_patch(product, patch, PRODUCT_MUTABLE_FIELDS)
        db.session.add(product)
        db.session.flush()
        record_audit(actor=actor, action="CREATE", entity_type="Product", entity_id=product.id, new_values=patch)
        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(product_id: int, payload: dict, *, actor=None) -> Product:
    """Price changes never touch existing worksheets (they hold snapshots)."""
    patch = _clean_product_patch(payload or {})

    def _op() -> Product:
        begin_serialized()
        product = get_product(product_id)
        if "code" in patch and patch["code"] != product.code:
            clash = db.session.query(Product.id).filter(Product.code == patch["code"], Product.id != product.id).first()
            if clash:
                raise DuplicateCode(f"Product code {patch['code']} already exists")
        before = {k: getattr(product, k) for k in patch}
        apply_patch(product, patch, PRODUCT_MUTABLE_FIELDS)
        db.session.flush()
        record_audit(
            actor=actor,
            action="UPDATE",
            entity_type="Product",
            entity_id=product.id,
            old_values=before,
            new_values=patch,
        )
        db.session.commit()
        return product

    return run_with_retry(_op)
