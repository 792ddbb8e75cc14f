from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..errors import ValidationFailed
from ..models import LabConfiguration
from ..validation import MONEY_PLACES, clean_text, coerce_decimal, coerce_int
from .audit_service import record_audit
from .concurrency import begin_serialized, run_with_retry


LAB_CONFIG_MUTABLE_FIELDS = {
    "lab_name",
    "address",
    "city",
    "postal_code",
    "country",
    "tax_number",
    "registration_number",
    "responsible_person",
    "email",
    "phone",
    "iban",
    "default_tax_rate",
    "default_payment_terms",
}


def _config_defaults() -> dict:
    return {
        "singleton_key": 1,
        "lab_name": "Dental Laboratory",
        "default_tax_rate": Decimal(str(current_app.config.get("DEFAULT_TAX_RATE", "22.00"))),
        "default_payment_terms": int(current_app.config.get("DEFAULT_PAYMENT_TERMS_DAYS", 30)),
    }


def get_lab_config() -> LabConfiguration:
    """
    The singleton lab identity row.

    When nothing has been saved yet an unsaved instance built from app
    config defaults is returned, so reads never write.
    """
    row = db.session.query(LabConfiguration).filter_by(singleton_key=1).first()
    if row is not None:
        return row
    return LabConfiguration(**_config_defaults())


def _clean_patch(payload: dict) -> dict:
    patch = {}
    for key, raw in payload.items():
        if key not in LAB_CONFIG_MUTABLE_FIELDS:
            raise ValidationFailed(f"Field not allowed: {key}")
        if key == "default_tax_rate":
            rate = coerce_decimal(raw, key, places=MONEY_PLACES)
            if rate > 100:
                raise ValidationFailed("default_tax_rate must be between 0 and 100")
            patch[key] = rate
        elif key == "default_payment_terms":
            patch[key] = coerce_int(raw, key, minimum=0)
        else:
            patch[key] = clean_text(raw, key, max_length=255, required=key == "lab_name")
    return patch


def update_lab_config(payload: dict, *, actor=None) -> LabConfiguration:
    patch = _clean_patch(payload or {})

    def _op() -> LabConfiguration:
        begin_serialized()
        row = db.session.query(LabConfiguration).filter_by(singleton_key=1).first()
        if row is None:
            row = LabConfiguration(**_config_defaults())
            db.session.add(row)
        before = {k: getattr(row, k) for k in patch}
        for key, value in patch.items():
            setattr(row, key, value)
        db.session.flush()
        record_audit(
            actor=actor,
            action="UPDATE",
            entity_type="LabConfiguration",
            entity_id=row.id,
            old_values=before,
            new_values=patch,
        )
        db.session.commit()
        return row

    return run_with_retry(_op)
