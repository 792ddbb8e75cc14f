from __future__ import annotations

import json

from ..extensions import db
from labtrace.time_utils import to_utc_z
from .catalog import decimal_str


class SystemConfig(db.Model):
    """
    Durable key -> string store.

    Used for:
    - per-year order counters: next_order_number_<YYYY> (value = next number to issue)
    - per-year invoice numbering locks: invoice_number_lock_<YYYY>
    """
    __tablename__ = "system_config"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False, unique=True, index=True)
    value = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "description": self.description,
            "updated_at": to_utc_z(self.updated_at),
        }


class LabConfiguration(db.Model):
    """
    Singleton laboratory profile (Annex XIII manufacturer identity and
    invoicing defaults). singleton_key is always 1 and unique, so a second
    row can never be inserted.
    """
    __tablename__ = "lab_configuration"

    id = db.Column(db.Integer, primary_key=True)
    singleton_key = db.Column(db.Integer, nullable=False, unique=True, default=1)

    lab_name = db.Column(db.String(255), nullable=False, default="Dental Laboratory")
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    postal_code = db.Column(db.String(32), nullable=True)
    country = db.Column(db.String(64), nullable=True)
    tax_number = db.Column(db.String(64), nullable=True)
    registration_number = db.Column(db.String(64), nullable=True)
    responsible_person = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    iban = db.Column(db.String(64), nullable=True)

    default_tax_rate = db.Column(db.Numeric(5, 2), nullable=False)
    default_payment_terms = db.Column(db.Integer, nullable=False)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "lab_name": self.lab_name,
            "address": self.address,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
            "tax_number": self.tax_number,
            "registration_number": self.registration_number,
            "responsible_person": self.responsible_person,
            "email": self.email,
            "phone": self.phone,
            "iban": self.iban,
            "default_tax_rate": decimal_str(self.default_tax_rate),
            "default_payment_terms": self.default_payment_terms,
            "updated_at": to_utc_z(self.updated_at),
        }


class AuditLog(db.Model):
    """
    Append-only audit trail (MDR traceability).

    - Never updated or deleted
    - old_values / new_values are JSON snapshots (text)
    - user_id is the actor supplied by the upstream auth provider
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    user_role = db.Column(db.String(32), nullable=True)
    action = db.Column(db.String(32), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    old_values = db.Column(db.Text, nullable=True)
    new_values = db.Column(db.Text, nullable=True)
    reason = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} {self.action} {self.entity_type}:{self.entity_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_role": self.user_role,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "old_values": json.loads(self.old_values) if self.old_values else None,
            "new_values": json.loads(self.new_values) if self.new_values else None,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "created_at": to_utc_z(self.created_at),
        }
