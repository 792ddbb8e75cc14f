from __future__ import annotations

from ..extensions import db
from labtrace.time_utils import to_utc_z


def decimal_str(value):
    """Numeric columns are serialized as strings so no float rounding leaks out."""
    return str(value) if value is not None else None


class Dentist(db.Model):
    """
    Dentist / clinic master data.

    INVOICING FLAGS:
    - payment_terms: days added to invoice_date to compute due_date
    - requires_invoicing: when False, QC approval auto-delivers the worksheet
      (internal clinics, warranty work) without ever producing an invoice
    """
    __tablename__ = "dentists"
    __table_args__ = (
        db.Index("ix_dentists_clinic_name", "clinic_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    clinic_name = db.Column(db.String(255), nullable=False)
    dentist_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(64), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    postal_code = db.Column(db.String(32), nullable=True)
    tax_number = db.Column(db.String(64), nullable=True)

    payment_terms = db.Column(db.Integer, nullable=False, default=30)
    requires_invoicing = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Dentist id={self.id} clinic={self.clinic_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clinic_name": self.clinic_name,
            "dentist_name": self.dentist_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "postal_code": self.postal_code,
            "tax_number": self.tax_number,
            "payment_terms": self.payment_terms,
            "requires_invoicing": self.requires_invoicing,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Product(db.Model):
    """
    Pricing catalog entry.

    current_price is the LIVE price. Worksheets snapshot it into
    WorksheetProduct.price_at_selection, and invoices only ever read the
    snapshot, so later price changes never rewrite history.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True, index=True)
    unit = db.Column(db.String(32), nullable=False, default="piece")
    current_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "category": self.category,
            "unit": self.unit,
            "current_price": decimal_str(self.current_price),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
