from __future__ import annotations

from ..extensions import db
from labtrace.time_utils import to_utc_z, to_iso_date
from .catalog import decimal_str


class Invoice(db.Model):
    """
    Dentist invoice.

    DRAFT vs FINALIZED:
    - Draft: invoice_number is NULL, is_draft=True, freely editable/deletable
    - Finalized: invoice_number RAC-YYYY-NNN assigned once and never changed,
      line items frozen, payment_status only advances or goes to CANCELLED

    Amounts are stored already rounded (2dp); the calculation itself rounds
    only at the final step.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        # Final guard for the derived numbering scheme
        db.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        db.Index("ix_invoices_dentist_status", "dentist_id", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(32), nullable=True, index=True)
    is_draft = db.Column(db.Boolean, nullable=False, default=True)
    dentist_id = db.Column(db.Integer, db.ForeignKey("dentists.id"), nullable=False, index=True)

    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)

    subtotal = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False)
    discount_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)
    payment_reference = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    pdf_path = db.Column(db.String(512), nullable=True)

    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    dentist = db.relationship("Dentist", backref=db.backref("invoices", lazy=True))
    line_items = db.relationship(
        "InvoiceLineItem",
        backref="invoice",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.position",
    )

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.payment_status}>"

    def worksheet_ids(self) -> list[int]:
        """Distinct worksheets referenced by line items, in first-seen order."""
        seen: list[int] = []
        for item in self.line_items:
            if item.worksheet_id is not None and item.worksheet_id not in seen:
                seen.append(item.worksheet_id)
        return seen

    def to_dict(self, *, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "is_draft": self.is_draft,
            "dentist_id": self.dentist_id,
            "invoice_date": to_iso_date(self.invoice_date),
            "due_date": to_iso_date(self.due_date),
            "subtotal": decimal_str(self.subtotal),
            "tax_rate": decimal_str(self.tax_rate),
            "discount_rate": decimal_str(self.discount_rate),
            "discount_amount": decimal_str(self.discount_amount),
            "tax_amount": decimal_str(self.tax_amount),
            "total_amount": decimal_str(self.total_amount),
            "payment_status": self.payment_status,
            "payment_reference": self.payment_reference,
            "notes": self.notes,
            "pdf_path": self.pdf_path,
            "finalized_at": to_utc_z(self.finalized_at),
            "sent_at": to_utc_z(self.sent_at),
            "paid_at": to_utc_z(self.paid_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["line_items"] = [item.to_dict() for item in self.line_items]
        return data


class InvoiceLineItem(db.Model):
    """Price snapshot line; immutable once the parent invoice is finalized."""
    __tablename__ = "invoice_line_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    worksheet_id = db.Column(db.Integer, db.ForeignKey("worksheets.id"), nullable=True, index=True)
    product_code = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(512), nullable=False)
    quantity = db.Column(db.Numeric(10, 3), nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    line_type = db.Column(db.String(16), nullable=False, default="product")
    position = db.Column(db.Integer, nullable=False, default=0)

    worksheet = db.relationship("WorkSheet")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "worksheet_id": self.worksheet_id,
            "product_code": self.product_code,
            "description": self.description,
            "quantity": decimal_str(self.quantity),
            "unit_price": decimal_str(self.unit_price),
            "line_type": self.line_type,
            "position": self.position,
        }


class EmailLog(db.Model):
    """Outcome of every attempt to hand an invoice to the email sender."""
    __tablename__ = "email_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)
    sent_by = db.Column(db.Integer, nullable=True)
    recipient = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "sent_by": self.sent_by,
            "recipient": self.recipient,
            "subject": self.subject,
            "status": self.status,
            "sent_at": to_utc_z(self.sent_at),
            "failed_at": to_utc_z(self.failed_at),
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
        }
