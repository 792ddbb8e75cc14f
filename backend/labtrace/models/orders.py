from __future__ import annotations

from ..extensions import db
from labtrace.time_utils import to_utc_z, to_iso_date
from .catalog import decimal_str


class Order(db.Model):
    """
    Dentist order (intake document).

    NUMBERING: order_number is YYNNN, allocated from the per-year counter
    in system_config (see numbering_service.next_order_number).

    LIFECYCLE: status is only ever written by the state machine services
    (worksheet, QC, invoice). Orders are soft-deleted via deleted_at.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_dentist_status", "dentist_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(16), nullable=False, unique=True, index=True)
    dentist_id = db.Column(db.Integer, db.ForeignKey("dentists.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    order_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    due_date = db.Column(db.Date, nullable=True)

    patient_name = db.Column(db.String(255), nullable=True)
    priority = db.Column(db.String(16), nullable=False, default="NORMAL")
    impression_type = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    dentist = db.relationship("Dentist", backref=db.backref("orders", lazy=True))

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "dentist_id": self.dentist_id,
            "status": self.status,
            "order_date": to_utc_z(self.order_date),
            "due_date": to_iso_date(self.due_date),
            "patient_name": self.patient_name,
            "priority": self.priority,
            "impression_type": self.impression_type,
            "notes": self.notes,
            "created_by": self.created_by,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class WorkSheet(db.Model):
    """
    Production worksheet (the manufactured custom device).

    NUMBERING: worksheet_number is always DN-<order_number>. It is derived,
    never counted. A voided worksheet keeps its number; the replacement
    shares it and carries revision + 1, so (worksheet_number, revision) is
    the unique key.
    """
    __tablename__ = "worksheets"
    __table_args__ = (
        db.UniqueConstraint("worksheet_number", "revision", name="uq_worksheets_number_revision"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    dentist_id = db.Column(db.Integer, db.ForeignKey("dentists.id"), nullable=False, index=True)

    worksheet_number = db.Column(db.String(32), nullable=False, index=True)
    revision = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    device_description = db.Column(db.Text, nullable=True)
    intended_use = db.Column(db.Text, nullable=True)
    technical_notes = db.Column(db.Text, nullable=True)
    qc_notes = db.Column(db.Text, nullable=True)

    manufacture_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    void_reason = db.Column(db.Text, nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by = db.Column(db.Integer, nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", backref=db.backref("worksheets", lazy=True))
    dentist = db.relationship("Dentist")
    products = db.relationship(
        "WorksheetProduct",
        backref="worksheet",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="WorksheetProduct.id",
    )
    teeth = db.relationship(
        "WorksheetTooth",
        backref="worksheet",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="WorksheetTooth.tooth_number",
    )
    material_plans = db.relationship(
        "WorksheetMaterialPlan",
        backref="worksheet",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="WorksheetMaterialPlan.id",
    )

    def __repr__(self) -> str:
        return f"<WorkSheet id={self.id} number={self.worksheet_number!r} rev={self.revision} status={self.status}>"

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None and self.status != "VOIDED"

    def to_dict(self, *, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "dentist_id": self.dentist_id,
            "worksheet_number": self.worksheet_number,
            "revision": self.revision,
            "status": self.status,
            "device_description": self.device_description,
            "intended_use": self.intended_use,
            "technical_notes": self.technical_notes,
            "qc_notes": self.qc_notes,
            "manufacture_date": to_utc_z(self.manufacture_date),
            "completed_at": to_utc_z(self.completed_at),
            "void_reason": self.void_reason,
            "voided_at": to_utc_z(self.voided_at),
            "voided_by": self.voided_by,
            "created_by": self.created_by,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["products"] = [p.to_dict() for p in self.products]
            data["teeth"] = [t.to_dict() for t in self.teeth]
            data["material_plans"] = [m.to_dict() for m in self.material_plans]
        return data


class WorksheetProduct(db.Model):
    """Ordered product line with the price snapshot taken at selection time."""
    __tablename__ = "worksheet_products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    worksheet_id = db.Column(db.Integer, db.ForeignKey("worksheets.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    price_at_selection = db.Column(db.Numeric(10, 2), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "worksheet_id": self.worksheet_id,
            "product_id": self.product_id,
            "product_code": self.product.code if self.product else None,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "price_at_selection": decimal_str(self.price_at_selection),
            "notes": self.notes,
        }


class WorksheetTooth(db.Model):
    """Tooth selection in FDI notation (11-48)."""
    __tablename__ = "worksheet_teeth"
    __table_args__ = (
        db.UniqueConstraint("worksheet_id", "tooth_number", name="uq_worksheet_teeth_tooth"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    worksheet_id = db.Column(db.Integer, db.ForeignKey("worksheets.id"), nullable=False, index=True)
    tooth_number = db.Column(db.String(2), nullable=False)
    work_type = db.Column(db.String(64), nullable=False)
    shade = db.Column(db.String(16), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tooth_number": self.tooth_number,
            "work_type": self.work_type,
            "shade": self.shade,
            "notes": self.notes,
        }


class WorksheetMaterialPlan(db.Model):
    """
    Planned material need, editable while the worksheet is DRAFT.

    Entering IN_PRODUCTION consumes every open plan through FIFO and stamps
    consumed_at. The resulting WorksheetMaterial rows are the immutable
    record; plans are only intent.
    """
    __tablename__ = "worksheet_material_plans"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    worksheet_id = db.Column(db.Integer, db.ForeignKey("worksheets.id"), nullable=False, index=True)
    material_id = db.Column(db.Integer, db.ForeignKey("materials.id"), nullable=False, index=True)
    quantity_planned = db.Column(db.Numeric(10, 3), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    material = db.relationship("Material")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "worksheet_id": self.worksheet_id,
            "material_id": self.material_id,
            "material_code": self.material.code if self.material else None,
            "quantity_planned": decimal_str(self.quantity_planned),
            "notes": self.notes,
            "consumed_at": to_utc_z(self.consumed_at),
        }
