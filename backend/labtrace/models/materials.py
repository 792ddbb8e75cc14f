from __future__ import annotations

from ..extensions import db
from labtrace.time_utils import to_utc_z
from .catalog import decimal_str


class Material(db.Model):
    """
    Material catalog entry (ceramics, alloys, resins, ...).

    Identity is frozen once any lot of it has been consumed: the code and
    CE data appear on Annex XIII statements already issued.
    """
    __tablename__ = "materials"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    type = db.Column(db.String(32), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    manufacturer = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    biocompatible = db.Column(db.Boolean, nullable=False, default=True)
    iso_standard = db.Column(db.String(64), nullable=True)
    ce_marked = db.Column(db.Boolean, nullable=False, default=True)
    ce_number = db.Column(db.String(64), nullable=True)

    unit = db.Column(db.String(16), nullable=False, default="g")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    lots = db.relationship(
        "MaterialLot",
        backref="material",
        lazy=True,
        order_by="MaterialLot.arrival_date",
    )

    def __repr__(self) -> str:
        return f"<Material id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "type": self.type,
            "name": self.name,
            "manufacturer": self.manufacturer,
            "description": self.description,
            "biocompatible": self.biocompatible,
            "iso_standard": self.iso_standard,
            "ce_marked": self.ce_marked,
            "ce_number": self.ce_number,
            "unit": self.unit,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class MaterialLot(db.Model):
    """
    Physical stock lot of a material.

    QUANTITY INVARIANT: 0 <= quantity_available <= quantity_received.
    quantity_available only decreases while AVAILABLE (consumption); the
    admin correction path is the only other writer.

    STATUS: AVAILABLE -> DEPLETED (auto at zero), EXPIRED, RECALLED.
    """
    __tablename__ = "material_lots"
    __table_args__ = (
        db.UniqueConstraint("material_id", "lot_number", name="uq_material_lots_material_lot"),
        db.CheckConstraint("quantity_available >= 0", name="ck_material_lots_available_nonneg"),
        db.CheckConstraint("quantity_available <= quantity_received", name="ck_material_lots_available_le_received"),
        db.Index("ix_material_lots_fifo", "material_id", "status", "arrival_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    material_id = db.Column(db.Integer, db.ForeignKey("materials.id"), nullable=False, index=True)
    lot_number = db.Column(db.String(64), nullable=False)

    arrival_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    quantity_received = db.Column(db.Numeric(10, 3), nullable=False)
    quantity_available = db.Column(db.Numeric(10, 3), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="AVAILABLE", index=True)
    supplier_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<MaterialLot id={self.id} lot={self.lot_number!r} status={self.status} available={self.quantity_available}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "material_id": self.material_id,
            "lot_number": self.lot_number,
            "arrival_date": to_utc_z(self.arrival_date),
            "expiry_date": to_utc_z(self.expiry_date),
            "quantity_received": decimal_str(self.quantity_received),
            "quantity_available": decimal_str(self.quantity_available),
            "status": self.status,
            "supplier_name": self.supplier_name,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class WorksheetMaterial(db.Model):
    """
    Regulatory traceability record: which lot satisfied which worksheet.

    APPEND-ONLY. Rows are never updated or deleted, regardless of what
    later happens to the lot (DEPLETED, EXPIRED, RECALLED). Deleting the
    referenced lot or material is blocked by the material service.
    """
    __tablename__ = "worksheet_materials"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    worksheet_id = db.Column(db.Integer, db.ForeignKey("worksheets.id"), nullable=False, index=True)
    material_id = db.Column(db.Integer, db.ForeignKey("materials.id"), nullable=False, index=True)
    material_lot_id = db.Column(db.Integer, db.ForeignKey("material_lots.id"), nullable=False, index=True)
    quantity_used = db.Column(db.Numeric(10, 3), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    consumed_by = db.Column(db.Integer, nullable=True)
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    worksheet = db.relationship("WorkSheet", backref=db.backref("materials", lazy=True))
    material = db.relationship("Material")
    material_lot = db.relationship("MaterialLot", backref=db.backref("usages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "worksheet_id": self.worksheet_id,
            "material_id": self.material_id,
            "material_lot_id": self.material_lot_id,
            "quantity_used": decimal_str(self.quantity_used),
            "notes": self.notes,
            "consumed_by": self.consumed_by,
            "consumed_at": to_utc_z(self.consumed_at),
        }
