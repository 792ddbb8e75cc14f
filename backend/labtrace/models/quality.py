from __future__ import annotations

from ..extensions import db
from labtrace.time_utils import to_utc_z


class QualityControl(db.Model):
    """
    QC inspection record, 1:1 with a worksheet.

    Upserted (create-or-update) while the worksheet is QC_PENDING. A
    rework loop (QC_REJECTED -> IN_PRODUCTION -> QC_PENDING) updates the
    same row; the audit log keeps every prior submission.
    """
    __tablename__ = "quality_controls"
    __table_args__ = {"sqlite_autoincrement": True}

    CHECKLIST_FIELDS = ("aesthetics", "fit", "occlusion", "shade", "margins")

    id = db.Column(db.Integer, primary_key=True)
    worksheet_id = db.Column(db.Integer, db.ForeignKey("worksheets.id"), nullable=False, unique=True, index=True)

    inspector_id = db.Column(db.Integer, nullable=True)
    inspection_date = db.Column(db.DateTime(timezone=True), nullable=True)
    result = db.Column(db.String(16), nullable=False, default="PENDING")

    aesthetics = db.Column(db.Boolean, nullable=False, default=False)
    fit = db.Column(db.Boolean, nullable=False, default=False)
    occlusion = db.Column(db.Boolean, nullable=False, default=False)
    shade = db.Column(db.Boolean, nullable=False, default=False)
    margins = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)
    action_required = db.Column(db.Text, nullable=True)

    # Annex XIII inputs captured at inspection time
    emdn_code = db.Column(db.String(32), nullable=True)
    risk_class = db.Column(db.String(16), nullable=True)
    annex_i_deviations = db.Column(db.Text, nullable=True)
    document_version = db.Column(db.String(16), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    worksheet = db.relationship("WorkSheet", backref=db.backref("quality_control", uselist=False))

    def checklist(self) -> dict:
        return {name: bool(getattr(self, name)) for name in self.CHECKLIST_FIELDS}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "worksheet_id": self.worksheet_id,
            "inspector_id": self.inspector_id,
            "inspection_date": to_utc_z(self.inspection_date),
            "result": self.result,
            "checklist": self.checklist(),
            "notes": self.notes,
            "action_required": self.action_required,
            "emdn_code": self.emdn_code,
            "risk_class": self.risk_class,
            "annex_i_deviations": self.annex_i_deviations,
            "document_version": self.document_version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
