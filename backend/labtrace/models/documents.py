from __future__ import annotations

from ..extensions import db
from labtrace.time_utils import to_utc_z


class Document(db.Model):
    """
    Metadata for a generated artifact (Annex XIII statement, invoice PDF).

    The file itself is produced and stored by the document generator; this
    row only records where it is and how long it must be kept.

    RETENTION: retention_until = generated_at + ANNEX_RETENTION_YEARS (15)
    for Annex XIII, + INVOICE_RETENTION_YEARS (10) for invoices.
    """
    __tablename__ = "documents"
    __table_args__ = (
        db.Index("ix_documents_worksheet_type", "worksheet_id", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    worksheet_id = db.Column(db.Integer, db.ForeignKey("worksheets.id"), nullable=True, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    document_number = db.Column(db.String(64), nullable=True, index=True)
    file_name = db.Column(db.String(255), nullable=False)
    file_path = db.Column(db.String(512), nullable=False)
    file_size = db.Column(db.Integer, nullable=True)
    mime_type = db.Column(db.String(64), nullable=False, default="application/pdf")

    generated_at = db.Column(db.DateTime(timezone=True), nullable=False)
    retention_until = db.Column(db.DateTime(timezone=True), nullable=False)
    generated_by = db.Column(db.Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Document id={self.id} type={self.type} number={self.document_number!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "worksheet_id": self.worksheet_id,
            "invoice_id": self.invoice_id,
            "type": self.type,
            "document_number": self.document_number,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "generated_at": to_utc_z(self.generated_at),
            "retention_until": to_utc_z(self.retention_until),
            "generated_by": self.generated_by,
        }
