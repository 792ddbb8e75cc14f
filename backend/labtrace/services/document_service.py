# Overview: Service-layer operations for generated documents; Annex XIII statements, invoice PDFs and their retention metadata.

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from flask import current_app

from ..extensions import DOCUMENT_GENERATOR_KEY, db
from ..errors import NotFound
from ..models import Document, Invoice, WorkSheet
from .audit_service import record_audit
from .concurrency import begin_serialized, run_with_retry
from .numbering_service import annex_document_number
from .settings_service import get_lab_config
from .traceability_service import reverse_trace
from labtrace.time_utils import to_utc_z, utcnow


DOC_TYPE_ANNEX = "ANNEX_XIII"
DOC_TYPE_INVOICE = "INVOICE"
DOCUMENT_TYPES = {DOC_TYPE_ANNEX, DOC_TYPE_INVOICE}


@dataclass
class RenderedDocument:
    """File reference handed back by a document generator."""
    file_name: str
    file_path: str
    file_size: int | None = None
    mime_type: str = "application/pdf"


class DocumentGenerator(Protocol):
    """
    Renders documents from plain payload dicts.

    Registered on app.extensions[DOCUMENT_GENERATOR_KEY]. Storage of the
    produced file is the generator's business; only the reference comes back.
    """

    def render_annex_xiii(self, payload: dict) -> RenderedDocument:
        ...

    def render_invoice(self, payload: dict) -> RenderedDocument:
        ...


def get_document_generator() -> DocumentGenerator | None:
    return current_app.extensions.get(DOCUMENT_GENERATOR_KEY)


def _add_years(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        # Feb 29 -> Feb 28
        return moment.replace(year=moment.year + years, day=28)


def retention_until(doc_type: str, generated_at: datetime) -> datetime:
    if doc_type == DOC_TYPE_ANNEX:
        years = int(current_app.config.get("ANNEX_RETENTION_YEARS", 15))
    else:
        years = int(current_app.config.get("INVOICE_RETENTION_YEARS", 10))
    return _add_years(generated_at, years)


def register_document(
    *,
    doc_type: str,
    rendered: RenderedDocument,
    worksheet_id: int | None = None,
    invoice_id: int | None = None,
    document_number: str | None = None,
    actor=None,
    now: datetime | None = None,
) -> Document:
    """Store Document metadata inside the caller's transaction. Does NOT commit."""
    now = now or utcnow()
    doc = Document(
        worksheet_id=worksheet_id,
        invoice_id=invoice_id,
        type=doc_type,
        document_number=document_number,
        file_name=rendered.file_name,
        file_path=rendered.file_path,
        file_size=rendered.file_size,
        mime_type=rendered.mime_type or "application/pdf",
        generated_at=now,
        retention_until=retention_until(doc_type, now),
        generated_by=actor.user_id if actor is not None else None,
    )
    db.session.add(doc)
    db.session.flush()
    record_audit(
        actor=actor,
        action="DOCUMENT_GENERATE",
        entity_type="Document",
        entity_id=doc.id,
        new_values={
            "type": doc_type,
            "document_number": document_number,
            "file_path": rendered.file_path,
            "worksheet_id": worksheet_id,
            "invoice_id": invoice_id,
        },
    )
    return doc


def list_documents(*, worksheet_id: int | None = None, invoice_id: int | None = None, doc_type: str | None = None) -> list[Document]:
    query = db.session.query(Document)
    if worksheet_id is not None:
        query = query.filter(Document.worksheet_id == worksheet_id)
    if invoice_id is not None:
        query = query.filter(Document.invoice_id == invoice_id)
    if doc_type:
        query = query.filter(Document.type == doc_type)
    return query.order_by(Document.generated_at.desc(), Document.id.desc()).all()


def find_annex(worksheet_id: int) -> Document | None:
    return (
        db.session.query(Document)
        .filter(Document.worksheet_id == worksheet_id, Document.type == DOC_TYPE_ANNEX)
        .first()
    )


# =============================================================================
# ANNEX XIII
# =============================================================================

def build_annex_payload(worksheet: WorkSheet) -> dict:
    """
    Everything an Annex XIII statement needs: manufacturer, device,
    patient/prescriber, the materials from reverse traceability, QC sign-off.
    """
    trace = reverse_trace(worksheet.id)
    qc = worksheet.quality_control
    dentist = worksheet.dentist
    return {
        "document_number": annex_document_number(worksheet.worksheet_number),
        "lab": get_lab_config().to_dict(),
        "worksheet": worksheet.to_dict(include_lines=True),
        "order_number": trace["order_number"],
        "patient_name": trace["patient_name"],
        "dentist": dentist.to_dict() if dentist is not None else None,
        "manufacture_date": trace["manufacture_date"],
        "materials": trace["materials"],
        "quality_control": qc.to_dict() if qc is not None else None,
        "generated_at": to_utc_z(utcnow()),
    }


def generate_annex_xiii(worksheet_id: int, *, actor=None) -> Document | None:
    """
    Render and register the Annex XIII statement for a worksheet.

    Returns the existing document when one is already registered, None when
    no generator is configured. Renderer errors propagate.
    """
    worksheet = db.session.get(WorkSheet, worksheet_id)
    if worksheet is None:
        raise NotFound(f"Worksheet {worksheet_id} not found")

    existing = find_annex(worksheet.id)
    if existing is not None:
        return existing

    generator = get_document_generator()
    if generator is None:
        current_app.logger.info(
            "No document generator configured; Annex XIII for %s not generated", worksheet.worksheet_number
        )
        return None

    payload = build_annex_payload(worksheet)
    rendered = generator.render_annex_xiii(payload)
    db.session.rollback()

    def _op() -> Document:
        begin_serialized()
        # A concurrent approval may have registered it meanwhile
        again = find_annex(worksheet_id)
        if again is not None:
            db.session.rollback()
            return again
        doc = register_document(
            doc_type=DOC_TYPE_ANNEX,
            rendered=rendered,
            worksheet_id=worksheet_id,
            document_number=payload["document_number"],
            actor=actor,
        )
        db.session.commit()
        current_app.logger.info("Annex XIII %s registered", payload["document_number"])
        return doc

    return run_with_retry(_op)


def generate_annex_best_effort(worksheet_id: int, *, actor=None) -> Document | None:
    """
    Annex generation after QC approval. A failure here is logged and
    swallowed: the approval is already committed and the statement can be
    regenerated later.
    """
    try:
        return generate_annex_xiii(worksheet_id, actor=actor)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Annex XIII generation failed for worksheet %s", worksheet_id)
        return None


# =============================================================================
# INVOICE PDF
# =============================================================================

def build_invoice_payload(invoice: Invoice) -> dict:
    return {
        "lab": get_lab_config().to_dict(),
        "invoice": invoice.to_dict(include_lines=True),
        "dentist": invoice.dentist.to_dict() if invoice.dentist is not None else None,
    }


def resolve_document_path(file_path: str) -> str:
    if os.path.isabs(file_path):
        return file_path
    base = current_app.config.get("DOCUMENTS_DIR") or os.getcwd()
    return os.path.join(base, file_path)


def remove_document_file(file_path: str | None) -> bool:
    """Best-effort removal of a stored artifact. Returns True when a file was deleted."""
    if not file_path:
        return False
    path = resolve_document_path(file_path)
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError:
        current_app.logger.warning("Could not remove document file %s", path, exc_info=True)
        return False


def read_document_bytes(file_path: str | None) -> bytes | None:
    if not file_path:
        return None
    path = resolve_document_path(file_path)
    try:
        with open(path, "rb") as fh:
            return fh.read()
    except OSError:
        current_app.logger.warning("Document file %s not readable", path)
        return None
