# Overview: Service-layer operations for invoice emails; the sender port, the HTTP relay sender and EmailLog bookkeeping.

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Protocol

import httpx
from flask import current_app

from ..extensions import EMAIL_SENDER_KEY, db
from ..errors import InvalidTransition, NotFound, ValidationFailed
from ..models import EmailLog, Invoice
from ..validation import clean_text
from .audit_service import record_audit
from .concurrency import begin_serialized, lock_for_update, run_with_retry
from .document_service import build_invoice_payload, read_document_bytes
from labtrace.time_utils import utcnow


SENDABLE_INVOICE_STATUSES = {"FINALIZED", "SENT", "VIEWED", "PAID"}


@dataclass
class EmailMessage:
    recipient: str
    subject: str
    body: str
    attachment_name: str | None = None
    attachment: bytes | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class SendResult:
    ok: bool
    error: str | None = None
    provider_id: str | None = None


class EmailSender(Protocol):
    def send(self, message: EmailMessage) -> SendResult:
        ...


class HttpRelayEmailSender:
    """
    Posts messages as JSON to an outbound mail relay.

    Relay contract: POST {url} with recipient/subject/body and an optional
    base64 attachment; any 2xx means accepted.
    """

    def __init__(self, url: str, *, timeout: float = 10.0, client: httpx.Client | None = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    def _post(self, body: dict) -> httpx.Response:
        if self._client is not None:
            return self._client.post(self.url, json=body, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.url, json=body)

    def send(self, message: EmailMessage) -> SendResult:
        body = {
            "to": message.recipient,
            "subject": message.subject,
            "text": message.body,
            "metadata": message.metadata,
        }
        if message.attachment is not None:
            body["attachments"] = [{
                "filename": message.attachment_name or "invoice.pdf",
                "content_type": "application/pdf",
                "content": base64.b64encode(message.attachment).decode("ascii"),
            }]
        try:
            response = self._post(body)
        except httpx.HTTPError as exc:
            return SendResult(ok=False, error=f"Relay unreachable: {exc}")
        if response.is_success:
            provider_id = None
            try:
                provider_id = response.json().get("id")
            except ValueError:
                pass
            return SendResult(ok=True, provider_id=provider_id)
        return SendResult(ok=False, error=f"Relay responded {response.status_code}: {response.text[:200]}")


def get_email_sender() -> EmailSender | None:
    return current_app.extensions.get(EMAIL_SENDER_KEY)


def build_invoice_message(invoice: Invoice, *, recipient: str | None = None, subject: str | None = None, body: str | None = None) -> EmailMessage:
    payload = build_invoice_payload(invoice)
    lab_name = payload["lab"]["lab_name"]
    dentist = invoice.dentist
    subject = subject or f"Invoice {invoice.invoice_number} from {lab_name}"
    body = body or (
        f"Dear {dentist.dentist_name},\n\n"
        f"please find attached invoice {invoice.invoice_number} "
        f"for {invoice.total_amount} EUR, due {invoice.due_date.isoformat()}.\n\n"
        f"{lab_name}"
    )
    return EmailMessage(
        recipient=recipient or dentist.email,
        subject=subject,
        body=body,
        attachment_name=f"{invoice.invoice_number}.pdf",
        attachment=read_document_bytes(invoice.pdf_path),
        metadata={"invoice_id": invoice.id, "invoice_number": invoice.invoice_number},
    )


def list_email_logs(invoice_id: int) -> list[EmailLog]:
    return (
        db.session.query(EmailLog)
        .filter(EmailLog.invoice_id == invoice_id)
        .order_by(EmailLog.created_at.desc(), EmailLog.id.desc())
        .all()
    )


def send_invoice_email(
    invoice_id: int,
    *,
    actor=None,
    recipient: str | None = None,
    subject: str | None = None,
    body: str | None = None,
) -> EmailLog:
    """
    Email a numbered invoice through the configured sender.

    Flow:
        1. EmailLog PENDING is committed before the send
        2. sender.send() outside any DB transaction
        3. EmailLog -> SENT / FAILED; on success FINALIZED -> SENT + audit EMAIL_SEND

    A delivery failure is recorded, not raised.

    Raises:
        NotFound: invoice missing
        InvalidTransition: invoice draft or cancelled
        ValidationFailed: no sender configured / bad recipient
    """
    sender = get_email_sender()
    if sender is None:
        raise ValidationFailed("No email sender configured (set EMAIL_RELAY_URL)")
    recipient = clean_text(recipient, "recipient", max_length=255)
    if recipient is not None and "@" not in recipient:
        raise ValidationFailed("recipient must be a valid address")

    def _prepare() -> tuple[int, EmailMessage]:
        begin_serialized()
        invoice = db.session.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFound(f"Invoice {invoice_id} not found")
        if invoice.is_draft or invoice.payment_status not in SENDABLE_INVOICE_STATUSES:
            raise InvalidTransition(
                f"Invoice {invoice.invoice_number or invoice.id} cannot be emailed in status {invoice.payment_status}"
            )
        message = build_invoice_message(invoice, recipient=recipient, subject=subject, body=body)
        log = EmailLog(
            invoice_id=invoice.id,
            sent_by=actor.user_id if actor is not None else None,
            recipient=message.recipient,
            subject=message.subject,
            status="PENDING",
        )
        db.session.add(log)
        db.session.commit()
        return log.id, message

    log_id, message = run_with_retry(_prepare)

    try:
        result = sender.send(message)
    except Exception as exc:
        current_app.logger.exception("Email sender raised for invoice %s", invoice_id)
        result = SendResult(ok=False, error=str(exc) or exc.__class__.__name__)

    def _finish() -> EmailLog:
        begin_serialized()
        log = db.session.get(EmailLog, log_id)
        now = utcnow()
        if result.ok:
            log.status = "SENT"
            log.sent_at = now
            invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
            old_status = invoice.payment_status
            if invoice.payment_status == "FINALIZED":
                invoice.payment_status = "SENT"
            invoice.sent_at = now
            record_audit(
                actor=actor,
                action="EMAIL_SEND",
                entity_type="Invoice",
                entity_id=invoice.id,
                old_values={"payment_status": old_status},
                new_values={
                    "payment_status": invoice.payment_status,
                    "recipient": log.recipient,
                    "email_log_id": log.id,
                },
            )
        else:
            log.status = "FAILED"
            log.failed_at = now
            log.error_message = result.error
        db.session.commit()
        return log

    log = run_with_retry(_finish)
    if log.status == "FAILED":
        current_app.logger.warning("Invoice %s email to %s failed: %s", invoice_id, log.recipient, log.error_message)
    else:
        current_app.logger.info("Invoice %s emailed to %s", invoice_id, log.recipient)
    return log
