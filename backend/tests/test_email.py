"""
Invoice email tests.

The relay is replaced by an httpx.MockTransport so no network is touched.
"""

import json

import httpx
import pytest

from labtrace.errors import InvalidTransition, ValidationFailed
from labtrace.extensions import db, EMAIL_SENDER_KEY
from labtrace.models import AuditLog
from labtrace.services import email_service, invoice_service
from labtrace.services.email_service import EmailMessage, HttpRelayEmailSender

from conftest import BILLING


RELAY_URL = "https://relay.example/v1/messages"


def _relay(handler):
    return HttpRelayEmailSender(RELAY_URL, client=httpx.Client(transport=httpx.MockTransport(handler)))


@pytest.fixture
def finalized(dentist):
    return invoice_service.create_invoice(
        dentist.id,
        {
            "line_items": [{"description": "Zirconia crown", "quantity": 1, "unit_price": "100.00"}],
            "tax_rate": "22",
            "invoice_date": "2026-03-02",
            "is_draft": False,
        },
        actor=BILLING,
    )


class TestHttpRelaySender:
    def test_posts_json_and_reads_provider_id(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(202, json={"id": "msg-42"})

        result = _relay(handler).send(
            EmailMessage(
                recipient="novak@smile.example",
                subject="Invoice",
                body="Hello",
                attachment_name="RAC-2026-001.pdf",
                attachment=b"%PDF-1.4",
            )
        )

        assert result.ok is True
        assert result.provider_id == "msg-42"
        assert seen["url"] == RELAY_URL
        assert seen["body"]["to"] == "novak@smile.example"
        assert seen["body"]["attachments"][0]["filename"] == "RAC-2026-001.pdf"

    def test_error_status_is_a_failed_result(self):
        result = _relay(lambda request: httpx.Response(500, text="boom")).send(
            EmailMessage(recipient="a@b.example", subject="s", body="b")
        )

        assert result.ok is False
        assert "500" in result.error

    def test_transport_error_is_a_failed_result(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = _relay(handler).send(EmailMessage(recipient="a@b.example", subject="s", body="b"))

        assert result.ok is False
        assert "unreachable" in result.error


class TestSendInvoiceEmail:
    def test_successful_send_marks_invoice_sent(self, app, finalized):
        app.extensions[EMAIL_SENDER_KEY] = _relay(lambda request: httpx.Response(200, json={"id": "m1"}))

        log = email_service.send_invoice_email(finalized.id, actor=BILLING)

        assert log.status == "SENT"
        assert log.recipient == "novak@smile.example"
        assert "RAC-2026-001" in log.subject
        assert invoice_service.get_invoice(finalized.id).payment_status == "SENT"
        assert db.session.query(AuditLog).filter_by(action="EMAIL_SEND").count() == 1

    def test_relay_failure_is_recorded_not_raised(self, app, finalized):
        app.extensions[EMAIL_SENDER_KEY] = _relay(lambda request: httpx.Response(503, text="busy"))

        log = email_service.send_invoice_email(finalized.id, actor=BILLING, recipient="billing@smile.example")

        assert log.status == "FAILED"
        assert "503" in log.error_message
        assert invoice_service.get_invoice(finalized.id).payment_status == "FINALIZED"
        assert [entry.id for entry in email_service.list_email_logs(finalized.id)] == [log.id]

    def test_raising_sender_is_recorded_as_failure(self, app, finalized):
        class BrokenSender:
            def send(self, message):
                raise RuntimeError("smtp down")

        app.extensions[EMAIL_SENDER_KEY] = BrokenSender()

        log = email_service.send_invoice_email(finalized.id, actor=BILLING)

        assert log.status == "FAILED"
        assert log.error_message == "smtp down"

    def test_no_sender_configured(self, finalized):
        with pytest.raises(ValidationFailed):
            email_service.send_invoice_email(finalized.id, actor=BILLING)

    def test_bad_recipient_rejected(self, app, finalized):
        app.extensions[EMAIL_SENDER_KEY] = _relay(lambda request: httpx.Response(200))

        with pytest.raises(ValidationFailed):
            email_service.send_invoice_email(finalized.id, actor=BILLING, recipient="not-an-address")

    def test_draft_cannot_be_emailed(self, app, dentist):
        app.extensions[EMAIL_SENDER_KEY] = _relay(lambda request: httpx.Response(200))
        draft = invoice_service.create_invoice(
            dentist.id, {"line_items": [{"description": "Repair", "unit_price": "20"}]}, actor=BILLING
        )

        with pytest.raises(InvalidTransition):
            email_service.send_invoice_email(draft.id, actor=BILLING)
