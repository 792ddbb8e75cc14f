"""
Invoice engine tests.

Covers:
- Amount calculation (ROUND_HALF_UP on the final figures only)
- Aggregating QC_APPROVED worksheets into one invoice per dentist
- Finalization (RAC numbering, worksheets DELIVERED, orders INVOICED)
- Forward-only payment status, cancellation reversal, deletion
- Concurrent finalization never issuing the same number twice
"""

from decimal import Decimal

import pytest

from labtrace.errors import InvalidTransition, NotFound, ValidationFailed
from labtrace.extensions import db, DOCUMENT_GENERATOR_KEY
from labtrace.models import AuditLog, Document, Invoice
from labtrace.services import catalog_service, invoice_service, order_service, worksheet_service
from labtrace.services.document_service import RenderedDocument

from conftest import ADMIN, BILLING, run_in_threads


def _draft(dentist, worksheets=(), **extra):
    payload = {
        "worksheet_ids": [ws.id for ws in worksheets],
        "tax_rate": "22",
        "invoice_date": "2026-03-02",
        **extra,
    }
    return invoice_service.create_invoice(dentist.id, payload, actor=BILLING)


def _manual_line(amount="50.00"):
    return {"description": "Shade consultation", "quantity": 1, "unit_price": amount}


class TestAmounts:
    def test_rounding_applies_to_final_figures_only(self):
        amounts = invoice_service.calculate_invoice_amounts([(3, "33.333")], "22")

        assert amounts.subtotal == Decimal("100.00")
        assert amounts.tax_amount == Decimal("22.00")
        assert amounts.total_amount == Decimal("122.00")

    def test_discount_applied_before_tax(self):
        amounts = invoice_service.calculate_invoice_amounts([(1, "200")], "22", "10")

        assert amounts.discount_amount == Decimal("20.00")
        assert amounts.tax_amount == Decimal("39.60")
        assert amounts.total_amount == Decimal("219.60")

    def test_half_up_rounding(self):
        amounts = invoice_service.calculate_invoice_amounts([(1, "0.125")], "0")

        assert amounts.subtotal == Decimal("0.13")

    def test_empty_invoice_is_zero(self):
        amounts = invoice_service.calculate_invoice_amounts([], "22")

        assert amounts.total_amount == Decimal("0.00")


class TestDraftInvoices:
    def test_aggregates_worksheet_products(self, dentist, approved_worksheet):
        w1 = approved_worksheet(dentist, quantity=2, patient_name="A")
        w2 = approved_worksheet(dentist, quantity=1, patient_name="B")

        invoice = _draft(dentist, [w1, w2])

        assert invoice.is_draft is True
        assert invoice.invoice_number is None
        assert invoice.subtotal == Decimal("300.00")
        assert invoice.tax_amount == Decimal("66.00")
        assert invoice.total_amount == Decimal("366.00")
        assert invoice.worksheet_ids() == [w1.id, w2.id]

    def test_manual_lines_come_first(self, dentist, approved_worksheet):
        ws = approved_worksheet(dentist)

        invoice = _draft(dentist, [ws], line_items=[_manual_line()])

        assert [item.line_type for item in invoice.line_items] == ["manual", "product"]
        assert invoice.subtotal == Decimal("150.00")

    def test_due_date_from_payment_terms(self, dentist):
        invoice = _draft(dentist, line_items=[_manual_line()])

        assert (invoice.due_date - invoice.invoice_date).days == 30

    def test_other_dentists_worksheet_rejected(self, dentist, other_dentist, approved_worksheet):
        foreign = approved_worksheet(other_dentist)

        with pytest.raises(ValidationFailed):
            _draft(dentist, [foreign])
        assert db.session.query(Invoice).count() == 0

    def test_unapproved_worksheet_rejected(self, dentist, worksheet):
        with pytest.raises(InvalidTransition):
            _draft(dentist, [worksheet])

    def test_worksheet_on_open_draft_rejected(self, dentist, approved_worksheet):
        ws = approved_worksheet(dentist)
        _draft(dentist, [ws])

        with pytest.raises(InvalidTransition):
            _draft(dentist, [ws])

    def test_tax_rate_over_hundred_rejected(self, dentist):
        with pytest.raises(ValidationFailed):
            _draft(dentist, line_items=[_manual_line()], tax_rate="120")

    @pytest.mark.parametrize(
        "extra",
        [
            {"line_items": [{"description": "Polish", "quantity": 8, "unit_price": "0.125"}]},
            {"line_items": [{"description": "Polish", "quantity": "1.0005", "unit_price": "10"}]},
            {"line_items": [_manual_line()], "tax_rate": "22.125"},
            {"line_items": [_manual_line()], "discount_rate": "5.005"},
        ],
    )
    def test_amounts_finer_than_stored_rejected(self, dentist, extra):
        with pytest.raises(ValidationFailed):
            _draft(dentist, **extra)

        assert db.session.query(Invoice).count() == 0

    def test_finalized_total_matches_draft(self, dentist):
        draft = _draft(
            dentist,
            line_items=[{"description": "Polish", "quantity": "2.500", "unit_price": "0.130"}],
            tax_rate="0",
        )
        draft_total = draft.total_amount
        db.session.expire_all()

        finalized = invoice_service.finalize_invoice(draft.id, actor=BILLING)

        assert draft_total == Decimal("0.33")
        assert finalized.total_amount == draft_total

    def test_update_draft_recomputes(self, dentist, approved_worksheet):
        ws = approved_worksheet(dentist, quantity=2)
        invoice = _draft(dentist, [ws])

        updated = invoice_service.update_invoice(invoice.id, {"discount_rate": "50"}, actor=BILLING)

        assert updated.discount_amount == Decimal("100.00")
        assert updated.total_amount == Decimal("122.00")
        assert updated.worksheet_ids() == [ws.id]


class TestFinalize:
    def test_finalize_numbers_and_delivers(self, dentist, approved_worksheet):
        ws = approved_worksheet(dentist)
        invoice = _draft(dentist, [ws])

        finalized = invoice_service.finalize_invoice(invoice.id, actor=BILLING)

        assert finalized.invoice_number == "RAC-2026-001"
        assert finalized.payment_reference == "RAC-2026-001"
        assert finalized.payment_status == "FINALIZED"
        assert finalized.is_draft is False
        assert worksheet_service.get_worksheet(ws.id).status == "DELIVERED"
        assert order_service.get_order(ws.order_id).status == "INVOICED"
        assert db.session.query(AuditLog).filter_by(action="INVOICE_GENERATE").count() == 1

    def test_numbers_are_sequential(self, dentist):
        first = _draft(dentist, line_items=[_manual_line()], is_draft=False)
        second = _draft(dentist, line_items=[_manual_line()], is_draft=False)

        assert (first.invoice_number, second.invoice_number) == ("RAC-2026-001", "RAC-2026-002")

    def test_numbering_is_per_invoice_year(self, dentist):
        _draft(dentist, line_items=[_manual_line()], is_draft=False)
        other_year = _draft(dentist, line_items=[_manual_line()], invoice_date="2027-01-04", is_draft=False)

        assert other_year.invoice_number == "RAC-2027-001"

    def test_empty_invoice_cannot_be_finalized(self, dentist):
        invoice = _draft(dentist)

        with pytest.raises(InvalidTransition):
            invoice_service.finalize_invoice(invoice.id, actor=BILLING)
        assert invoice_service.get_invoice(invoice.id).is_draft is True

    def test_finalized_invoice_is_frozen(self, dentist):
        invoice = _draft(dentist, line_items=[_manual_line()], is_draft=False)

        with pytest.raises(InvalidTransition):
            invoice_service.update_invoice(invoice.id, {"notes": "late"}, actor=BILLING)
        with pytest.raises(InvalidTransition):
            invoice_service.finalize_invoice(invoice.id, actor=BILLING)

    def test_invoice_status_lookup(self, dentist, approved_worksheet):
        ws = approved_worksheet(dentist)
        invoice = _draft(dentist, [ws])

        status = invoice_service.check_worksheet_invoice_status(ws.id)
        assert status["is_invoiced"] is False

        invoice_service.finalize_invoice(invoice.id, actor=BILLING)
        status = invoice_service.check_worksheet_invoice_status(ws.id)
        assert status["is_invoiced"] is True
        assert status["invoices"][0]["invoice_number"] == "RAC-2026-001"


class TestPaymentStatus:
    def test_forward_progression(self, dentist):
        invoice = _draft(dentist, line_items=[_manual_line()], is_draft=False)

        invoice_service.mark_invoice_sent(invoice.id, actor=BILLING)
        invoice_service.update_payment_status(invoice.id, "VIEWED", actor=BILLING)
        paid = invoice_service.update_payment_status(invoice.id, "PAID", actor=BILLING, payment_reference="SI56-001")

        assert paid.payment_status == "PAID"
        assert paid.paid_at is not None
        assert paid.payment_reference == "SI56-001"

    @pytest.mark.parametrize("target", ["DRAFT", "CANCELLED", "BOGUS"])
    def test_illegal_targets(self, dentist, target):
        invoice = _draft(dentist, line_items=[_manual_line()], is_draft=False)

        with pytest.raises(InvalidTransition):
            invoice_service.update_payment_status(invoice.id, target, actor=BILLING)

    def test_no_going_backwards(self, dentist):
        invoice = _draft(dentist, line_items=[_manual_line()], is_draft=False)
        invoice_service.update_payment_status(invoice.id, "PAID", actor=BILLING)

        with pytest.raises(InvalidTransition):
            invoice_service.update_payment_status(invoice.id, "SENT", actor=BILLING)

    def test_draft_has_no_payment_progression(self, dentist):
        invoice = _draft(dentist, line_items=[_manual_line()])

        with pytest.raises(InvalidTransition):
            invoice_service.mark_invoice_sent(invoice.id, actor=BILLING)


class TestCancelAndDelete:
    def test_cancel_reverts_worksheets_and_orders(self, dentist, approved_worksheet):
        ws = approved_worksheet(dentist)
        invoice = _draft(dentist, [ws], is_draft=False)

        cancelled = invoice_service.cancel_invoice(invoice.id, actor=ADMIN, reason="Wrong dentist")

        assert cancelled.payment_status == "CANCELLED"
        assert worksheet_service.get_worksheet(ws.id).status == "QC_APPROVED"
        assert order_service.get_order(ws.order_id).status == "QC_APPROVED"

    def test_cancel_twice_is_a_no_op(self, dentist, approved_worksheet):
        ws = approved_worksheet(dentist)
        invoice = _draft(dentist, [ws], is_draft=False)
        invoice_service.cancel_invoice(invoice.id, actor=ADMIN)
        entries = db.session.query(AuditLog).count()

        again = invoice_service.cancel_invoice(invoice.id, actor=ADMIN)

        assert again.payment_status == "CANCELLED"
        assert db.session.query(AuditLog).count() == entries

    def test_cancelled_worksheet_can_be_invoiced_again(self, dentist, approved_worksheet):
        ws = approved_worksheet(dentist)
        first = _draft(dentist, [ws], is_draft=False)
        invoice_service.cancel_invoice(first.id, actor=ADMIN)

        second = _draft(dentist, [ws], is_draft=False)

        assert second.invoice_number == "RAC-2026-002"
        assert worksheet_service.get_worksheet(ws.id).status == "DELIVERED"

    def test_draft_cannot_be_cancelled(self, dentist):
        invoice = _draft(dentist, line_items=[_manual_line()])

        with pytest.raises(InvalidTransition):
            invoice_service.cancel_invoice(invoice.id, actor=ADMIN)

    def test_delete_draft(self, dentist, approved_worksheet):
        ws = approved_worksheet(dentist)
        invoice = _draft(dentist, [ws])

        result = invoice_service.delete_invoice(invoice.id, actor=ADMIN)

        assert result["deleted"] is True
        with pytest.raises(NotFound):
            invoice_service.get_invoice(invoice.id)
        assert worksheet_service.get_worksheet(ws.id).status == "QC_APPROVED"

    def test_numbered_invoice_must_be_cancelled_before_delete(self, dentist):
        invoice = _draft(dentist, line_items=[_manual_line()], is_draft=False)

        with pytest.raises(InvalidTransition):
            invoice_service.delete_invoice(invoice.id, actor=ADMIN)

        invoice_service.cancel_invoice(invoice.id, actor=ADMIN)
        result = invoice_service.delete_invoice(invoice.id, actor=ADMIN)
        assert result["invoice_number"] == "RAC-2026-001"


class FakeGenerator:
    def __init__(self):
        self.payloads = []

    def render_invoice(self, payload):
        self.payloads.append(payload)
        number = payload["invoice"]["invoice_number"]
        return RenderedDocument(file_name=f"{number}.pdf", file_path=f"invoices/{number}.pdf", file_size=2048)

    def render_annex_xiii(self, payload):
        raise AssertionError("not expected")


class TestInvoicePdf:
    def test_pdf_attached_with_retention(self, app, dentist):
        generator = FakeGenerator()
        app.extensions[DOCUMENT_GENERATOR_KEY] = generator
        invoice = _draft(dentist, line_items=[_manual_line()], is_draft=False)

        doc = invoice_service.attach_invoice_pdf(invoice.id, actor=BILLING)

        assert doc.type == "INVOICE"
        assert doc.document_number == "RAC-2026-001"
        assert doc.retention_until.year == doc.generated_at.year + 10
        assert invoice_service.get_invoice(invoice.id).pdf_path == "invoices/RAC-2026-001.pdf"
        assert generator.payloads[0]["dentist"]["clinic_name"] == "Smile Clinic"

    def test_pdf_requires_generator(self, dentist):
        invoice = _draft(dentist, line_items=[_manual_line()], is_draft=False)

        with pytest.raises(ValidationFailed):
            invoice_service.attach_invoice_pdf(invoice.id, actor=BILLING)
        assert db.session.query(Document).count() == 0

    def test_draft_pdf_rejected(self, app, dentist):
        app.extensions[DOCUMENT_GENERATOR_KEY] = FakeGenerator()
        invoice = _draft(dentist, line_items=[_manual_line()])

        with pytest.raises(InvalidTransition):
            invoice_service.attach_invoice_pdf(invoice.id, actor=BILLING)


class TestConcurrentNumbering:
    """Runs against a file database so every thread gets its own connection."""

    def test_parallel_finalization_issues_unique_numbers(self, file_app):
        with file_app.app_context():
            dentist = catalog_service.create_dentist(
                {"clinic_name": "Race Clinic", "dentist_name": "Dr. Race", "email": "race@clinic.example"},
                actor=ADMIN,
            )
            invoice_ids = [_draft(dentist, line_items=[_manual_line()]).id for _ in range(6)]

        def _finalize(invoice_id):
            return invoice_service.finalize_invoice(invoice_id, actor=BILLING).invoice_number

        numbers, errors = run_in_threads(file_app, _finalize, invoice_ids)

        assert errors == []
        assert sorted(numbers) == [f"RAC-2026-{n:03d}" for n in range(1, 7)]

    def test_parallel_order_intake_issues_unique_numbers(self, file_app):
        with file_app.app_context():
            dentist_id = catalog_service.create_dentist(
                {"clinic_name": "Race Clinic", "dentist_name": "Dr. Race", "email": "race@clinic.example"},
                actor=ADMIN,
            ).id

        def _intake(_):
            return order_service.create_order(dentist_id, {"order_date": "2026-05-05T09:00:00Z"}, actor=ADMIN).order_number

        numbers, errors = run_in_threads(file_app, _intake, range(6))

        assert errors == []
        assert sorted(numbers) == [f"26{n:03d}" for n in range(1, 7)]
