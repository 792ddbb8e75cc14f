"""
Quality control tests.

Covers:
- Checklist rules per QC result
- Worksheet/order transitions driven by QC, including rework
- Auto-delivery for dentists that skip invoicing
- Annex XIII generation after approval, and tolerance of its failure
"""

import pytest

from labtrace.errors import Forbidden, InvalidTransition, ValidationFailed
from labtrace.extensions import db, DOCUMENT_GENERATOR_KEY
from labtrace.models import AuditLog, Document, QualityControl
from labtrace.services import (
    catalog_service,
    document_service,
    order_service,
    qc_service,
    traceability_service,
    worksheet_service,
)
from labtrace.services.document_service import RenderedDocument

from conftest import ADMIN, ALL_CHECKS, QC_INSPECTOR, TECHNICIAN


class AnnexGenerator:
    def __init__(self, fail=False):
        self.fail = fail
        self.payloads = []

    def render_annex_xiii(self, payload):
        if self.fail:
            raise RuntimeError("renderer offline")
        self.payloads.append(payload)
        number = payload["document_number"]
        return RenderedDocument(file_name=f"{number}.pdf", file_path=f"annex/{number}.pdf", file_size=1024)

    def render_invoice(self, payload):
        raise AssertionError("not expected")


@pytest.fixture
def pending(worksheet):
    worksheet_service.transition_worksheet(worksheet.id, "IN_PRODUCTION", actor=TECHNICIAN)
    return worksheet_service.transition_worksheet(worksheet.id, "QC_PENDING", actor=TECHNICIAN)


def _checks(**failed):
    return {**ALL_CHECKS, **failed}


class TestChecklistRules:
    def test_full_approval(self, pending):
        qc = qc_service.submit_qc(pending.id, {"result": "APPROVED", "checklist": ALL_CHECKS}, actor=QC_INSPECTOR)

        assert qc.result == "APPROVED"
        assert qc.inspector_id == QC_INSPECTOR.user_id
        assert worksheet_service.get_worksheet(pending.id).status == "QC_APPROVED"
        assert order_service.get_order(pending.order_id).status == "QC_APPROVED"

    def test_approval_needs_every_check(self, pending):
        with pytest.raises(ValidationFailed):
            qc_service.submit_qc(
                pending.id, {"result": "APPROVED", "checklist": _checks(shade=False)}, actor=QC_INSPECTOR
            )

        assert worksheet_service.get_worksheet(pending.id).status == "QC_PENDING"

    def test_conditional_needs_notes(self, pending):
        payload = {"result": "CONDITIONAL", "checklist": _checks(shade=False)}

        with pytest.raises(ValidationFailed):
            qc_service.submit_qc(pending.id, payload, actor=QC_INSPECTOR)

        qc = qc_service.submit_qc(pending.id, {**payload, "notes": "Shade slightly light"}, actor=QC_INSPECTOR)
        assert qc.result == "CONDITIONAL"
        assert worksheet_service.get_worksheet(pending.id).status == "QC_APPROVED"

    def test_conditional_allows_only_one_failure(self, pending):
        with pytest.raises(ValidationFailed):
            qc_service.submit_qc(
                pending.id,
                {"result": "CONDITIONAL", "checklist": _checks(shade=False, fit=False), "notes": "Two issues"},
                actor=QC_INSPECTOR,
            )

    def test_rejection_needs_failed_check_and_action(self, pending):
        with pytest.raises(ValidationFailed):
            qc_service.submit_qc(
                pending.id, {"result": "REJECTED", "checklist": ALL_CHECKS, "action_required": "Redo"}, actor=QC_INSPECTOR
            )
        with pytest.raises(ValidationFailed):
            qc_service.submit_qc(
                pending.id, {"result": "REJECTED", "checklist": _checks(fit=False)}, actor=QC_INSPECTOR
            )

    def test_checklist_values_must_be_booleans(self, pending):
        with pytest.raises(ValidationFailed):
            qc_service.submit_qc(
                pending.id, {"result": "APPROVED", "checklist": _checks(fit="yes")}, actor=QC_INSPECTOR
            )

    def test_technician_cannot_record_qc(self, pending):
        with pytest.raises(Forbidden):
            qc_service.submit_qc(pending.id, {"result": "APPROVED", "checklist": ALL_CHECKS}, actor=TECHNICIAN)

    def test_qc_requires_pending_worksheet(self, worksheet):
        with pytest.raises(InvalidTransition):
            qc_service.submit_qc(worksheet.id, {"result": "APPROVED", "checklist": ALL_CHECKS}, actor=QC_INSPECTOR)


class TestRework:
    def test_rejection_sends_work_back(self, pending):
        qc_service.submit_qc(
            pending.id,
            {"result": "REJECTED", "checklist": _checks(margins=False), "action_required": "Re-seat margins"},
            actor=QC_INSPECTOR,
        )

        assert worksheet_service.get_worksheet(pending.id).status == "QC_REJECTED"
        assert order_service.get_order(pending.order_id).status == "IN_PRODUCTION"
        assert db.session.query(AuditLog).filter_by(action="QC_REJECT").count() == 1

    def test_rework_then_approval_updates_single_record(self, pending):
        qc_service.submit_qc(
            pending.id,
            {"result": "REJECTED", "checklist": _checks(margins=False), "action_required": "Re-seat margins"},
            actor=QC_INSPECTOR,
        )
        worksheet_service.transition_worksheet(pending.id, "IN_PRODUCTION", actor=TECHNICIAN)
        worksheet_service.transition_worksheet(pending.id, "QC_PENDING", actor=TECHNICIAN)

        qc_service.submit_qc(pending.id, {"result": "APPROVED", "checklist": ALL_CHECKS}, actor=ADMIN)

        records = db.session.query(QualityControl).filter_by(worksheet_id=pending.id).all()
        assert len(records) == 1
        assert records[0].result == "APPROVED"
        assert records[0].action_required is None
        assert qc_service.get_qc(pending.id).margins is True


class TestAutoDelivery:
    def test_dentist_without_invoicing_gets_delivered(self, approved_worksheet):
        dentist = catalog_service.create_dentist(
            {
                "clinic_name": "Public Clinic",
                "dentist_name": "Dr. Horvat",
                "email": "horvat@public.example",
                "requires_invoicing": False,
            },
            actor=ADMIN,
        )

        ws = approved_worksheet(dentist)

        assert ws.status == "DELIVERED"
        assert ws.completed_at is not None
        assert order_service.get_order(ws.order_id).status == "DELIVERED"


class TestAnnexXIII:
    def test_annex_generated_on_approval(self, app, pending, material, make_lot):
        generator = AnnexGenerator()
        app.extensions[DOCUMENT_GENERATOR_KEY] = generator
        make_lot(material, "LOT-A", 10)
        # Rework path so material can still be consumed before approval
        qc_service.submit_qc(
            pending.id,
            {"result": "REJECTED", "checklist": _checks(fit=False), "action_required": "Adjust fit"},
            actor=QC_INSPECTOR,
        )
        worksheet_service.transition_worksheet(pending.id, "IN_PRODUCTION", actor=TECHNICIAN)
        traceability_service.consume(pending.id, material.id, 3, actor=TECHNICIAN)
        worksheet_service.transition_worksheet(pending.id, "QC_PENDING", actor=TECHNICIAN)

        qc_service.submit_qc(pending.id, {"result": "APPROVED", "checklist": ALL_CHECKS}, actor=QC_INSPECTOR)

        annex = document_service.find_annex(pending.id)
        assert annex.document_number == f"MDR-{pending.worksheet_number}"
        assert annex.retention_until.year == annex.generated_at.year + 15
        payload = generator.payloads[0]
        assert payload["patient_name"] == "Jane Doe"
        assert [m["lot_number"] for m in payload["materials"]] == ["LOT-A"]
        assert payload["quality_control"]["result"] == "APPROVED"

    def test_annex_generated_once(self, app, pending):
        generator = AnnexGenerator()
        app.extensions[DOCUMENT_GENERATOR_KEY] = generator
        qc_service.submit_qc(pending.id, {"result": "APPROVED", "checklist": ALL_CHECKS}, actor=QC_INSPECTOR)

        again = document_service.generate_annex_xiii(pending.id, actor=ADMIN)

        assert again.id == document_service.find_annex(pending.id).id
        assert len(generator.payloads) == 1

    def test_renderer_failure_does_not_undo_approval(self, app, pending):
        app.extensions[DOCUMENT_GENERATOR_KEY] = AnnexGenerator(fail=True)

        qc = qc_service.submit_qc(pending.id, {"result": "APPROVED", "checklist": ALL_CHECKS}, actor=QC_INSPECTOR)

        assert qc.result == "APPROVED"
        assert worksheet_service.get_worksheet(pending.id).status == "QC_APPROVED"
        assert db.session.query(Document).count() == 0

    def test_no_generator_skips_annex(self, pending):
        qc_service.submit_qc(pending.id, {"result": "APPROVED", "checklist": ALL_CHECKS}, actor=QC_INSPECTOR)

        assert document_service.find_annex(pending.id) is None

    def test_rejection_produces_no_annex(self, app, pending):
        generator = AnnexGenerator()
        app.extensions[DOCUMENT_GENERATOR_KEY] = generator

        qc_service.submit_qc(
            pending.id,
            {"result": "REJECTED", "checklist": _checks(fit=False), "action_required": "Adjust fit"},
            actor=QC_INSPECTOR,
        )

        assert generator.payloads == []
