"""
Consumption and traceability tests.

Covers:
- consume() as one atomic unit (decrement + WorksheetMaterial + audit)
- Forward (lot -> patients) and reverse (worksheet -> lots) traces
- Expiry and low stock alerts
- Material plans consumed on IN_PRODUCTION entry
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from labtrace.errors import InsufficientStock, InvalidTransition, ValidationFailed
from labtrace.extensions import db
from labtrace.models import AuditLog, MaterialLot, WorksheetMaterial
from labtrace.services import (
    catalog_service,
    material_service,
    order_service,
    qc_service,
    traceability_service,
    worksheet_service,
)
from labtrace.time_utils import utcnow

from conftest import ADMIN, TECHNICIAN, run_in_threads


def _usage_count(worksheet_id=None):
    query = db.session.query(WorksheetMaterial)
    if worksheet_id is not None:
        query = query.filter_by(worksheet_id=worksheet_id)
    return query.count()


def _second_worksheet(dentist, product, patient_name):
    order = order_service.create_order(dentist.id, {"patient_name": patient_name}, actor=ADMIN)
    return worksheet_service.create_worksheet(
        order.id, {"products": [{"product_id": product.id, "quantity": 1}]}, actor=ADMIN
    )


class TestConsume:
    def test_consume_uses_oldest_lot(self, material, worksheet, make_lot):
        l1 = make_lot(material, "L1", 10, arrived_days_ago=30)
        l2 = make_lot(material, "L2", 10, arrived_days_ago=5)

        result = traceability_service.consume(worksheet.id, material.id, 5, actor=TECHNICIAN)

        assert result.lot.id == l1.id
        assert result.remaining_quantity == Decimal("5")
        assert result.lot_depleted is False
        assert db.session.get(MaterialLot, l1.id).quantity_available == Decimal("5")
        assert db.session.get(MaterialLot, l2.id).quantity_available == Decimal("10")
        assert _usage_count(worksheet.id) == 1

    def test_consume_writes_material_assign_audit(self, material, worksheet, make_lot):
        make_lot(material, "L1", 10)

        traceability_service.consume(worksheet.id, material.id, "2.5", actor=TECHNICIAN, notes="Milling")

        entry = db.session.query(AuditLog).filter_by(action="MATERIAL_ASSIGN").one()
        assert entry.entity_type == "WorkSheet"
        assert entry.entity_id == str(worksheet.id)
        assert entry.user_id == TECHNICIAN.user_id
        usage = db.session.query(WorksheetMaterial).one()
        assert usage.notes == "Milling"
        assert usage.quantity_used == Decimal("2.5")

    def test_consuming_everything_depletes_lot(self, material, worksheet, make_lot):
        make_lot(material, "L1", 4)

        result = traceability_service.consume(worksheet.id, material.id, 4, actor=TECHNICIAN)

        assert result.lot_depleted is True
        assert result.lot.status == "DEPLETED"
        assert any("depleted" in w for w in result.warnings)

    def test_depleted_lot_is_skipped_next_time(self, material, worksheet, make_lot):
        make_lot(material, "L1", 4, arrived_days_ago=10)
        l2 = make_lot(material, "L2", 10, arrived_days_ago=1)
        traceability_service.consume(worksheet.id, material.id, 4, actor=TECHNICIAN)

        result = traceability_service.consume(worksheet.id, material.id, 1, actor=TECHNICIAN)

        assert result.lot.id == l2.id

    def test_near_expiry_lot_warns(self, material, worksheet, make_lot):
        make_lot(material, "L1", 10, arrived_days_ago=100, expires_in_days=3)

        result = traceability_service.consume(worksheet.id, material.id, 1, actor=TECHNICIAN)

        assert any("expires" in w for w in result.warnings)

    def test_insufficient_stock_leaves_ledger_untouched(self, material, worksheet, make_lot):
        lot = make_lot(material, "L1", 3)

        with pytest.raises(InsufficientStock):
            traceability_service.consume(worksheet.id, material.id, 5, actor=TECHNICIAN)

        assert db.session.get(MaterialLot, lot.id).quantity_available == Decimal("3")
        assert _usage_count() == 0
        assert db.session.query(AuditLog).filter_by(action="MATERIAL_ASSIGN").count() == 0

    def test_quantity_finer_than_ledger_rejected(self, material, worksheet, make_lot):
        lot = make_lot(material, "L1", 10)

        with pytest.raises(ValidationFailed):
            traceability_service.consume(worksheet.id, material.id, "0.0004", actor=TECHNICIAN)

        assert db.session.get(MaterialLot, lot.id).quantity_available == Decimal("10")
        assert _usage_count() == 0

    def test_smallest_ledger_unit_is_recorded_exactly(self, material, worksheet, make_lot):
        lot = make_lot(material, "L1", 10)

        traceability_service.consume(worksheet.id, material.id, "0.001", actor=TECHNICIAN)

        db.session.expire_all()
        assert db.session.query(WorksheetMaterial).one().quantity_used == Decimal("0.001")
        assert db.session.get(MaterialLot, lot.id).quantity_available == Decimal("9.999")

    def test_consume_rejected_after_production(self, material, worksheet, make_lot):
        make_lot(material, "L1", 10)
        worksheet_service.transition_worksheet(worksheet.id, "IN_PRODUCTION", actor=TECHNICIAN)
        worksheet_service.transition_worksheet(worksheet.id, "QC_PENDING", actor=TECHNICIAN)

        with pytest.raises(InvalidTransition):
            traceability_service.consume(worksheet.id, material.id, 1, actor=TECHNICIAN)

        assert _usage_count() == 0


class TestTraces:
    def test_forward_trace_finds_every_patient(self, dentist, product, material, worksheet, make_lot):
        make_lot(material, "LOT-A", 20)
        other = _second_worksheet(dentist, product, "John Roe")
        traceability_service.consume(worksheet.id, material.id, 2, actor=TECHNICIAN)
        traceability_service.consume(other.id, material.id, 1, actor=TECHNICIAN)

        trace = traceability_service.forward_trace("LOT-A")

        assert trace["summary"]["worksheet_count"] == 2
        assert trace["summary"]["unique_patients"] == 2
        assert Decimal(trace["summary"]["total_quantity_used"]) == Decimal("3")
        assert {u["patient_name"] for u in trace["usages"]} == {"Jane Doe", "John Roe"}
        assert trace["usages"][0]["dentist"]["clinic_name"] == "Smile Clinic"

    def test_forward_trace_includes_recalled_lot(self, material, worksheet, make_lot):
        lot = make_lot(material, "LOT-A", 10)
        traceability_service.consume(worksheet.id, material.id, 2, actor=TECHNICIAN)
        material_service.update_lot(lot.id, {"status": "RECALLED"}, actor=ADMIN, reason="Supplier recall")

        trace = traceability_service.forward_trace("LOT-A")

        assert trace["lots"][0]["status"] == "RECALLED"
        assert len(trace["usages"]) == 1

    def test_forward_trace_for_unused_lot_is_empty(self, material, make_lot):
        make_lot(material, "LOT-A", 10)

        trace = traceability_service.forward_trace("LOT-A")

        assert trace["usages"] == []
        assert trace["summary"]["first_use"] is None

    def test_reverse_trace_lists_consumed_lots(self, material, worksheet, make_lot):
        make_lot(material, "LOT-A", 2, arrived_days_ago=10)
        make_lot(material, "LOT-B", 10, arrived_days_ago=1)
        traceability_service.consume(worksheet.id, material.id, 2, actor=TECHNICIAN)
        traceability_service.consume(worksheet.id, material.id, 1, actor=TECHNICIAN)

        trace = traceability_service.reverse_trace(worksheet.id)

        assert trace["worksheet_number"] == worksheet.worksheet_number
        assert trace["patient_name"] == "Jane Doe"
        assert [m["lot_number"] for m in trace["materials"]] == ["LOT-A", "LOT-B"]
        assert trace["materials"][0]["lot_status"] == "DEPLETED"
        assert trace["materials"][0]["manufacturer"] == "Ivoclar"


class TestAlerts:
    def test_expiry_severity(self, material, make_lot):
        make_lot(material, "SOON", 5, arrived_days_ago=100, expires_in_days=3)
        make_lot(material, "LATER", 5, arrived_days_ago=100, expires_in_days=20)
        make_lot(material, "FAR", 5, arrived_days_ago=100, expires_in_days=60)
        make_lot(material, "GONE", 5, arrived_days_ago=100, expires_in_days=-1)

        alerts = traceability_service.expiring_within(30, now=utcnow() + timedelta(seconds=1))

        assert [(a["lot_number"], a["severity"]) for a in alerts] == [("SOON", "critical"), ("LATER", "warning")]
        assert alerts[0]["days_until_expiry"] == 3

    def test_classify_expiry_boundaries(self):
        assert traceability_service.classify_expiry(6) == "critical"
        assert traceability_service.classify_expiry(7) == "warning"
        assert traceability_service.classify_expiry(29) == "warning"
        assert traceability_service.classify_expiry(30) == "info"

    def test_low_stock_includes_empty_materials(self, material, make_lot):
        empty = material_service.create_material(
            {"code": "PMMA", "type": "ACRYLIC", "name": "PMMA disc", "manufacturer": "Kulzer"},
            actor=ADMIN,
        )
        stocked = material_service.create_material(
            {"code": "WAX-1", "type": "WAX", "name": "Modelling wax", "manufacturer": "Renfert"},
            actor=ADMIN,
        )
        make_lot(material, "L1", 5)
        make_lot(stocked, "W1", 50)

        alerts = traceability_service.low_stock(20)

        assert [a["material_code"] for a in alerts] == [empty.code, material.code]
        assert alerts[0]["percentage_of_threshold"] == "0.00"
        assert alerts[1]["percentage_of_threshold"] == "25.00"


class TestPlannedConsumption:
    def test_plans_consumed_on_entering_production(self, material, worksheet, make_lot):
        lot = make_lot(material, "L1", 10)
        worksheet_service.update_worksheet(
            worksheet.id, {"material_plans": [{"material_id": material.id, "quantity_planned": 4}]}, actor=ADMIN
        )

        worksheet_service.transition_worksheet(worksheet.id, "IN_PRODUCTION", actor=TECHNICIAN)

        assert db.session.get(MaterialLot, lot.id).quantity_available == Decimal("6")
        ws = worksheet_service.get_worksheet(worksheet.id)
        assert ws.manufacture_date is not None
        assert ws.material_plans[0].consumed_at is not None
        assert _usage_count(worksheet.id) == 1

    def test_plan_not_consumed_twice_on_rework(self, material, dentist, make_lot):
        lot = make_lot(material, "L1", 10)
        order = order_service.create_order(dentist.id, actor=ADMIN)
        ws = worksheet_service.create_worksheet(
            order.id, {"material_plans": [{"material_id": material.id, "quantity_planned": 2}]}, actor=ADMIN
        )
        worksheet_service.transition_worksheet(ws.id, "IN_PRODUCTION", actor=TECHNICIAN)
        worksheet_service.transition_worksheet(ws.id, "QC_PENDING", actor=TECHNICIAN)
        qc_service.submit_qc(
            ws.id,
            {"result": "REJECTED", "checklist": {"fit": False}, "action_required": "Re-mill"},
            actor=ADMIN,
        )

        worksheet_service.transition_worksheet(ws.id, "IN_PRODUCTION", actor=TECHNICIAN)

        assert db.session.get(MaterialLot, lot.id).quantity_available == Decimal("8")

    def test_insufficient_plan_blocks_transition(self, material, worksheet, make_lot):
        lot = make_lot(material, "L1", 10)
        worksheet_service.update_worksheet(
            worksheet.id, {"material_plans": [{"material_id": material.id, "quantity_planned": 20}]}, actor=ADMIN
        )

        with pytest.raises(InsufficientStock):
            worksheet_service.transition_worksheet(worksheet.id, "IN_PRODUCTION", actor=TECHNICIAN)

        assert worksheet_service.get_worksheet(worksheet.id).status == "DRAFT"
        assert db.session.get(MaterialLot, lot.id).quantity_available == Decimal("10")
        assert _usage_count() == 0


class TestConcurrentConsumption:
    """Runs against a file database so every thread gets its own connection."""

    def test_parallel_consumes_never_overdraw_a_lot(self, file_app):
        attempts = 5
        with file_app.app_context():
            dentist = catalog_service.create_dentist(
                {"clinic_name": "Race Clinic", "dentist_name": "Dr. Race", "email": "race@clinic.example"},
                actor=ADMIN,
            )
            order = order_service.create_order(dentist.id, {"patient_name": "Jane Doe"}, actor=ADMIN)
            worksheet_id = worksheet_service.create_worksheet(order.id, {}, actor=ADMIN).id
            material_id = material_service.create_material(
                {"code": "ZR-DISC", "type": "ZIRCONIA", "name": "Zirconia disc", "manufacturer": "Ivoclar"},
                actor=ADMIN,
            ).id
            # Covers every attempt but one
            lot_id = material_service.record_arrival(
                material_id, "LOT-RACE", 2 * (attempts - 1), utcnow() + timedelta(days=365), actor=ADMIN
            ).id

        def _consume(_):
            return traceability_service.consume(worksheet_id, material_id, 2, actor=TECHNICIAN).remaining_quantity

        results, errors = run_in_threads(file_app, _consume, range(attempts))

        assert len(results) == attempts - 1
        assert len(errors) == 1
        assert isinstance(errors[0], InsufficientStock)
        with file_app.app_context():
            lot = db.session.get(MaterialLot, lot_id)
            assert lot.quantity_available >= 0
            assert lot.quantity_available == Decimal("0")
            assert lot.status == "DEPLETED"
            assert db.session.query(WorksheetMaterial).filter_by(material_lot_id=lot_id).count() == len(results)
