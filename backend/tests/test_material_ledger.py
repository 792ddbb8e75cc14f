"""
Material lot ledger tests.

Covers:
- Stock arrival and lot uniqueness per material
- FIFO selection (oldest eligible lot, no multi-lot split)
- The single delete gate (ComplianceViolation once traced)
- Admin lot corrections and expiry sweeps
"""

from decimal import Decimal

import pytest

from labtrace.errors import ComplianceViolation, DuplicateCode, DuplicateLot, InsufficientStock, ValidationFailed
from labtrace.models import AuditLog, MaterialLot
from labtrace.extensions import db
from labtrace.services import material_service, traceability_service, worksheet_service

from conftest import ADMIN, TECHNICIAN


class TestStockArrival:
    def test_arrival_creates_available_lot(self, material):
        lot = material_service.record_arrival(material.id, "LOT-A", "12.5", "2099-01-01", actor=ADMIN)

        assert lot.status == "AVAILABLE"
        assert lot.quantity_received == Decimal("12.5")
        assert lot.quantity_available == lot.quantity_received
        assert db.session.query(AuditLog).filter_by(entity_type="MaterialLot", action="CREATE").count() == 1

    def test_duplicate_lot_for_same_material_rejected(self, material):
        material_service.record_arrival(material.id, "LOT-A", 10, actor=ADMIN)

        with pytest.raises(DuplicateLot):
            material_service.record_arrival(material.id, "LOT-A", 5, actor=ADMIN)

    def test_same_lot_number_allowed_for_other_material(self, material):
        other = material_service.create_material(
            {"code": "CO-CR", "type": "METAL", "name": "Co-Cr alloy", "manufacturer": "Dentaurum"},
            actor=ADMIN,
        )
        material_service.record_arrival(material.id, "LOT-A", 10, actor=ADMIN)
        lot = material_service.record_arrival(other.id, "LOT-A", 10, actor=ADMIN)

        assert lot.material_id == other.id

    @pytest.mark.parametrize("quantity", [0, -1, "abc"])
    def test_non_positive_quantity_rejected(self, material, quantity):
        with pytest.raises(ValidationFailed):
            material_service.record_arrival(material.id, "LOT-A", quantity, actor=ADMIN)

    def test_quantity_beyond_three_decimals_rejected(self, material):
        with pytest.raises(ValidationFailed):
            material_service.record_arrival(material.id, "LOT-A", "10.0005", actor=ADMIN)

        assert db.session.query(MaterialLot).count() == 0

    def test_trailing_zeros_are_not_extra_precision(self, material):
        lot = material_service.record_arrival(material.id, "LOT-A", "10.50000", actor=ADMIN)

        db.session.expire_all()
        assert db.session.get(MaterialLot, lot.id).quantity_received == Decimal("10.5")

    def test_expiry_before_arrival_rejected(self, material):
        with pytest.raises(ValidationFailed):
            material_service.record_arrival(
                material.id, "LOT-A", 10, "2025-01-01", arrival_date="2025-02-01", actor=ADMIN
            )

    def test_duplicate_material_code_rejected(self, material):
        with pytest.raises(DuplicateCode):
            material_service.create_material(
                {"code": "zr-disc", "type": "ZIRCONIA", "name": "Copy", "manufacturer": "Other"},
                actor=ADMIN,
            )


class TestFifoSelection:
    def test_oldest_lot_selected(self, material):
        material_service.record_arrival(material.id, "L2", 10, arrival_date="2025-02-01", actor=ADMIN)
        material_service.record_arrival(material.id, "L1", 10, arrival_date="2025-01-01", actor=ADMIN)

        selection = material_service.select_fifo(material.id, 5)

        assert selection.lot.lot_number == "L1"
        assert selection.quantity_available == Decimal("10")

    def test_no_multi_lot_split(self, material):
        material_service.record_arrival(material.id, "L1", 3, arrival_date="2025-01-01", actor=ADMIN)
        material_service.record_arrival(material.id, "L2", 50, arrival_date="2025-02-01", actor=ADMIN)

        with pytest.raises(InsufficientStock) as exc:
            material_service.select_fifo(material.id, 5)

        assert exc.value.available == Decimal("3")
        assert exc.value.needed == Decimal("5")
        assert exc.value.material_code == "ZR-DISC"

    def test_expired_and_recalled_lots_skipped(self, material, make_lot):
        recalled = make_lot(material, "OLD", 10, arrived_days_ago=400, expires_in_days=None)
        expired_by_date = make_lot(material, "PAST", 10, arrived_days_ago=300, expires_in_days=-1)
        material_service.update_lot(recalled.id, {"status": "RECALLED"}, actor=ADMIN)
        fresh = make_lot(material, "FRESH", 10, arrived_days_ago=1)

        selection = material_service.select_fifo(material.id, 2)

        assert expired_by_date.status == "AVAILABLE"
        assert selection.lot.id == fresh.id

    def test_no_stock_at_all(self, material):
        with pytest.raises(InsufficientStock):
            material_service.select_fifo(material.id, 1)


class TestDeleteGate:
    def test_unused_lot_and_material_can_be_deleted(self, material, make_lot):
        lot = make_lot(material, "LOT-A", 10)
        result = material_service.delete_lot(lot.id, actor=ADMIN)
        assert result["lot_number"] == "LOT-A"

        make_lot(material, "LOT-B", 10)
        result = material_service.delete_material(material.id, actor=ADMIN)
        assert result["lots_deleted"] == 1

    def test_traced_lot_and_material_cannot_be_deleted(self, material, make_lot, worksheet):
        lot = make_lot(material, "LOT-A", 10)
        traceability_service.consume(worksheet.id, material.id, 2, actor=TECHNICIAN)

        with pytest.raises(ComplianceViolation):
            material_service.delete_lot(lot.id, actor=ADMIN)
        with pytest.raises(ComplianceViolation):
            material_service.delete_material(material.id, actor=ADMIN)

        assert db.session.get(MaterialLot, lot.id) is not None

    def test_identity_frozen_once_traced(self, material, make_lot, worksheet):
        make_lot(material, "LOT-A", 10)
        traceability_service.consume(worksheet.id, material.id, 1, actor=TECHNICIAN)

        with pytest.raises(ComplianceViolation):
            material_service.update_material(material.id, {"manufacturer": "Someone else"}, actor=ADMIN)

        updated = material_service.update_material(material.id, {"description": "Store dry"}, actor=ADMIN)
        assert updated.description == "Store dry"

    def test_planned_material_cannot_be_deleted(self, material, worksheet):
        worksheet_service.update_worksheet(
            worksheet.id, {"material_plans": [{"material_id": material.id, "quantity_planned": 1}]}, actor=ADMIN
        )

        with pytest.raises(ComplianceViolation):
            material_service.delete_material(material.id, actor=ADMIN)


class TestLotCorrections:
    def test_quantity_cannot_exceed_received(self, material, make_lot):
        lot = make_lot(material, "LOT-A", 10)

        with pytest.raises(ValidationFailed):
            material_service.update_lot(lot.id, {"quantity_available": 11}, actor=ADMIN)

    def test_correction_beyond_three_decimals_rejected(self, material, make_lot):
        lot = make_lot(material, "LOT-A", 10)

        with pytest.raises(ValidationFailed):
            material_service.update_lot(lot.id, {"quantity_available": "9.9999"}, actor=ADMIN)

        assert db.session.get(MaterialLot, lot.id).quantity_available == Decimal("10")

    def test_zero_quantity_correction_depletes_lot(self, material, make_lot):
        lot = make_lot(material, "LOT-A", 10)

        corrected = material_service.update_lot(lot.id, {"quantity_available": 0}, actor=ADMIN, reason="Breakage")

        assert corrected.status == "DEPLETED"
        entry = db.session.query(AuditLog).filter_by(entity_type="MaterialLot", action="UPDATE").one()
        assert entry.reason == "Breakage"

    def test_unknown_status_rejected(self, material, make_lot):
        lot = make_lot(material, "LOT-A", 10)

        with pytest.raises(ValidationFailed):
            material_service.update_lot(lot.id, {"status": "LOST"}, actor=ADMIN)

    def test_mark_expired_lots(self, material, make_lot):
        past = make_lot(material, "PAST", 10, arrived_days_ago=100, expires_in_days=-2)
        current = make_lot(material, "CURRENT", 10)

        flipped = material_service.mark_expired_lots(actor=ADMIN)

        assert [lot.id for lot in flipped] == [past.id]
        assert db.session.get(MaterialLot, past.id).status == "EXPIRED"
        assert db.session.get(MaterialLot, current.id).status == "AVAILABLE"
