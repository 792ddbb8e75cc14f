"""
Authorization tests for the LabTrace API.

Verifies:
- Requests without gateway identity headers return 401
- Unknown roles return 401
- Roles lacking a capability get 403 with the capability named
- Per-state role gates surface as 403 through the API
- Allowed roles reach the service layer
"""

import pytest

from labtrace.services import material_service


# =============================================================================
# UNAUTHENTICATED ACCESS - 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without identity headers."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("GET", "/api/worksheets"),
            ("POST", "/api/worksheets/1/transition"),
            ("POST", "/api/worksheets/1/qc"),
            ("GET", "/api/materials"),
            ("POST", "/api/materials/consume"),
            ("GET", "/api/materials/trace/LOT-A"),
            ("GET", "/api/invoices"),
            ("POST", "/api/invoices/1/finalize"),
            ("GET", "/api/audit"),
            ("GET", "/api/lab-config"),
        ],
    )
    def test_requires_identity(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_role_rejected(self, client, db_session, headers):
        resp = client.get("/api/orders", headers=headers(role="RECEPTIONIST"))
        assert resp.status_code == 401

    def test_non_numeric_user_rejected(self, client, db_session):
        resp = client.get("/api/orders", headers={"X-User-Id": "abc", "X-User-Role": "ADMIN"})
        assert resp.status_code == 401

    def test_health_is_public(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["checks"]["database"]["status"] == "healthy"
        assert "lot_ledger" in body["checks"]


# =============================================================================
# CAPABILITY GATES - 403
# =============================================================================


class TestCapabilityGates:
    @pytest.mark.parametrize(
        "role,method,path",
        [
            ("TECHNICIAN", "GET", "/api/invoices"),
            ("TECHNICIAN", "GET", "/api/audit"),
            ("TECHNICIAN", "POST", "/api/worksheets/1/qc"),
            ("QC_INSPECTOR", "POST", "/api/materials/consume"),
            ("QC_INSPECTOR", "POST", "/api/orders"),
            ("INVOICING", "GET", "/api/materials"),
            ("INVOICING", "POST", "/api/worksheets/1/void"),
            ("INVOICING", "PUT", "/api/lab-config"),
        ],
    )
    def test_role_lacks_capability(self, client, db_session, headers, role, method, path):
        resp = getattr(client, method.lower())(path, headers=headers(role=role, user_id=7), json={})
        assert resp.status_code == 403
        assert resp.get_json()["required_capability"]

    def test_lot_correction_is_admin_only(self, client, material, make_lot, headers):
        lot = make_lot(material, "LOT-A", 10)

        resp = client.patch(
            f"/api/materials/lots/{lot.id}", headers=headers(role="TECHNICIAN"), json={"status": "RECALLED"}
        )

        assert resp.status_code == 403
        assert resp.get_json()["required_capability"] == "CORRECT_LOTS"


# =============================================================================
# ALLOWED ROLES
# =============================================================================


class TestAllowedRoles:
    def test_technician_creates_order(self, client, dentist, headers):
        resp = client.post(
            "/api/orders",
            headers=headers(role="TECHNICIAN", user_id=2),
            json={"dentist_id": dentist.id, "patient_name": "Jane Doe"},
        )

        assert resp.status_code == 201
        assert resp.get_json()["order"]["status"] == "PENDING"

    def test_state_gate_surfaces_as_403(self, client, worksheet, headers):
        resp = client.post(
            f"/api/worksheets/{worksheet.id}/transition",
            headers=headers(role="INVOICING", user_id=4),
            json={"to_status": "IN_PRODUCTION"},
        )

        assert resp.status_code == 403

    def test_insufficient_stock_reports_shortfall(self, client, worksheet, material, make_lot, headers):
        make_lot(material, "LOT-A", 2)
        material_id = material.id

        resp = client.post(
            "/api/materials/consume",
            headers=headers(role="TECHNICIAN", user_id=2),
            json={"worksheet_id": worksheet.id, "material_id": material_id, "quantity": "5"},
        )

        assert resp.status_code == 409
        body = resp.get_json()
        assert body["type"] == "InsufficientStock"
        assert body["material_code"] == "ZR-DISC"
        assert material_service.select_fifo(material_id, 2).lot.lot_number == "LOT-A"

    def test_admin_reads_audit_log(self, client, dentist, headers):
        resp = client.get("/api/audit?entity_type=Dentist", headers=headers())

        assert resp.status_code == 200
        assert resp.get_json()["total"] == 1


# =============================================================================
# CORS
# =============================================================================


class TestCors:
    def test_unlisted_origin_gets_no_cors_headers(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "CORS_ORIGINS", [])

        resp = client.get("/health", headers={"Origin": "http://localhost:5173"})

        assert "Access-Control-Allow-Origin" not in resp.headers

    def test_configured_origin_echoed(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "CORS_ORIGINS", ["https://portal.lab.example"])

        allowed = client.get("/health", headers={"Origin": "https://portal.lab.example"})
        other = client.get("/health", headers={"Origin": "https://elsewhere.example"})

        assert allowed.headers["Access-Control-Allow-Origin"] == "https://portal.lab.example"
        assert "Access-Control-Allow-Origin" not in other.headers
