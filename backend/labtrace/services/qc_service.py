# Overview: Service-layer operations for quality control; checklist validation, QC upsert and the resulting worksheet/order transitions.

"""
LabTrace QC Submission

Result rules (checklist = aesthetics, fit, occlusion, shade, margins):

    APPROVED      all 5 true
    CONDITIONAL   >= 4 true AND notes
    REJECTED      >= 1 false AND action_required

APPROVED / CONDITIONAL -> worksheet QC_APPROVED (order QC_APPROVED)
REJECTED               -> worksheet QC_REJECTED (order IN_PRODUCTION)

Dentists with requires_invoicing = False skip billing: an approved
worksheet goes straight on to DELIVERED in the same transaction.

The Annex XIII statement is generated after the commit. Its failure never
undoes an approval.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransition, NotFound, ValidationFailed
from ..models import QualityControl, WorkSheet
from ..validation import clean_text
from .audit_service import record_audit
from .concurrency import begin_serialized, lock_for_update, run_with_retry
from .document_service import generate_annex_best_effort
from .permission_service import require_role
from .state_machine import roles_for_worksheet_target
from .worksheet_service import _apply_worksheet_transition
from labtrace.time_utils import utcnow


QC_RESULTS = {"APPROVED", "CONDITIONAL", "REJECTED"}
CHECKLIST_FIELDS = QualityControl.CHECKLIST_FIELDS
QC_TEXT_FIELDS = {"emdn_code": 32, "risk_class": 16, "annex_i_deviations": None, "document_version": 16}


def validate_qc_submission(result: str, checklist: dict, notes: str | None, action_required: str | None) -> None:
    """
    Raises:
        ValidationFailed: result does not match the checklist
    """
    passed = sum(1 for name in CHECKLIST_FIELDS if checklist.get(name))
    failed = len(CHECKLIST_FIELDS) - passed

    if result == "APPROVED":
        if failed:
            raise ValidationFailed(
                f"APPROVED requires all {len(CHECKLIST_FIELDS)} checks to pass ({passed} passed)"
            )
    elif result == "CONDITIONAL":
        if passed < len(CHECKLIST_FIELDS) - 1:
            raise ValidationFailed(f"CONDITIONAL requires at least 4 checks to pass ({passed} passed)")
        if not notes:
            raise ValidationFailed("CONDITIONAL approval requires notes")
    elif result == "REJECTED":
        if not failed:
            raise ValidationFailed("REJECTED requires at least one failed check")
        if not action_required:
            raise ValidationFailed("REJECTED requires action_required")
    else:
        raise ValidationFailed(f"Invalid QC result '{result}'. Must be one of: {', '.join(sorted(QC_RESULTS))}")


def _parse_checklist(payload: dict) -> dict:
    raw = payload.get("checklist", payload)
    if not isinstance(raw, dict):
        raise ValidationFailed("checklist must be an object")
    checklist = {}
    for name in CHECKLIST_FIELDS:
        value = raw.get(name, False)
        if not isinstance(value, bool):
            raise ValidationFailed(f"checklist.{name} must be a boolean")
        checklist[name] = value
    return checklist


def get_qc(worksheet_id: int) -> QualityControl:
    qc = db.session.query(QualityControl).filter_by(worksheet_id=worksheet_id).first()
    if qc is None:
        raise NotFound(f"No QC record for worksheet {worksheet_id}")
    return qc


def submit_qc(worksheet_id: int, payload: dict, *, actor=None) -> QualityControl:
    """
    Record a QC inspection for a QC_PENDING worksheet and move it on.

    Raises:
        NotFound: worksheet missing
        InvalidTransition: worksheet not QC_PENDING
        ValidationFailed: result does not match the checklist
        Forbidden: actor may not record QC outcomes
    """
    payload = dict(payload or {})
    result = str(payload.get("result") or "").strip().upper()
    checklist = _parse_checklist(payload)
    notes = clean_text(payload.get("notes"), "notes")
    action_required = clean_text(payload.get("action_required"), "action_required")
    extras = {
        key: clean_text(payload.get(key), key, max_length=limit)
        for key, limit in QC_TEXT_FIELDS.items()
        if key in payload
    }
    validate_qc_submission(result, checklist, notes, action_required)

    target = "QC_REJECTED" if result == "REJECTED" else "QC_APPROVED"
    require_role(actor, roles_for_worksheet_target(target), action="record QC outcomes")

    def _op() -> tuple[QualityControl, bool]:
        begin_serialized()
        worksheet = lock_for_update(db.session.query(WorkSheet).filter_by(id=worksheet_id)).first()
        if worksheet is None or worksheet.deleted_at is not None:
            raise NotFound(f"Worksheet {worksheet_id} not found")
        if worksheet.status != "QC_PENDING":
            raise InvalidTransition(
                f"QC can only be submitted for QC_PENDING worksheets ({worksheet.worksheet_number} is {worksheet.status})"
            )

        now = utcnow()
        qc = worksheet.quality_control
        previous = {"result": qc.result, **qc.checklist()} if qc is not None else None
        if qc is None:
            qc = QualityControl(worksheet_id=worksheet.id)
            db.session.add(qc)

        qc.result = result
        for name, value in checklist.items():
            setattr(qc, name, value)
        qc.notes = notes
        qc.action_required = action_required
        qc.inspector_id = actor.user_id if actor is not None else None
        qc.inspection_date = now
        for key, value in extras.items():
            setattr(qc, key, value)
        if notes:
            worksheet.qc_notes = notes
        db.session.flush()

        record_audit(
            actor=actor,
            action="QC_REJECT" if result == "REJECTED" else "QC_APPROVE",
            entity_type="WorkSheet",
            entity_id=worksheet.id,
            old_values=previous,
            new_values={"result": result, **checklist, "notes": notes, "action_required": action_required},
            occurred_at=now,
        )

        _apply_worksheet_transition(worksheet, target, actor=actor, reason=f"QC {result}", now=now)

        auto_delivered = False
        if target == "QC_APPROVED" and not worksheet.dentist.requires_invoicing:
            _apply_worksheet_transition(
                worksheet, "DELIVERED", actor=actor, reason="Dentist does not require invoicing", now=now
            )
            auto_delivered = True

        db.session.commit()
        return qc, auto_delivered

    qc, auto_delivered = run_with_retry(_op)
    current_app.logger.info(
        "QC %s recorded for worksheet %s%s", result, worksheet_id, " (auto-delivered)" if auto_delivered else ""
    )

    if result != "REJECTED":
        generate_annex_best_effort(worksheet_id, actor=actor)
    return qc
