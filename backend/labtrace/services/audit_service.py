# Overview: Service-layer operations for the audit ledger; append-only, best-effort writes.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from flask import current_app, has_request_context, request

from ..extensions import db
from ..models import AuditLog
from labtrace.time_utils import utcnow

"""
LabTrace Audit Ledger Invariants (authoritative)

- Append-only: no updates, no deletes of existing entries.
- Entries are written inside the same DB transaction as the action they
  record, so a rolled-back action leaves no audit row behind.
- Writing is BEST-EFFORT: a failure to build or insert the entry is logged
  and swallowed. An unwritable audit log must never block a compliance
  critical transition (QC approval, consumption, invoice finalization).
"""

AUDIT_ACTIONS = {
    "CREATE",
    "UPDATE",
    "DELETE",
    "STATUS_CHANGE",
    "QC_APPROVE",
    "QC_REJECT",
    "INVOICE_GENERATE",
    "EMAIL_SEND",
    "DOCUMENT_GENERATE",
    "MATERIAL_ASSIGN",
}


def _dump(values) -> Optional[str]:
    if values is None:
        return None
    return json.dumps(values, default=str, sort_keys=True)


def record_audit(
    *,
    actor,
    action: str,
    entity_type: str,
    entity_id,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    reason: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> Optional[AuditLog]:
    """
    Append an audit entry to the current transaction.

    The entry is inserted inside a SAVEPOINT. If the insert fails only the
    savepoint is rolled back; the caller's pending work is untouched and
    the caller's transaction continues.

    Returns the entry, or None when writing failed.
    """
    # Flush the caller's work outside the guarded block: a failure there
    # belongs to the primary action and must propagate.
    db.session.flush()

    try:
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action {action!r}")

        entry = AuditLog(
            user_id=actor.user_id if actor is not None else None,
            user_role=actor.role.value if actor is not None else None,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            old_values=_dump(old_values),
            new_values=_dump(new_values),
            reason=reason,
            ip_address=request.remote_addr if has_request_context() else None,
            created_at=occurred_at or utcnow(),
        )
        with db.session.begin_nested():
            db.session.add(entry)
        return entry
    except Exception:
        current_app.logger.warning(
            "Audit write failed (action=%s entity=%s:%s); continuing",
            action,
            entity_type,
            entity_id,
            exc_info=True,
        )
        return None


def list_audit_logs(
    *,
    entity_type: Optional[str] = None,
    entity_id=None,
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    """
    Read API over the audit ledger, newest first.

    Date filters are inclusive on both ends.
    """
    query = db.session.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == str(entity_id))
    if action:
        query = query.filter(AuditLog.action == action)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if since is not None:
        query = query.filter(AuditLog.created_at >= since)
    if until is not None:
        query = query.filter(AuditLog.created_at <= until)

    total = query.count()
    rows = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total
