# Overview: Status state machine definitions for worksheets, orders and invoices.

"""
LabTrace Status State Machine

================================================================================
PURPOSE: One place that says which status changes are legal, and who may make them
================================================================================

WORKSHEET:
    DRAFT -> IN_PRODUCTION -> QC_PENDING -> QC_APPROVED -> DELIVERED
                                         -> QC_REJECTED -> IN_PRODUCTION (rework)
    any non-terminal -> VOIDED (admin override)

    Terminal: DELIVERED, VOIDED
    Invoice cancellation may move DELIVERED back to QC_APPROVED; that is a
    compensating transition owned by invoice_service, not a normal edge.

ORDER (follows its worksheet, see ORDER_STATUS_FOR_WORKSHEET):
    PENDING -> IN_PRODUCTION -> QC_PENDING -> QC_APPROVED -> INVOICED / DELIVERED
    QC rejection narrows back to IN_PRODUCTION (Order has no REJECTED state)

INVOICE (payment_status):
    DRAFT -> FINALIZED -> SENT -> VIEWED -> PAID
    any numbered, non-cancelled -> CANCELLED
    Never back to DRAFT once numbered.

This module holds no DB logic; services call assert_* before mutating.
================================================================================
"""

from __future__ import annotations

from ..errors import InvalidTransition
from ..permissions import Role


# -----------------------------------------------------------------------------
# Worksheet
# -----------------------------------------------------------------------------

WORKSHEET_STATUSES = {
    "DRAFT",
    "IN_PRODUCTION",
    "QC_PENDING",
    "QC_APPROVED",
    "QC_REJECTED",
    "DELIVERED",
    "VOIDED",
}
WORKSHEET_TERMINAL = {"DELIVERED", "VOIDED"}

WORKSHEET_TRANSITIONS = {
    ("DRAFT", "IN_PRODUCTION"),
    ("IN_PRODUCTION", "QC_PENDING"),
    ("QC_PENDING", "QC_APPROVED"),
    ("QC_PENDING", "QC_REJECTED"),
    ("QC_REJECTED", "IN_PRODUCTION"),
    ("QC_APPROVED", "DELIVERED"),
} | {(status, "VOIDED") for status in WORKSHEET_STATUSES - WORKSHEET_TERMINAL}

# Targets reachable only through QC submission, never through a plain transition
QC_RESULT_STATUSES = {"QC_APPROVED", "QC_REJECTED"}

# Roles allowed to move a worksheet INTO each state
WORKSHEET_TARGET_ROLES = {
    "IN_PRODUCTION": {Role.ADMIN, Role.TECHNICIAN},
    "QC_PENDING": {Role.ADMIN, Role.TECHNICIAN},
    "QC_APPROVED": {Role.ADMIN, Role.QC_INSPECTOR},
    "QC_REJECTED": {Role.ADMIN, Role.QC_INSPECTOR},
    "DELIVERED": {Role.ADMIN, Role.INVOICING, Role.TECHNICIAN},
    "VOIDED": {Role.ADMIN},
}

# Order status implied by each worksheet status
ORDER_STATUS_FOR_WORKSHEET = {
    "IN_PRODUCTION": "IN_PRODUCTION",
    "QC_PENDING": "QC_PENDING",
    "QC_APPROVED": "QC_APPROVED",
    "QC_REJECTED": "IN_PRODUCTION",
    "DELIVERED": "DELIVERED",
    "VOIDED": "PENDING",
}

# -----------------------------------------------------------------------------
# Order
# -----------------------------------------------------------------------------

ORDER_STATUSES = {
    "PENDING",
    "IN_PRODUCTION",
    "QC_PENDING",
    "QC_APPROVED",
    "INVOICED",
    "DELIVERED",
    "CANCELLED",
}

# -----------------------------------------------------------------------------
# Invoice
# -----------------------------------------------------------------------------

INVOICE_STATUSES = {"DRAFT", "FINALIZED", "SENT", "VIEWED", "PAID", "CANCELLED"}

# Forward-only payment progression (cancellation handled separately)
INVOICE_PAYMENT_TRANSITIONS = {
    ("FINALIZED", "SENT"),
    ("FINALIZED", "VIEWED"),
    ("FINALIZED", "PAID"),
    ("SENT", "SENT"),
    ("SENT", "VIEWED"),
    ("SENT", "PAID"),
    ("VIEWED", "PAID"),
}
INVOICE_CANCELLABLE = {"FINALIZED", "SENT", "VIEWED", "PAID"}


def validate_worksheet_status(status: str) -> None:
    if status not in WORKSHEET_STATUSES:
        raise InvalidTransition(
            f"Invalid worksheet status '{status}'. Must be one of: {', '.join(sorted(WORKSHEET_STATUSES))}"
        )


def can_transition_worksheet(from_status: str, to_status: str) -> bool:
    validate_worksheet_status(from_status)
    validate_worksheet_status(to_status)
    return (from_status, to_status) in WORKSHEET_TRANSITIONS


def assert_worksheet_transition(from_status: str, to_status: str) -> None:
    if not can_transition_worksheet(from_status, to_status):
        raise InvalidTransition(f"Cannot transition worksheet from {from_status} to {to_status}")


def allowed_worksheet_targets(from_status: str) -> list[str]:
    validate_worksheet_status(from_status)
    return sorted(to for (frm, to) in WORKSHEET_TRANSITIONS if frm == from_status)


def roles_for_worksheet_target(to_status: str) -> set:
    return WORKSHEET_TARGET_ROLES.get(to_status, {Role.ADMIN})


def can_transition_invoice_payment(from_status: str, to_status: str) -> bool:
    if from_status not in INVOICE_STATUSES or to_status not in INVOICE_STATUSES:
        return False
    return (from_status, to_status) in INVOICE_PAYMENT_TRANSITIONS


def assert_invoice_payment_transition(from_status: str, to_status: str) -> None:
    if to_status not in INVOICE_STATUSES:
        raise InvalidTransition(
            f"Invalid payment status '{to_status}'. Must be one of: {', '.join(sorted(INVOICE_STATUSES))}"
        )
    if to_status == "DRAFT":
        raise InvalidTransition("A numbered invoice can never return to DRAFT")
    if to_status == "CANCELLED":
        raise InvalidTransition("Use invoice cancellation to cancel an invoice")
    if not can_transition_invoice_payment(from_status, to_status):
        raise InvalidTransition(f"Cannot change payment status from {from_status} to {to_status}")
