# Overview: Closed role enum and the static role -> capability table.

from enum import Enum

from .helpers import get_all_capability_codes


class Role(str, Enum):
    ADMIN = "ADMIN"
    TECHNICIAN = "TECHNICIAN"
    QC_INSPECTOR = "QC_INSPECTOR"
    INVOICING = "INVOICING"

    @classmethod
    def parse(cls, value):
        """Return the Role for a header value, or None if it is not a known role."""
        if value is None:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


# Least privilege per role; ADMIN holds everything.
ROLE_CAPABILITIES = {
    Role.ADMIN: frozenset(get_all_capability_codes()),
    Role.TECHNICIAN: frozenset({
        "VIEW_ORDERS",
        "MANAGE_ORDERS",
        "MANAGE_WORKSHEETS",
        "TRANSITION_WORKSHEETS",
        "VIEW_MATERIALS",
        "MANAGE_MATERIALS",
        "CONSUME_MATERIALS",
        "VIEW_TRACEABILITY",
    }),
    Role.QC_INSPECTOR: frozenset({
        "VIEW_ORDERS",
        "TRANSITION_WORKSHEETS",
        "SUBMIT_QC",
        "VIEW_MATERIALS",
        "VIEW_TRACEABILITY",
    }),
    Role.INVOICING: frozenset({
        "VIEW_ORDERS",
        "TRANSITION_WORKSHEETS",
        "VIEW_INVOICES",
        "MANAGE_INVOICES",
        "CANCEL_INVOICES",
    }),
}


def role_has_capability(role: Role, code: str) -> bool:
    return code in ROLE_CAPABILITIES.get(role, frozenset())
