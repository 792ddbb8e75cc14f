# Overview: All capability definitions organized by category.
# Each capability is defined as: (code, name, description, category)

from .categories import CapabilityCategory


# -- ORDERS --

ORDER_CAPABILITIES = [
    (
        "VIEW_ORDERS",
        "View Orders",
        "View dentists, products, orders and worksheets",
        CapabilityCategory.ORDERS,
    ),
    (
        "MANAGE_ORDERS",
        "Manage Orders",
        "Create, update, cancel and delete orders",
        CapabilityCategory.ORDERS,
    ),
    (
        "MANAGE_CATALOG",
        "Manage Catalog",
        "Create and update dentists and pricing products",
        CapabilityCategory.ORDERS,
    ),
]

# -- PRODUCTION --

PRODUCTION_CAPABILITIES = [
    (
        "MANAGE_WORKSHEETS",
        "Manage Worksheets",
        "Create and edit DRAFT worksheets (products, teeth, material plans)",
        CapabilityCategory.PRODUCTION,
    ),
    (
        "TRANSITION_WORKSHEETS",
        "Transition Worksheets",
        "Move worksheets through production states (subject to per-state role gates)",
        CapabilityCategory.PRODUCTION,
    ),
    (
        "VOID_WORKSHEETS",
        "Void Worksheets",
        "Admin override: void a worksheet in any non-terminal state",
        CapabilityCategory.PRODUCTION,
    ),
]

# -- QUALITY --

QUALITY_CAPABILITIES = [
    (
        "SUBMIT_QC",
        "Submit QC",
        "Record quality-control inspections for QC_PENDING worksheets",
        CapabilityCategory.QUALITY,
    ),
]

# -- MATERIALS --

MATERIAL_CAPABILITIES = [
    (
        "VIEW_MATERIALS",
        "View Materials",
        "View materials, lots and stock alerts",
        CapabilityCategory.MATERIALS,
    ),
    (
        "MANAGE_MATERIALS",
        "Manage Materials",
        "Create/update materials and record stock arrivals",
        CapabilityCategory.MATERIALS,
    ),
    (
        "CONSUME_MATERIALS",
        "Consume Materials",
        "Consume material lots against a worksheet (FIFO)",
        CapabilityCategory.MATERIALS,
    ),
    (
        "CORRECT_LOTS",
        "Correct Lots",
        "Admin correction of lot status/quantity and deletion of unused lots/materials",
        CapabilityCategory.MATERIALS,
    ),
]

# -- INVOICING --

INVOICING_CAPABILITIES = [
    (
        "VIEW_INVOICES",
        "View Invoices",
        "View invoices and their line items",
        CapabilityCategory.INVOICING,
    ),
    (
        "MANAGE_INVOICES",
        "Manage Invoices",
        "Create/update drafts, finalize, send, record payments",
        CapabilityCategory.INVOICING,
    ),
    (
        "CANCEL_INVOICES",
        "Cancel Invoices",
        "Cancel finalized invoices and delete cancelled ones",
        CapabilityCategory.INVOICING,
    ),
]

# -- COMPLIANCE --

COMPLIANCE_CAPABILITIES = [
    (
        "VIEW_TRACEABILITY",
        "View Traceability",
        "Run forward (lot -> devices) and reverse (device -> lots) traces",
        CapabilityCategory.COMPLIANCE,
    ),
    (
        "VIEW_AUDIT_LOG",
        "View Audit Log",
        "Read the append-only audit trail",
        CapabilityCategory.COMPLIANCE,
    ),
]

# -- SYSTEM --

SYSTEM_CAPABILITIES = [
    (
        "MANAGE_LAB_SETTINGS",
        "Manage Lab Settings",
        "Update the laboratory profile and invoicing defaults",
        CapabilityCategory.SYSTEM,
    ),
]


CAPABILITY_DEFINITIONS = (
    ORDER_CAPABILITIES
    + PRODUCTION_CAPABILITIES
    + QUALITY_CAPABILITIES
    + MATERIAL_CAPABILITIES
    + INVOICING_CAPABILITIES
    + COMPLIANCE_CAPABILITIES
    + SYSTEM_CAPABILITIES
)
