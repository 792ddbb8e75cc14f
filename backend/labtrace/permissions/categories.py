# Overview: Capability category constants for grouping related capabilities.


class CapabilityCategory:
    """Capability categories for organization and UI display."""
    ORDERS = "ORDERS"
    PRODUCTION = "PRODUCTION"
    QUALITY = "QUALITY"
    MATERIALS = "MATERIALS"
    INVOICING = "INVOICING"
    COMPLIANCE = "COMPLIANCE"
    SYSTEM = "SYSTEM"
