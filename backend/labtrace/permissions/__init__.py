# Overview: Role and capability package.
# Re-exports all public APIs for short imports.

from .categories import CapabilityCategory
from .definitions import (
    CAPABILITY_DEFINITIONS,
    ORDER_CAPABILITIES,
    PRODUCTION_CAPABILITIES,
    QUALITY_CAPABILITIES,
    MATERIAL_CAPABILITIES,
    INVOICING_CAPABILITIES,
    COMPLIANCE_CAPABILITIES,
    SYSTEM_CAPABILITIES,
)
from .helpers import (
    get_all_capability_codes,
    get_capabilities_by_category,
    get_capability_definition,
    validate_capability_code,
)
from .roles import Role, ROLE_CAPABILITIES, role_has_capability

__all__ = [
    "CapabilityCategory",
    "CAPABILITY_DEFINITIONS",
    "ORDER_CAPABILITIES",
    "PRODUCTION_CAPABILITIES",
    "QUALITY_CAPABILITIES",
    "MATERIAL_CAPABILITIES",
    "INVOICING_CAPABILITIES",
    "COMPLIANCE_CAPABILITIES",
    "SYSTEM_CAPABILITIES",
    "get_all_capability_codes",
    "get_capabilities_by_category",
    "get_capability_definition",
    "validate_capability_code",
    "Role",
    "ROLE_CAPABILITIES",
    "role_has_capability",
]
