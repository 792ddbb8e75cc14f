from .catalog import Dentist, Product
from .orders import Order, WorkSheet, WorksheetProduct, WorksheetTooth, WorksheetMaterialPlan
from .materials import Material, MaterialLot, WorksheetMaterial
from .quality import QualityControl
from .invoicing import Invoice, InvoiceLineItem, EmailLog
from .documents import Document
from .system import SystemConfig, LabConfiguration, AuditLog

__all__ = [
    'Dentist', 'Product',
    'Order', 'WorkSheet', 'WorksheetProduct', 'WorksheetTooth', 'WorksheetMaterialPlan',
    'Material', 'MaterialLot', 'WorksheetMaterial',
    'QualityControl',
    'Invoice', 'InvoiceLineItem', 'EmailLog',
    'Document',
    'SystemConfig', 'LabConfiguration', 'AuditLog',
]
