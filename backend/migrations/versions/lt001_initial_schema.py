"""initial labtrace schema

Revision ID: lt001_initial_schema
Revises:
Create Date: 2026-03-02 00:00:00.000000

This migration creates the complete LabTrace schema from scratch:
- dentists / products: customer and price-list master data
- orders / worksheets (+ products, teeth, material plans): production records
- materials / material_lots / worksheet_materials: the traceability ledger
- quality_controls: one QC inspection per worksheet
- invoices / invoice_line_items / email_logs: billing
- documents: generated Annex XIII statements and invoice PDFs
- system_config / lab_configuration / audit_logs: counters, lab identity, audit trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'lt001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    """
    Create all tables from scratch.

    WHY: worksheet_materials rows are the MDR evidence that links a device to
    the material lots it was made from. Nothing in this schema cascades a
    delete into them.
    """

    # ============================================================================
    # dentists / products: master data
    # ============================================================================
    op.create_table(
        'dentists',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_name', sa.String(length=255), nullable=False),
        sa.Column('dentist_name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=120), nullable=True),
        sa.Column('postal_code', sa.String(length=32), nullable=True),
        sa.Column('tax_number', sa.String(length=64), nullable=True),
        sa.Column('payment_terms', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('requires_invoicing', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_dentists_clinic_name', 'dentists', ['clinic_name'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('unit', sa.String(length=32), nullable=False, server_default='piece'),
        sa.Column('current_price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_code', 'products', ['code'], unique=True)
    op.create_index('ix_products_category', 'products', ['category'])

    # ============================================================================
    # materials / material_lots
    # ============================================================================
    op.create_table(
        'materials',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('manufacturer', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('biocompatible', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('iso_standard', sa.String(length=64), nullable=True),
        sa.Column('ce_marked', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('ce_number', sa.String(length=64), nullable=True),
        sa.Column('unit', sa.String(length=16), nullable=False, server_default='g'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_materials_code', 'materials', ['code'], unique=True)
    op.create_index('ix_materials_type', 'materials', ['type'])

    op.create_table(
        'material_lots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('material_id', sa.Integer(), nullable=False),
        sa.Column('lot_number', sa.String(length=64), nullable=False),
        sa.Column('arrival_date', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('quantity_received', sa.Numeric(10, 3), nullable=False),
        sa.Column('quantity_available', sa.Numeric(10, 3), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='AVAILABLE'),
        sa.Column('supplier_name', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['material_id'], ['materials.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('material_id', 'lot_number', name='uq_material_lots_material_lot'),
        sa.CheckConstraint('quantity_available >= 0', name='ck_material_lots_available_nonneg'),
        sa.CheckConstraint('quantity_available <= quantity_received',
                           name='ck_material_lots_available_le_received'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_material_lots_material_id', 'material_lots', ['material_id'])
    op.create_index('ix_material_lots_expiry_date', 'material_lots', ['expiry_date'])
    op.create_index('ix_material_lots_status', 'material_lots', ['status'])
    op.create_index('ix_material_lots_fifo', 'material_lots', ['material_id', 'status', 'arrival_date'])

    # ============================================================================
    # orders / worksheets
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=16), nullable=False),
        sa.Column('dentist_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('order_date', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('patient_name', sa.String(length=255), nullable=True),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='NORMAL'),
        sa.Column('impression_type', sa.String(length=32), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['dentist_id'], ['dentists.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_dentist_id', 'orders', ['dentist_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_deleted_at', 'orders', ['deleted_at'])
    op.create_index('ix_orders_dentist_status', 'orders', ['dentist_id', 'status'])

    op.create_table(
        'worksheets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('dentist_id', sa.Integer(), nullable=False),
        sa.Column('worksheet_number', sa.String(length=32), nullable=False),
        sa.Column('revision', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('device_description', sa.Text(), nullable=True),
        sa.Column('intended_use', sa.Text(), nullable=True),
        sa.Column('technical_notes', sa.Text(), nullable=True),
        sa.Column('qc_notes', sa.Text(), nullable=True),
        sa.Column('manufacture_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('void_reason', sa.Text(), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_by', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['dentist_id'], ['dentists.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('worksheet_number', 'revision', name='uq_worksheets_number_revision'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_worksheets_order_id', 'worksheets', ['order_id'])
    op.create_index('ix_worksheets_dentist_id', 'worksheets', ['dentist_id'])
    op.create_index('ix_worksheets_worksheet_number', 'worksheets', ['worksheet_number'])
    op.create_index('ix_worksheets_status', 'worksheets', ['status'])
    op.create_index('ix_worksheets_deleted_at', 'worksheets', ['deleted_at'])

    op.create_table(
        'worksheet_products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('worksheet_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('price_at_selection', sa.Numeric(10, 2), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['worksheet_id'], ['worksheets.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_worksheet_products_worksheet_id', 'worksheet_products', ['worksheet_id'])
    op.create_index('ix_worksheet_products_product_id', 'worksheet_products', ['product_id'])

    op.create_table(
        'worksheet_teeth',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('worksheet_id', sa.Integer(), nullable=False),
        sa.Column('tooth_number', sa.String(length=2), nullable=False),
        sa.Column('work_type', sa.String(length=64), nullable=False),
        sa.Column('shade', sa.String(length=16), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['worksheet_id'], ['worksheets.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('worksheet_id', 'tooth_number', name='uq_worksheet_teeth_tooth'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_worksheet_teeth_worksheet_id', 'worksheet_teeth', ['worksheet_id'])

    op.create_table(
        'worksheet_material_plans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('worksheet_id', sa.Integer(), nullable=False),
        sa.Column('material_id', sa.Integer(), nullable=False),
        sa.Column('quantity_planned', sa.Numeric(10, 3), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['worksheet_id'], ['worksheets.id']),
        sa.ForeignKeyConstraint(['material_id'], ['materials.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_worksheet_material_plans_worksheet_id', 'worksheet_material_plans', ['worksheet_id'])
    op.create_index('ix_worksheet_material_plans_material_id', 'worksheet_material_plans', ['material_id'])

    # ============================================================================
    # worksheet_materials: immutable material -> device traceability
    # ============================================================================
    op.create_table(
        'worksheet_materials',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('worksheet_id', sa.Integer(), nullable=False),
        sa.Column('material_id', sa.Integer(), nullable=False),
        sa.Column('material_lot_id', sa.Integer(), nullable=False),
        sa.Column('quantity_used', sa.Numeric(10, 3), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('consumed_by', sa.Integer(), nullable=True),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['worksheet_id'], ['worksheets.id']),
        sa.ForeignKeyConstraint(['material_id'], ['materials.id']),
        sa.ForeignKeyConstraint(['material_lot_id'], ['material_lots.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_worksheet_materials_worksheet_id', 'worksheet_materials', ['worksheet_id'])
    op.create_index('ix_worksheet_materials_material_id', 'worksheet_materials', ['material_id'])
    op.create_index('ix_worksheet_materials_material_lot_id', 'worksheet_materials', ['material_lot_id'])

    # ============================================================================
    # quality_controls
    # ============================================================================
    op.create_table(
        'quality_controls',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('worksheet_id', sa.Integer(), nullable=False),
        sa.Column('inspector_id', sa.Integer(), nullable=True),
        sa.Column('inspection_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('result', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('aesthetics', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('fit', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('occlusion', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('shade', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('margins', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('action_required', sa.Text(), nullable=True),
        sa.Column('emdn_code', sa.String(length=32), nullable=True),
        sa.Column('risk_class', sa.String(length=16), nullable=True),
        sa.Column('annex_i_deviations', sa.Text(), nullable=True),
        sa.Column('document_version', sa.String(length=16), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['worksheet_id'], ['worksheets.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_quality_controls_worksheet_id', 'quality_controls', ['worksheet_id'], unique=True)

    # ============================================================================
    # invoices / invoice_line_items / email_logs
    # ============================================================================
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=32), nullable=True),
        sa.Column('is_draft', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('dentist_id', sa.Integer(), nullable=False),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('discount_rate', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('payment_reference', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('pdf_path', sa.String(length=512), nullable=True),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['dentist_id'], ['dentists.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_number', name='uq_invoices_invoice_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'])
    op.create_index('ix_invoices_dentist_id', 'invoices', ['dentist_id'])
    op.create_index('ix_invoices_payment_status', 'invoices', ['payment_status'])
    op.create_index('ix_invoices_dentist_status', 'invoices', ['dentist_id', 'payment_status'])

    op.create_table(
        'invoice_line_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('worksheet_id', sa.Integer(), nullable=True),
        sa.Column('product_code', sa.String(length=64), nullable=True),
        sa.Column('description', sa.String(length=512), nullable=False),
        sa.Column('quantity', sa.Numeric(10, 3), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('line_type', sa.String(length=16), nullable=False, server_default='product'),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id']),
        sa.ForeignKeyConstraint(['worksheet_id'], ['worksheets.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoice_line_items_invoice_id', 'invoice_line_items', ['invoice_id'])
    op.create_index('ix_invoice_line_items_worksheet_id', 'invoice_line_items', ['worksheet_id'])

    op.create_table(
        'email_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('sent_by', sa.Integer(), nullable=True),
        sa.Column('recipient', sa.String(length=255), nullable=False),
        sa.Column('subject', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_email_logs_invoice_id', 'email_logs', ['invoice_id'])
    op.create_index('ix_email_logs_status', 'email_logs', ['status'])

    # ============================================================================
    # documents: generated artifacts with retention metadata
    # ============================================================================
    op.create_table(
        'documents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('worksheet_id', sa.Integer(), nullable=True),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=True),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('file_path', sa.String(length=512), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('mime_type', sa.String(length=64), nullable=False, server_default='application/pdf'),
        sa.Column('generated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('retention_until', sa.DateTime(timezone=True), nullable=False),
        sa.Column('generated_by', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['worksheet_id'], ['worksheets.id']),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_documents_worksheet_id', 'documents', ['worksheet_id'])
    op.create_index('ix_documents_invoice_id', 'documents', ['invoice_id'])
    op.create_index('ix_documents_type', 'documents', ['type'])
    op.create_index('ix_documents_document_number', 'documents', ['document_number'])
    op.create_index('ix_documents_worksheet_type', 'documents', ['worksheet_id', 'type'])

    # ============================================================================
    # system_config / lab_configuration / audit_logs
    # ============================================================================
    op.create_table(
        'system_config',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value', sa.String(length=255), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_system_config_key', 'system_config', ['key'], unique=True)

    op.create_table(
        'lab_configuration',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('singleton_key', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('lab_name', sa.String(length=255), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=120), nullable=True),
        sa.Column('postal_code', sa.String(length=32), nullable=True),
        sa.Column('country', sa.String(length=64), nullable=True),
        sa.Column('tax_number', sa.String(length=64), nullable=True),
        sa.Column('registration_number', sa.String(length=64), nullable=True),
        sa.Column('responsible_person', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('iban', sa.String(length=64), nullable=True),
        sa.Column('default_tax_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('default_payment_terms', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('singleton_key')
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('user_role', sa.String(length=32), nullable=True),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('old_values', sa.Text(), nullable=True),
        sa.Column('new_values', sa.Text(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])
    op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('audit_logs')
    op.drop_table('lab_configuration')
    op.drop_table('system_config')
    op.drop_table('documents')
    op.drop_table('email_logs')
    op.drop_table('invoice_line_items')
    op.drop_table('invoices')
    op.drop_table('quality_controls')
    op.drop_table('worksheet_materials')
    op.drop_table('worksheet_material_plans')
    op.drop_table('worksheet_teeth')
    op.drop_table('worksheet_products')
    op.drop_table('worksheets')
    op.drop_table('orders')
    op.drop_table('material_lots')
    op.drop_table('materials')
    op.drop_table('products')
    op.drop_table('dentists')
