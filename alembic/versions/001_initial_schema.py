"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(precision=12, scale=2)

claim_status = sa.Enum(
    'DRAFT', 'SUBMITTED', 'PENDING', 'ACCEPTED', 'PAID', 'PARTIAL', 'DENIED', 'REJECTED', 'CANCELLED',
    name='claimstatus',
)
invoice_status = sa.Enum(
    'DRAFT', 'PENDING', 'SENT', 'PAID', 'PARTIAL', 'OVERDUE', 'CANCELLED',
    name='invoicestatus',
)
insurance_type = sa.Enum('PRIMARY', 'SECONDARY', name='insurancetype')
payment_method = sa.Enum(
    'CASH', 'CREDIT_CARD', 'DEBIT_CARD', 'CHECK', 'BANK_TRANSFER', 'OTHER',
    name='paymentmethod',
)
payment_source = sa.Enum('PATIENT', 'INSURANCE', name='paymentsource')
batch_status = sa.Enum('IMPORTED', 'PROCESSING', 'PROCESSED', 'ERROR', 'PARTIAL', name='remittancebatchstatus')
remittance_format = sa.Enum('X12_835', 'CSV', 'DELIMITED', name='remittanceformat')
match_status = sa.Enum('MATCHED', 'UNMATCHED', name='matchstatus')
match_method = sa.Enum('EXACT_CLAIM', 'EXACT_INVOICE', 'SCORED', 'MANUAL', name='matchmethod')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Reference data
    op.create_table(
        'providers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('npi', sa.String(length=10), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('specialty', sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_providers_id'), 'providers', ['id'], unique=False)
    op.create_index(op.f('ix_providers_npi'), 'providers', ['npi'], unique=True)

    op.create_table(
        'insurance_companies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payer_code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_insurance_companies_id'), 'insurance_companies', ['id'], unique=False)
    op.create_index(op.f('ix_insurance_companies_payer_code'), 'insurance_companies', ['payer_code'], unique=True)
    op.create_index(op.f('ix_insurance_companies_name'), 'insurance_companies', ['name'], unique=False)

    # Invoices
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=50), nullable=False),
        sa.Column('patient_id', sa.String(length=50), nullable=False),
        sa.Column('patient_name', sa.String(length=255), nullable=True),
        sa.Column('provider_id', sa.Integer(), nullable=True),
        sa.Column('appointment_id', sa.String(length=50), nullable=True),
        sa.Column('insurance_company_id', sa.Integer(), nullable=True),
        sa.Column('total_amount', MONEY, nullable=False),
        sa.Column('balance_due', MONEY, nullable=False),
        sa.Column('status', invoice_status, nullable=False),
        sa.Column('issue_date', sa.Date(), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.String(length=1000), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id']),
        sa.ForeignKeyConstraint(['insurance_company_id'], ['insurance_companies.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_invoices_id'), 'invoices', ['id'], unique=False)
    op.create_index(op.f('ix_invoices_invoice_number'), 'invoices', ['invoice_number'], unique=True)
    op.create_index(op.f('ix_invoices_patient_id'), 'invoices', ['patient_id'], unique=False)
    op.create_index(op.f('ix_invoices_provider_id'), 'invoices', ['provider_id'], unique=False)
    op.create_index(op.f('ix_invoices_appointment_id'), 'invoices', ['appointment_id'], unique=False)
    op.create_index(op.f('ix_invoices_insurance_company_id'), 'invoices', ['insurance_company_id'], unique=False)
    op.create_index(op.f('ix_invoices_status'), 'invoices', ['status'], unique=False)
    op.create_index(op.f('ix_invoices_due_date'), 'invoices', ['due_date'], unique=False)

    op.create_table(
        'invoice_line_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('service_code', sa.String(length=20), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', MONEY, nullable=False),
        sa.Column('discount', MONEY, nullable=False),
        sa.Column('total', MONEY, nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_invoice_line_items_id'), 'invoice_line_items', ['id'], unique=False)
    op.create_index(op.f('ix_invoice_line_items_invoice_id'), 'invoice_line_items', ['invoice_id'], unique=False)

    # Claims
    op.create_table(
        'claims',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('claim_number', sa.String(length=50), nullable=False),
        sa.Column('patient_id', sa.String(length=50), nullable=False),
        sa.Column('patient_name', sa.String(length=255), nullable=True),
        sa.Column('provider_id', sa.Integer(), nullable=True),
        sa.Column('insurance_company_id', sa.Integer(), nullable=True),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('status', claim_status, nullable=False),
        sa.Column('submitted_amount', MONEY, nullable=False),
        sa.Column('paid_amount', MONEY, nullable=False),
        sa.Column('patient_responsibility', MONEY, nullable=False),
        sa.Column('service_date', sa.Date(), nullable=True),
        sa.Column('submission_date', sa.DateTime(), nullable=True),
        sa.Column('paid_date', sa.DateTime(), nullable=True),
        sa.Column('denied_date', sa.DateTime(), nullable=True),
        sa.Column('denial_reason', sa.Text(), nullable=True),
        sa.Column('appeal_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('diagnosis_codes', sa.JSON(), nullable=True),
        sa.Column('procedure_codes', sa.JSON(), nullable=True),
        sa.Column('patient_info', sa.JSON(), nullable=True),
        sa.Column('insurance_info', sa.JSON(), nullable=True),
        sa.Column('insurance_type', insurance_type, nullable=False),
        sa.Column('primary_insurance_company_id', sa.Integer(), nullable=True),
        sa.Column('external_reference', sa.String(length=100), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id']),
        sa.ForeignKeyConstraint(['insurance_company_id'], ['insurance_companies.id']),
        sa.ForeignKeyConstraint(['primary_insurance_company_id'], ['insurance_companies.id']),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_claims_id'), 'claims', ['id'], unique=False)
    op.create_index(op.f('ix_claims_claim_number'), 'claims', ['claim_number'], unique=True)
    op.create_index(op.f('ix_claims_patient_id'), 'claims', ['patient_id'], unique=False)
    op.create_index(op.f('ix_claims_patient_name'), 'claims', ['patient_name'], unique=False)
    op.create_index(op.f('ix_claims_provider_id'), 'claims', ['provider_id'], unique=False)
    op.create_index(op.f('ix_claims_insurance_company_id'), 'claims', ['insurance_company_id'], unique=False)
    op.create_index(op.f('ix_claims_invoice_id'), 'claims', ['invoice_id'], unique=False)
    op.create_index(op.f('ix_claims_status'), 'claims', ['status'], unique=False)
    op.create_index(op.f('ix_claims_service_date'), 'claims', ['service_date'], unique=False)
    op.create_index(op.f('ix_claims_submission_date'), 'claims', ['submission_date'], unique=False)
    op.create_index(op.f('ix_claims_insurance_type'), 'claims', ['insurance_type'], unique=False)
    # Matching scans open claims per payer
    op.create_index('ix_claims_payer_status', 'claims', ['insurance_company_id', 'status'], unique=False)

    op.create_table(
        'claim_status_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('claim_id', sa.Integer(), nullable=False),
        sa.Column('status', claim_status, nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['claim_id'], ['claims.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_claim_status_history_id'), 'claim_status_history', ['id'], unique=False)
    op.create_index(op.f('ix_claim_status_history_claim_id'), 'claim_status_history', ['claim_id'], unique=False)

    op.create_table(
        'claim_documents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('claim_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=True),
        sa.Column('content_type', sa.String(length=100), nullable=True),
        sa.Column('document_type', sa.String(length=50), nullable=True),
        sa.Column('storage_ref', sa.String(length=500), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['claim_id'], ['claims.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_claim_documents_id'), 'claim_documents', ['id'], unique=False)
    op.create_index(op.f('ix_claim_documents_claim_id'), 'claim_documents', ['claim_id'], unique=False)

    # Remittance
    op.create_table(
        'remittance_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('file_format', remittance_format, nullable=True),
        sa.Column('import_date', sa.DateTime(), nullable=False),
        sa.Column('payer_name', sa.String(length=255), nullable=True),
        sa.Column('check_number', sa.String(length=50), nullable=True),
        sa.Column('total_records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('matched_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unmatched_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('posted_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('parse_error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_amount', MONEY, nullable=False),
        sa.Column('status', batch_status, nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('parse_errors', sa.JSON(), nullable=True),
        sa.Column('cancel_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_remittance_batches_id'), 'remittance_batches', ['id'], unique=False)
    op.create_index(op.f('ix_remittance_batches_import_date'), 'remittance_batches', ['import_date'], unique=False)
    op.create_index(op.f('ix_remittance_batches_status'), 'remittance_batches', ['status'], unique=False)

    op.create_table(
        'remittance_line_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('patient_name', sa.String(length=255), nullable=True),
        sa.Column('claim_reference', sa.String(length=50), nullable=True),
        sa.Column('invoice_reference', sa.String(length=50), nullable=True),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('billed_amount', MONEY, nullable=True),
        sa.Column('patient_responsibility', MONEY, nullable=True),
        sa.Column('payment_date', sa.Date(), nullable=True),
        sa.Column('payer_name', sa.String(length=255), nullable=True),
        sa.Column('payment_method', payment_method, nullable=True),
        sa.Column('check_number', sa.String(length=50), nullable=True),
        sa.Column('denial_reason', sa.Text(), nullable=True),
        sa.Column('adjustment_codes', sa.JSON(), nullable=True),
        sa.Column('raw_record', sa.JSON(), nullable=True),
        sa.Column('match_status', match_status, nullable=False),
        sa.Column('match_method', match_method, nullable=True),
        sa.Column('match_score', sa.Float(), nullable=True),
        sa.Column('matched_claim_id', sa.Integer(), nullable=True),
        sa.Column('matched_invoice_id', sa.Integer(), nullable=True),
        sa.Column('posted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('posted_at', sa.DateTime(), nullable=True),
        sa.Column('needs_review', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('review_reason', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['batch_id'], ['remittance_batches.id']),
        sa.ForeignKeyConstraint(['matched_claim_id'], ['claims.id']),
        sa.ForeignKeyConstraint(['matched_invoice_id'], ['invoices.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_remittance_line_items_id'), 'remittance_line_items', ['id'], unique=False)
    op.create_index(op.f('ix_remittance_line_items_batch_id'), 'remittance_line_items', ['batch_id'], unique=False)
    op.create_index(op.f('ix_remittance_line_items_patient_name'), 'remittance_line_items', ['patient_name'], unique=False)
    op.create_index(op.f('ix_remittance_line_items_claim_reference'), 'remittance_line_items', ['claim_reference'], unique=False)
    op.create_index(op.f('ix_remittance_line_items_invoice_reference'), 'remittance_line_items', ['invoice_reference'], unique=False)
    op.create_index(op.f('ix_remittance_line_items_payment_date'), 'remittance_line_items', ['payment_date'], unique=False)
    op.create_index(op.f('ix_remittance_line_items_match_status'), 'remittance_line_items', ['match_status'], unique=False)
    op.create_index(op.f('ix_remittance_line_items_matched_claim_id'), 'remittance_line_items', ['matched_claim_id'], unique=False)
    op.create_index(op.f('ix_remittance_line_items_matched_invoice_id'), 'remittance_line_items', ['matched_invoice_id'], unique=False)
    op.create_index(op.f('ix_remittance_line_items_posted'), 'remittance_line_items', ['posted'], unique=False)
    op.create_index(op.f('ix_remittance_line_items_needs_review'), 'remittance_line_items', ['needs_review'], unique=False)

    # Payments
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('claim_id', sa.Integer(), nullable=True),
        sa.Column('remittance_line_item_id', sa.Integer(), nullable=True),
        sa.Column('patient_id', sa.String(length=50), nullable=True),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('payment_method', payment_method, nullable=False),
        sa.Column('payment_source', payment_source, nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('reference_number', sa.String(length=50), nullable=True),
        sa.Column('processor_fee', MONEY, nullable=False),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('voided_at', sa.DateTime(), nullable=True),
        sa.Column('void_reason', sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id']),
        sa.ForeignKeyConstraint(['claim_id'], ['claims.id']),
        sa.ForeignKeyConstraint(['remittance_line_item_id'], ['remittance_line_items.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_payments_id'), 'payments', ['id'], unique=False)
    op.create_index(op.f('ix_payments_invoice_id'), 'payments', ['invoice_id'], unique=False)
    op.create_index(op.f('ix_payments_claim_id'), 'payments', ['claim_id'], unique=False)
    op.create_index(op.f('ix_payments_remittance_line_item_id'), 'payments', ['remittance_line_item_id'], unique=True)
    op.create_index(op.f('ix_payments_patient_id'), 'payments', ['patient_id'], unique=False)
    op.create_index(op.f('ix_payments_payment_source'), 'payments', ['payment_source'], unique=False)
    op.create_index(op.f('ix_payments_payment_date'), 'payments', ['payment_date'], unique=False)
    op.create_index(op.f('ix_payments_reference_number'), 'payments', ['reference_number'], unique=False)
    op.create_index(op.f('ix_payments_is_active'), 'payments', ['is_active'], unique=False)


def downgrade() -> None:
    op.drop_table('payments')
    op.drop_table('remittance_line_items')
    op.drop_table('remittance_batches')
    op.drop_table('claim_documents')
    op.drop_table('claim_status_history')
    op.drop_table('claims')
    op.drop_table('invoice_line_items')
    op.drop_table('invoices')
    op.drop_table('insurance_companies')
    op.drop_table('providers')

    bind = op.get_bind()
    for enum in (
        match_method, match_status, remittance_format, batch_status,
        payment_source, payment_method, insurance_type, invoice_status, claim_status,
    ):
        enum.drop(bind, checkfirst=True)
