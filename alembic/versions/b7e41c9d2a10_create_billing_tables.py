"""create_billing_tables

Revision ID: b7e41c9d2a10
Revises:
Create Date: 2026-10-18 09:12:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = 'b7e41c9d2a10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


invoice_status = sa.Enum('draft', 'issued', 'due', 'paid', name='invoice_status_enum')
payment_status = sa.Enum('pending', 'completed', 'failed', name='payment_status_enum')
payment_provider = sa.Enum('paystack', 'mpesa', name='payment_provider_enum')
swimmer_status = sa.Enum('pending', 'approved', 'inactive', name='swimmer_status_enum')
notification_source = sa.Enum(
    'webhook', 'verify', 'sweeper', name='notification_source_enum'
)
notification_disposition = sa.Enum(
    'applied', 'already_reconciled', 'failure_recorded', 'amount_mismatch',
    'unknown_reference', 'malformed', 'ignored', 'error',
    name='notification_disposition_enum',
)


def upgrade() -> None:
    """Upgrade schema - Add registration billing tables."""

    # Swimmers
    op.create_table(
        'swimmers',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.String(), nullable=True),
        sa.Column('submitted_by_email', sa.String(), nullable=True),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('date_of_birth', sa.Date(), nullable=False),
        sa.Column('gender', sa.String(length=20), nullable=True),
        sa.Column('squad', sa.String(length=50), nullable=True),
        sa.Column('medical_notes', sa.Text(), nullable=True),
        sa.Column('status', swimmer_status, nullable=False),
        sa.Column('registration_complete', sa.Boolean(), nullable=False),
        sa.Column('payment_deferred', sa.Boolean(), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'owner_id', 'first_name', 'last_name', 'date_of_birth',
            name='uq_swimmer_identity_per_owner',
        ),
    )
    op.create_index('ix_swimmers_owner_id', 'swimmers', ['owner_id'])
    op.create_index(
        'ix_swimmers_submitted_by_email', 'swimmers', ['submitted_by_email']
    )

    # Parent profiles
    op.create_table(
        'parent_profiles',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=False),
        sa.Column('phone_number', sa.String(length=32), nullable=True),
        sa.Column('relationship', sa.String(length=50), nullable=True),
        sa.Column('emergency_contact_name', sa.String(length=200), nullable=True),
        sa.Column(
            'emergency_contact_relationship', sa.String(length=50), nullable=True
        ),
        sa.Column('emergency_contact_phone', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id'),
    )
    op.create_index(
        'ix_parent_profiles_email', 'parent_profiles', ['email'], unique=True
    )

    # Consents
    op.create_table(
        'registration_consents',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.String(), nullable=True),
        sa.Column('swimmer_id', sa.Uuid(), nullable=False),
        sa.Column('submitted_by_email', sa.String(), nullable=True),
        sa.Column('data_accuracy', sa.Boolean(), nullable=False),
        sa.Column('code_of_conduct', sa.Boolean(), nullable=False),
        sa.Column('media_consent', sa.Boolean(), nullable=False),
        sa.Column('consent_text', sa.Text(), nullable=False),
        sa.Column('consent_version', sa.String(length=32), nullable=False),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['swimmer_id'], ['swimmers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_registration_consents_owner_id', 'registration_consents', ['owner_id']
    )
    op.create_index(
        'ix_registration_consents_swimmer_id',
        'registration_consents',
        ['swimmer_id'],
    )
    op.create_index(
        'ix_registration_consents_submitted_by_email',
        'registration_consents',
        ['submitted_by_email'],
    )

    # Invoices
    op.create_table(
        'invoices',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.String(), nullable=True),
        sa.Column('primary_swimmer_id', sa.Uuid(), nullable=True),
        sa.Column('payer_email', sa.String(), nullable=True),
        sa.Column('status', invoice_status, nullable=False),
        sa.Column('total_amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('transaction_reference', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['primary_swimmer_id'], ['swimmers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_invoices_owner_id', 'invoices', ['owner_id'])
    op.create_index('ix_invoices_payer_email', 'invoices', ['payer_email'])

    op.create_table(
        'invoice_line_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('invoice_id', sa.Uuid(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('unit_amount', sa.Float(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_invoice_line_items_invoice_id', 'invoice_line_items', ['invoice_id']
    )

    # Payments
    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('invoice_id', sa.Uuid(), nullable=False),
        sa.Column('reference', sa.String(length=64), nullable=False),
        sa.Column('provider', payment_provider, nullable=True),
        sa.Column('provider_reference', sa.String(length=128), nullable=True),
        sa.Column('transaction_reference', sa.String(length=128), nullable=True),
        sa.Column('status', payment_status, nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('channel', sa.String(length=32), nullable=True),
        sa.Column('payer_email', sa.String(), nullable=True),
        sa.Column('payer_phone', sa.String(length=32), nullable=True),
        sa.Column('correlation', JSONB(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column(
            'needs_review', sa.Boolean(), server_default='false', nullable=False
        ),
        sa.Column('review_reason', sa.Text(), nullable=True),
        sa.Column('initiated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payments_invoice_id', 'payments', ['invoice_id'])
    op.create_index('ix_payments_reference', 'payments', ['reference'], unique=True)
    op.create_index(
        'ix_payments_provider_reference',
        'payments',
        ['provider_reference'],
        unique=True,
    )

    # Receipts
    op.create_table(
        'receipts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('payment_id', sa.Uuid(), nullable=False),
        sa.Column('invoice_id', sa.Uuid(), nullable=False),
        sa.Column('receipt_number', sa.String(length=64), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('channel', sa.String(length=32), nullable=True),
        sa.Column('payer_name', sa.String(), nullable=True),
        sa.Column('payer_email', sa.String(), nullable=True),
        sa.Column('snapshot', JSONB(), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id']),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_id'),
    )
    op.create_index('ix_receipts_invoice_id', 'receipts', ['invoice_id'])
    op.create_index(
        'ix_receipts_receipt_number', 'receipts', ['receipt_number'], unique=True
    )

    op.create_table(
        'receipt_sequence',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('payment_id', sa.Uuid(), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # Notification audit log
    op.create_table(
        'payment_notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('source', notification_source, nullable=False),
        sa.Column('provider_reference', sa.String(length=128), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=True),
        sa.Column('disposition', notification_disposition, nullable=False),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('payload', JSONB(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_payment_notifications_provider_reference',
        'payment_notifications',
        ['provider_reference'],
    )


def downgrade() -> None:
    """Downgrade schema - Drop registration billing tables."""
    op.drop_table('payment_notifications')
    op.drop_table('receipt_sequence')
    op.drop_table('receipts')
    op.drop_table('payments')
    op.drop_table('invoice_line_items')
    op.drop_table('invoices')
    op.drop_table('registration_consents')
    op.drop_table('parent_profiles')
    op.drop_table('swimmers')

    bind = op.get_bind()
    for enum in (
        notification_disposition,
        notification_source,
        swimmer_status,
        payment_provider,
        payment_status,
        invoice_status,
    ):
        enum.drop(bind, checkfirst=True)
