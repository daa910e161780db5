"""Initial migration - create submissions, payment_events, and provider_credentials tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'submissions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenant_id', sa.String(36), nullable=True),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('payment_date', sa.DateTime(), nullable=True),
        sa.Column('payment_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index(
        'ix_submissions_payment_status_created_at', 'submissions', ['payment_status', 'created_at']
    )
    op.create_index('ix_submissions_tenant_id', 'submissions', ['tenant_id'])

    # Append-only; the application never updates or deletes rows here
    op.create_table(
        'payment_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('mp_payment_id', sa.String(64), nullable=False),
        sa.Column('mp_preference_id', sa.String(64), nullable=True),
        sa.Column('external_reference', sa.String(255), nullable=True),
        sa.Column('status', sa.String(50), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='BRL'),
        sa.Column('payer_email', sa.String(255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_payment_events_mp_payment_id', 'payment_events', ['mp_payment_id'])
    op.create_index('ix_payment_events_external_reference', 'payment_events', ['external_reference'])

    op.create_table(
        'provider_credentials',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('scope', sa.String(10), nullable=False, server_default='tenant'),
        sa.Column('tenant_id', sa.String(36), nullable=True, unique=True),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('public_key', sa.Text(), nullable=True),
        sa.Column('webhook_secret', sa.Text(), nullable=True),
        sa.Column('is_production', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_provider_credentials_scope', 'provider_credentials', ['scope'])


def downgrade() -> None:
    op.drop_index('ix_provider_credentials_scope', table_name='provider_credentials')
    op.drop_table('provider_credentials')

    op.drop_index('ix_payment_events_external_reference', table_name='payment_events')
    op.drop_index('ix_payment_events_mp_payment_id', table_name='payment_events')
    op.drop_table('payment_events')

    op.drop_index('ix_submissions_tenant_id', table_name='submissions')
    op.drop_index('ix_submissions_payment_status_created_at', table_name='submissions')
    op.drop_table('submissions')
