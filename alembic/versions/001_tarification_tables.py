"""Tarification tables

Revision ID: 001_tarification_tables
Revises:
Create Date: 2026-10-19

Adds:
- broker_pricing_settings: Exade credentials and commercial defaults per broker
- devis: quotes with frozen fee split and lifecycle flags
- activities: append-only quote event feed
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_tarification_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # 1. Broker settings
    op.create_table(
        'broker_pricing_settings',
        sa.Column('broker_id', sa.String(64), primary_key=True),

        # Exade credentials
        sa.Column('exade_partner_code', sa.String(20), server_default='815178', nullable=False),
        sa.Column('exade_licence_key', sa.String(255), server_default='', nullable=False),
        sa.Column('exade_endpoint_override', sa.String(500), nullable=True),
        sa.Column('exade_enabled', sa.Boolean, server_default='true', nullable=False),

        # Commercial defaults
        sa.Column('default_commission_code', sa.String(20), nullable=True),
        sa.Column('default_broker_fee_minor', sa.BigInteger, server_default='15000', nullable=False),
        sa.Column('default_apporteur_pct', sa.Numeric(5, 2), server_default='80', nullable=False),
        sa.Column('subscription_plan', sa.String(20), server_default='free', nullable=False),  # free, pro, unlimited

        *_timestamps(),
    )

    # 2. Quotes
    op.create_table(
        'devis',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('dossier_id', sa.String(64), nullable=False),
        sa.Column('broker_id', sa.String(64), nullable=False),
        sa.Column('apporteur_id', sa.String(64), nullable=True),

        # Selected offer
        sa.Column('tariff_id', sa.String(50), nullable=False),
        sa.Column('insurer', sa.String(255), server_default='', nullable=False),
        sa.Column('product', sa.String(255), server_default='', nullable=False),
        sa.Column('commission_code', sa.String(20), nullable=True),

        # Amounts in centimes
        sa.Column('total_cost_minor', sa.BigInteger, nullable=False),
        sa.Column('monthly_minor', sa.BigInteger, nullable=True),
        sa.Column('broker_fee_minor', sa.BigInteger, server_default='0', nullable=False),

        # Financial split
        sa.Column('apporteur_pct', sa.Numeric(5, 2), server_default='0', nullable=False),
        sa.Column('apporteur_amount_minor', sa.BigInteger, server_default='0', nullable=False),
        sa.Column('platform_fee_pct', sa.Numeric(5, 2), server_default='0', nullable=False),
        sa.Column('platform_fee_amount_minor', sa.BigInteger, server_default='0', nullable=False),
        sa.Column('broker_net_minor', sa.BigInteger, server_default='0', nullable=False),

        # Lifecycle
        sa.Column('status', sa.String(20), server_default='generated', nullable=False),
        sa.Column('locked', sa.Boolean, server_default='false', nullable=False),
        sa.Column('push_pending', sa.Boolean, server_default='false', nullable=False),
        sa.Column('production_simulation_id', sa.String(50), nullable=True),
        sa.Column('last_push_error', sa.Text, nullable=True),

        # Actors and timestamps
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_by', sa.String(64), nullable=True),
        sa.Column('refused_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refused_by', sa.String(64), nullable=True),
        sa.Column('refusal_reason', sa.Text, nullable=True),
        sa.Column('pushed_at', sa.DateTime(timezone=True), nullable=True),

        *_timestamps(),
    )
    op.create_index('ix_devis_dossier_id', 'devis', ['dossier_id'])
    op.create_index('ix_devis_broker_id', 'devis', ['broker_id'])
    op.create_index('ix_devis_status', 'devis', ['status'])

    # 3. Activity feed
    op.create_table(
        'activities',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('quote_id', sa.String(36), nullable=True),
        sa.Column('dossier_id', sa.String(64), nullable=True),
        sa.Column('actor', sa.String(64), nullable=True),
        sa.Column('payload', sa.JSON, nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_activities_event_type', 'activities', ['event_type'])
    op.create_index('ix_activities_quote_id', 'activities', ['quote_id'])
    op.create_index('ix_activities_dossier_id', 'activities', ['dossier_id'])


def downgrade() -> None:
    op.drop_index('ix_activities_dossier_id', table_name='activities')
    op.drop_index('ix_activities_quote_id', table_name='activities')
    op.drop_index('ix_activities_event_type', table_name='activities')
    op.drop_table('activities')

    op.drop_index('ix_devis_status', table_name='devis')
    op.drop_index('ix_devis_broker_id', table_name='devis')
    op.drop_index('ix_devis_dossier_id', table_name='devis')
    op.drop_table('devis')

    op.drop_table('broker_pricing_settings')
