"""Core schema: users, stations, charges, platform earnings, change events

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.String(128), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('role', sa.String(10), nullable=False, server_default='Driver'),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_payment_method_id', sa.String(255), nullable=True),
        sa.Column('stripe_account_id', sa.String(255), nullable=True),
        sa.Column('wallet_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('revision', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('wallet_balance_cents >= 0', name='ck_user_wallet_non_negative'),
    )
    op.create_index('ix_users_email', 'users', ['email'])

    op.create_table('stations',
        sa.Column('id', sa.String(160), nullable=False),
        sa.Column('owner_id', sa.String(128), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('address', sa.String(), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('charge_rate', sa.Numeric(10, 4), nullable=False),
        sa.Column('adapter_types', sa.JSON(), nullable=False),
        sa.Column('network_type', sa.String(10), nullable=False, server_default='In-net'),
        sa.Column('photo_url', sa.String(), nullable=True),
        sa.Column('available', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('status', sa.String(10), nullable=False, server_default='available'),
        sa.Column('driver_id', sa.String(128), nullable=True),
        sa.Column('en_route_at', sa.DateTime(), nullable=True),
        sa.Column('revision', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stations_owner_id', 'stations', ['owner_id'])
    op.create_index('ix_stations_status', 'stations', ['status'])
    op.create_index('ix_stations_driver_id', 'stations', ['driver_id'])
    op.create_index('ix_stations_status_en_route_at', 'stations', ['status', 'en_route_at'])

    op.create_table('charges',
        sa.Column('id', sa.String(160), nullable=False),
        sa.Column('station_id', sa.String(160), sa.ForeignKey('stations.id'), nullable=False),
        sa.Column('driver_id', sa.String(128), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('rate_at_close', sa.Numeric(10, 4), nullable=True),
        sa.Column('total_cost', sa.Numeric(12, 4), nullable=True),
        sa.Column('status', sa.String(12), nullable=False, server_default='pending'),
        sa.Column('payment_intent_id', sa.String(255), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=True),
        sa.Column('platform_share_cents', sa.Integer(), nullable=True),
        sa.Column('owner_share_cents', sa.Integer(), nullable=True),
        sa.Column('payout_method', sa.String(10), nullable=True),
        sa.Column('transfer_id', sa.String(255), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('reminder_state', sa.String(12), nullable=False, server_default='none'),
        sa.Column('revision', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_charges_station_id', 'charges', ['station_id'])
    op.create_index('ix_charges_driver_id', 'charges', ['driver_id'])
    op.create_index('ix_charges_status', 'charges', ['status'])
    op.create_index('ix_charges_driver_status', 'charges', ['driver_id', 'status'])

    op.create_table('platform_earnings',
        sa.Column('id', sa.String(180), nullable=False),
        sa.Column('session_id', sa.String(160), sa.ForeignKey('charges.id'), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', name='uq_platform_earning_per_session'),
    )

    op.create_table('change_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('collection', sa.String(32), nullable=False),
        sa.Column('document_id', sa.String(160), nullable=False),
        sa.Column('before_json', sa.Text(), nullable=True),
        sa.Column('after_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_change_events_document_id', 'change_events', ['document_id'])
    op.create_index('ix_change_events_pending', 'change_events', ['delivered_at', 'id'])


def downgrade():
    op.drop_index('ix_change_events_pending', 'change_events')
    op.drop_index('ix_change_events_document_id', 'change_events')
    op.drop_table('change_events')
    op.drop_table('platform_earnings')
    op.drop_index('ix_charges_driver_status', 'charges')
    op.drop_index('ix_charges_status', 'charges')
    op.drop_index('ix_charges_driver_id', 'charges')
    op.drop_index('ix_charges_station_id', 'charges')
    op.drop_table('charges')
    op.drop_index('ix_stations_status_en_route_at', 'stations')
    op.drop_index('ix_stations_driver_id', 'stations')
    op.drop_index('ix_stations_status', 'stations')
    op.drop_index('ix_stations_owner_id', 'stations')
    op.drop_table('stations')
    op.drop_index('ix_users_email', 'users')
    op.drop_table('users')
