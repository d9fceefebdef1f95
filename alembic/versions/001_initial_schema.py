"""initial offload schema

Revision ID: 001
Revises:
Create Date: 2025-10-20 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Daily fleet-wide offload (Data Usage Timeline)
    op.create_table('offload_daily',
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('gigabytes', sa.Numeric(precision=16, scale=6), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint('gigabytes >= 0', name='offload_daily_gigabytes_check'),
        sa.PrimaryKeyConstraint('day')
    )

    # Per-device daily offload (NASID Daily)
    op.create_table('device_offload_daily',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('nas_id', sa.String(length=64), nullable=False),
        sa.Column('total_sessions', sa.Integer(), nullable=False),
        sa.Column('count_of_users', sa.Integer(), nullable=False),
        sa.Column('rejects', sa.Integer(), nullable=False),
        sa.Column('total_gbs', sa.Numeric(precision=16, scale=6), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_date', 'nas_id', name='uq_device_offload_daily_date_nas')
    )
    op.create_index('idx_device_offload_daily_nas_id', 'device_offload_daily', ['nas_id'], unique=False)
    op.create_index('idx_device_offload_daily_transaction_date', 'device_offload_daily', ['transaction_date'], unique=False)

    # Audit log, one row per pipeline run
    op.create_table('scrape_log',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('report', sa.String(length=20), nullable=False),
        sa.Column('nas_id', sa.String(length=64), nullable=True),
        sa.Column('source_filename', sa.Text(), nullable=True),
        sa.Column('rows_parsed', sa.Integer(), nullable=False),
        sa.Column('rows_upserted', sa.Integer(), nullable=False),
        sa.Column('rows_changed', sa.Integer(), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_text', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint("report IN ('aggregate','device')", name='scrape_log_report_check'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_scrape_log_created_at', 'scrape_log', ['created_at'], unique=False)

    # Devices visited by the tracked-devices loop
    op.create_table('tracked_devices',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('nas_id', sa.String(length=64), nullable=False),
        sa.Column('device_name', sa.String(length=200), nullable=True),
        sa.Column('priority', sa.String(length=20), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('added_to_tracked_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('last_scraped', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_tracked_devices_nas_id'), 'tracked_devices', ['nas_id'], unique=True)


def downgrade() -> None:
    op.drop_index(op.f('ix_tracked_devices_nas_id'), table_name='tracked_devices')
    op.drop_table('tracked_devices')
    op.drop_index('idx_scrape_log_created_at', table_name='scrape_log')
    op.drop_table('scrape_log')
    op.drop_index('idx_device_offload_daily_transaction_date', table_name='device_offload_daily')
    op.drop_index('idx_device_offload_daily_nas_id', table_name='device_offload_daily')
    op.drop_table('device_offload_daily')
    op.drop_table('offload_daily')
