"""Initial schema - devices and readings tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create devices table
    op.create_table(
        'devices',
        sa.Column('device_id', sa.String(length=64), nullable=False),
        sa.Column('device_type', sa.String(length=50), nullable=True),
        sa.Column('name', sa.String(length=100), nullable=True),
        sa.Column('hub_id', sa.String(length=64), nullable=True),
        sa.Column('connected', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('last_seen', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('device_id')
    )
    op.create_index('ix_devices_device_type', 'devices', ['device_type'], unique=False)

    # Create readings table (device_id is a logical reference, no FK:
    # readings from devices that never connected are still stored)
    op.create_table(
        'readings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('device_id', sa.String(length=64), nullable=False),
        sa.Column('heart_rate', sa.Integer(), nullable=True),
        sa.Column('cadence', sa.Integer(), nullable=True),
        sa.Column('cadence_wheel', sa.Integer(), nullable=True),
        sa.Column('power', sa.Integer(), nullable=True),
        sa.Column('speed', sa.Float(), nullable=True),
        sa.Column('jumps', sa.Integer(), nullable=True),
        sa.Column('battery', sa.Integer(), nullable=True),
        sa.Column('boxing_hand', sa.String(length=16), nullable=True),
        sa.Column('boxing_punch_type', sa.String(length=32), nullable=True),
        sa.Column('boxing_power', sa.Integer(), nullable=True),
        sa.Column('boxing_speed', sa.Float(), nullable=True),
        sa.Column('steps', sa.Integer(), nullable=True),
        sa.Column('calories', sa.Float(), nullable=True),
        sa.Column('temperature', sa.Float(), nullable=True),
        sa.Column('oxygen', sa.Integer(), nullable=True),
        sa.Column('sos_alert', sa.Boolean(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_readings_device_id', 'readings', ['device_id'], unique=False)
    op.create_index('ix_readings_timestamp', 'readings', ['timestamp'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_readings_timestamp', table_name='readings')
    op.drop_index('ix_readings_device_id', table_name='readings')
    op.drop_table('readings')
    op.drop_index('ix_devices_device_type', table_name='devices')
    op.drop_table('devices')
