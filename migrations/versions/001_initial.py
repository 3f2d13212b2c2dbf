"""Initial migration - create sync tables

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


def upgrade() -> None:
    # Create sites table
    op.create_table(
        'sites',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('external_id', sa.JSON(), nullable=True),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('city', sa.String(200), nullable=True),
        sa.Column('country', sa.String(10), nullable=True),
        sa.Column('upstream_snapshot', sa.JSON(), nullable=True),
        sa.Column('last_data_update', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_sites_lat_lng', 'sites', ['latitude', 'longitude'])
    op.create_index('ix_sites_name', 'sites', ['name'])

    # Create sensors table
    op.create_table(
        'sensors',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('site_id', sa.String(36), sa.ForeignKey('sites.id'), nullable=False),
        sa.Column('external_sensor_id', sa.String(50), nullable=True),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('parameter_id', sa.Integer(), nullable=True),
        sa.Column('parameter_name', sa.String(50), nullable=False),
        sa.Column('parameter_units', sa.String(30), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('parameter_display_name', sa.String(100), nullable=True),
        sa.Column('value', sa.Float(), nullable=True),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_simulated', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
    )
    op.create_index('ix_sensors_site_id', 'sensors', ['site_id'])
    op.create_index('ix_sensors_external_sensor_id', 'sensors', ['external_sensor_id'])

    # Create measurements table (hourly; one row per site/parameter/hour)
    op.create_table(
        'measurements',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('site_id', sa.String(36), sa.ForeignKey('sites.id'), nullable=False),
        sa.Column('parameter_id', sa.Integer(), nullable=True),
        sa.Column('parameter_name', sa.String(50), nullable=False),
        sa.Column('parameter_units', sa.String(30), nullable=True),
        sa.Column('parameter_display_name', sa.String(100), nullable=True),
        sa.Column('value', sa.Float(), nullable=False),
        sa.Column('is_simulated', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
    )
    op.create_index(
        'ix_measurements_site_param_ts', 'measurements',
        ['site_id', 'parameter_name', 'timestamp'],
    )
    op.create_index('ix_measurements_timestamp', 'measurements', ['timestamp'])

    # Create job_checkpoints table
    op.create_table(
        'job_checkpoints',
        sa.Column('job_id', sa.String(100), primary_key=True),
        sa.Column('last_run_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_offset', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_offset', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_sites', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('batches_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_batches', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_fully_complete', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('stats', sa.JSON(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
    )


def downgrade() -> None:
    op.drop_table('job_checkpoints')
    op.drop_table('measurements')
    op.drop_table('sensors')
    op.drop_table('sites')
