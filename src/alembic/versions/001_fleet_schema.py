"""Fleet schema: hosts and containers.

Revision ID: 001_fleet_schema
Revises:
Create Date: 2026-10-19

Creates:
- hosts: host agent endpoints with probe results
- containers: application instances, one owning host each
- active_job marker columns for startup recovery
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic
revision = '001_fleet_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'hosts',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('address', sa.String(512), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='unknown'),
        sa.Column('latency_ms', sa.Float(), nullable=True),
        sa.Column('last_probe_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_hosts_name', 'hosts', ['name'], unique=True)

    op.create_table(
        'containers',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(32), nullable=False),
        sa.Column('environment', sa.String(), nullable=False, server_default='development'),
        sa.Column('host_id', sa.String(), sa.ForeignKey('hosts.id'), nullable=False),
        sa.Column('container_name', sa.String(255), nullable=False),
        sa.Column('frontend', postgresql.JSONB(), nullable=False),
        sa.Column('apis', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('code_server_enabled', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('idle_timeouts', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column(
            'linked_container_id', sa.String(),
            sa.ForeignKey('containers.id'), nullable=True
        ),
        sa.Column('status', sa.String(), nullable=False, server_default='deploying'),
        sa.Column('status_message', sa.Text(), nullable=True),
        sa.Column('status_changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('token_hash', sa.String(), nullable=False),
        sa.Column('agent_version', sa.String(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('active_job', sa.String(), nullable=True),
        sa.Column('active_job_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_containers_slug', 'containers', ['slug'], unique=True)
    op.create_index('ix_containers_host_id', 'containers', ['host_id'])

    # Startup recovery scan (interrupted migration/rename)
    op.create_index(
        'idx_containers_active_job',
        'containers',
        ['active_job'],
        postgresql_where="active_job IS NOT NULL"
    )


def downgrade() -> None:
    op.drop_index('idx_containers_active_job', table_name='containers')
    op.drop_index('ix_containers_host_id', table_name='containers')
    op.drop_index('ix_containers_slug', table_name='containers')
    op.drop_table('containers')
    op.drop_index('ix_hosts_name', table_name='hosts')
    op.drop_table('hosts')
