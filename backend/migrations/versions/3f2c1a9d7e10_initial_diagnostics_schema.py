"""initial_diagnostics_schema

Revision ID: 3f2c1a9d7e10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f2c1a9d7e10'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade():
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tenants_slug', 'tenants', ['slug'], unique=True)

    op.create_table(
        'application_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('admin_notification_emails', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id'),
    )

    op.create_table(
        'mikrotik_routers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('location', sa.String(length=100), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=False),
        sa.Column('api_port', sa.Integer(), nullable=True),
        sa.Column('username', sa.String(length=50), nullable=False),
        sa.Column('password_encrypted', sa.String(length=255), nullable=True),
        sa.Column('is_core_router', sa.Boolean(), nullable=True),
        sa.Column('is_online', sa.Boolean(), nullable=True),
        sa.Column('last_checked', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_mikrotik_routers_tenant_id', 'mikrotik_routers', ['tenant_id'])

    op.create_table(
        'buildings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_buildings_tenant_id', 'buildings', ['tenant_id'])

    op.create_table(
        'devices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('router_id', sa.Integer(), nullable=False),
        sa.Column('ip_address', sa.String(length=45), nullable=False),
        sa.Column('mac_address', sa.String(length=17), nullable=False),
        sa.Column('device_type', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=10), nullable=False),
        sa.Column('last_seen', sa.DateTime(), nullable=True),
        sa.Column('last_checked', sa.DateTime(), nullable=True),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.Column('physical_building_id', sa.Integer(), nullable=True),
        sa.Column('device_name', sa.String(length=100), nullable=True),
        sa.Column('device_model', sa.String(length=100), nullable=True),
        sa.Column('ssid', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['router_id'], ['mikrotik_routers.id']),
        sa.ForeignKeyConstraint(['physical_building_id'], ['buildings.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'mac_address', name='uq_devices_tenant_mac'),
    )
    op.create_index('ix_devices_tenant_id', 'devices', ['tenant_id'])
    op.create_index('ix_devices_parent_id', 'devices', ['parent_id'])

    op.create_table(
        'downtime_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('device_id', sa.Integer(), nullable=False),
        sa.Column('down_start_time', sa.DateTime(), nullable=False),
        sa.Column('down_end_time', sa.DateTime(), nullable=True),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['device_id'], ['devices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_downtime_logs_tenant_id', 'downtime_logs', ['tenant_id'])
    op.create_index('ix_downtime_logs_device_id', 'downtime_logs', ['device_id'])

    op.create_table(
        'mikrotik_users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('router_id', sa.Integer(), nullable=True),
        sa.Column('service_type', sa.String(length=10), nullable=False),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('official_name', sa.String(length=120), nullable=True),
        sa.Column('mobile_number', sa.String(length=20), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('expiry_date', sa.DateTime(), nullable=False),
        sa.Column('is_online', sa.Boolean(), nullable=True),
        sa.Column('last_checked', sa.DateTime(), nullable=True),
        sa.Column('station_id', sa.Integer(), nullable=True),
        sa.Column('building_id', sa.Integer(), nullable=True),
        sa.Column('apartment_house_number', sa.String(length=20), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['router_id'], ['mikrotik_routers.id']),
        sa.ForeignKeyConstraint(['station_id'], ['devices.id']),
        sa.ForeignKeyConstraint(['building_id'], ['buildings.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_mikrotik_users_tenant_id', 'mikrotik_users', ['tenant_id'])

    op.create_table(
        'user_downtime_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('down_start_time', sa.DateTime(), nullable=False),
        sa.Column('down_end_time', sa.DateTime(), nullable=True),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['user_id'], ['mikrotik_users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_downtime_logs_tenant_id', 'user_downtime_logs', ['tenant_id'])
    op.create_index('ix_user_downtime_logs_user_id', 'user_downtime_logs', ['user_id'])

    op.create_table(
        'diagnostic_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('mikrotik_user_id', sa.Integer(), nullable=True),
        sa.Column('target_entity', sa.String(length=120), nullable=True),
        sa.Column('target_entity_type', sa.String(length=10), nullable=True),
        sa.Column('steps', sa.JSON(), nullable=False),
        sa.Column('final_conclusion', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=10), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['mikrotik_user_id'], ['mikrotik_users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_diagnostic_logs_tenant_id', 'diagnostic_logs', ['tenant_id'])
    op.create_index('ix_diagnostic_logs_mikrotik_user_id', 'diagnostic_logs', ['mikrotik_user_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_tenant_id', 'notifications', ['tenant_id'])

    op.create_table(
        'hotspot_users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('router_id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('password', sa.String(length=80), nullable=False),
        sa.Column('server', sa.String(length=50), nullable=True),
        sa.Column('profile', sa.String(length=50), nullable=True),
        sa.Column('time_limit', sa.String(length=20), nullable=True),
        sa.Column('data_limit', sa.String(length=20), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['router_id'], ['mikrotik_routers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'username', name='uq_hotspot_users_tenant_username'),
    )
    op.create_index('ix_hotspot_users_tenant_id', 'hotspot_users', ['tenant_id'])


def downgrade():
    for table in (
        'hotspot_users',
        'notifications',
        'diagnostic_logs',
        'user_downtime_logs',
        'mikrotik_users',
        'downtime_logs',
        'devices',
        'buildings',
        'mikrotik_routers',
        'application_settings',
        'tenants',
    ):
        op.drop_table(table)
