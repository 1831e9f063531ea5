"""
Database models for the ISP diagnostics backend
"""
from datetime import datetime

from ispdiag import db
from ispdiag.crypto import decrypt, encrypt


def _iso(value):
    return value.isoformat() if value else None


class TimestampMixin:
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Tenant(db.Model, TimestampMixin):
    __tablename__ = 'tenants'

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, default=True)


class ApplicationSettings(db.Model, TimestampMixin):
    __tablename__ = 'application_settings'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), unique=True, nullable=False)
    admin_notification_emails = db.Column(db.JSON, default=list)


class MikroTikRouter(db.Model, TimestampMixin):
    __tablename__ = 'mikrotik_routers'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    location = db.Column(db.String(100))

    # Connection
    ip_address = db.Column(db.String(45), nullable=False)
    api_port = db.Column(db.Integer, default=8728)
    username = db.Column(db.String(50), nullable=False)
    password_encrypted = db.Column(db.String(255))

    # Status
    is_core_router = db.Column(db.Boolean, default=False)
    is_online = db.Column(db.Boolean, default=False)
    last_checked = db.Column(db.DateTime)

    @property
    def password(self):
        return decrypt(self.password_encrypted) if self.password_encrypted else ''

    @password.setter
    def password(self, value):
        self.password_encrypted = encrypt(value) if value else None

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            'id': self.id,
            'name': self.name,
            'ip_address': self.ip_address,
            'api_port': self.api_port,
            'is_core_router': self.is_core_router,
            'is_online': self.is_online,
            'last_checked': _iso(self.last_checked),
        }


class Building(db.Model, TimestampMixin):
    __tablename__ = 'buildings'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)


class Device(db.Model, TimestampMixin):
    __tablename__ = 'devices'
    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'mac_address', name='uq_devices_tenant_mac'),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    router_id = db.Column(db.Integer, db.ForeignKey('mikrotik_routers.id'), nullable=False)

    ip_address = db.Column(db.String(45), nullable=False)
    mac_address = db.Column(db.String(17), nullable=False)
    device_type = db.Column(db.String(20), nullable=False)  # Access, Station
    status = db.Column(db.String(10), nullable=False, default='DOWN')  # UP, DOWN
    last_seen = db.Column(db.DateTime)
    last_checked = db.Column(db.DateTime)

    # Plain integer, not a foreign key: a deleted parent leaves a dangling reference
    parent_id = db.Column(db.Integer, index=True)
    physical_building_id = db.Column(db.Integer, db.ForeignKey('buildings.id'))

    device_name = db.Column(db.String(100))
    device_model = db.Column(db.String(100))
    ssid = db.Column(db.String(64))

    router = db.relationship('MikroTikRouter')
    physical_building = db.relationship('Building')

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            'id': self.id,
            'device_name': self.device_name,
            'device_type': self.device_type,
            'ip_address': self.ip_address,
            'mac_address': self.mac_address,
            'status': self.status,
            'parent_id': self.parent_id,
            'router_id': self.router_id,
            'ssid': self.ssid,
            'last_seen': _iso(self.last_seen),
        }


class DowntimeLog(db.Model):
    __tablename__ = 'downtime_logs'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    device_id = db.Column(db.Integer, db.ForeignKey('devices.id', ondelete='CASCADE'), nullable=False, index=True)
    down_start_time = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    down_end_time = db.Column(db.DateTime)
    duration_seconds = db.Column(db.Integer)

    def to_dict(self):
        return {
            'id': self.id,
            'device_id': self.device_id,
            'down_start_time': _iso(self.down_start_time),
            'down_end_time': _iso(self.down_end_time),
            'duration_seconds': self.duration_seconds,
        }


class MikroTikUser(db.Model, TimestampMixin):
    __tablename__ = 'mikrotik_users'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    router_id = db.Column(db.Integer, db.ForeignKey('mikrotik_routers.id'))

    service_type = db.Column(db.String(10), nullable=False, default='pppoe')  # pppoe, static
    username = db.Column(db.String(80), nullable=False)
    official_name = db.Column(db.String(120))
    mobile_number = db.Column(db.String(20))
    ip_address = db.Column(db.String(45))
    expiry_date = db.Column(db.DateTime, nullable=False)

    is_online = db.Column(db.Boolean, default=False)
    last_checked = db.Column(db.DateTime)

    station_id = db.Column(db.Integer, db.ForeignKey('devices.id'))
    building_id = db.Column(db.Integer, db.ForeignKey('buildings.id'))
    apartment_house_number = db.Column(db.String(20))

    router = db.relationship('MikroTikRouter')
    station = db.relationship('Device')
    building = db.relationship('Building')

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            'id': self.id,
            'username': self.username,
            'official_name': self.official_name,
            'service_type': self.service_type,
            'ip_address': self.ip_address,
            'expiry_date': _iso(self.expiry_date),
            'is_online': self.is_online,
            'last_checked': _iso(self.last_checked),
            'station_id': self.station_id,
            'building_id': self.building_id,
        }


class UserDowntimeLog(db.Model):
    __tablename__ = 'user_downtime_logs'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('mikrotik_users.id', ondelete='CASCADE'), nullable=False, index=True)
    down_start_time = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    down_end_time = db.Column(db.DateTime)
    duration_seconds = db.Column(db.Integer)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'down_start_time': _iso(self.down_start_time),
            'down_end_time': _iso(self.down_end_time),
            'duration_seconds': self.duration_seconds,
        }


class DiagnosticLog(db.Model):
    __tablename__ = 'diagnostic_logs'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    mikrotik_user_id = db.Column(db.Integer, db.ForeignKey('mikrotik_users.id'), index=True)
    target_entity = db.Column(db.String(120))
    target_entity_type = db.Column(db.String(10), default='User')  # User, Device
    steps = db.Column(db.JSON, nullable=False, default=list)
    final_conclusion = db.Column(db.Text)
    status = db.Column(db.String(10))  # Success, Failure, Warning
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'mikrotik_user_id': self.mikrotik_user_id,
            'target_entity': self.target_entity,
            'target_entity_type': self.target_entity_type,
            'steps': list(self.steps or []),
            'final_conclusion': self.final_conclusion,
            'status': self.status,
            'created_at': _iso(self.created_at),
        }


class Notification(db.Model):
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(30), nullable=False, default='device_status')
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'message': self.message,
            'type': self.type,
            'is_read': self.is_read,
            'created_at': _iso(self.created_at),
        }


class HotspotUser(db.Model, TimestampMixin):
    __tablename__ = 'hotspot_users'
    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'username', name='uq_hotspot_users_tenant_username'),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    router_id = db.Column(db.Integer, db.ForeignKey('mikrotik_routers.id'), nullable=False)
    username = db.Column(db.String(80), nullable=False)
    password = db.Column(db.String(80), nullable=False)
    server = db.Column(db.String(50), default='all')
    profile = db.Column(db.String(50), default='default')
    time_limit = db.Column(db.String(20))
    data_limit = db.Column(db.String(20))

    def to_dict(self):
        return {
            'id': self.id,
            'router_id': self.router_id,
            'username': self.username,
            'server': self.server,
            'profile': self.profile,
            'time_limit': self.time_limit,
            'data_limit': self.data_limit,
        }
