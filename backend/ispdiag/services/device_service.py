"""
Device lookups, live ping and downtime history
"""
import logging

from ispdiag.errors import BadRequestError, NotFoundError
from ispdiag.models import Device, DowntimeLog, MikroTikUser, UserDowntimeLog
from ispdiag.services import status_checker
from ispdiag.services.root_cause_service import find_core_router

logger = logging.getLogger(__name__)


def get_device(device_id, tenant_id):
    device = Device.query.filter_by(id=device_id, tenant_id=tenant_id).first()
    if device is None:
        raise NotFoundError('Device not found')
    return device


def ping_device(device_id, tenant_id):
    """Ping a device through the tenant's core router, without touching its status."""
    device = get_device(device_id, tenant_id)
    core_router = find_core_router(tenant_id)
    if core_router is None:
        raise BadRequestError('No core router is configured for this tenant to perform the check.')

    is_online = status_checker.check_cpe_status(device, core_router)
    logger.info(f"Live ping of {device.ip_address} via {core_router.name}: {'up' if is_online else 'down'}")
    return {'success': True, 'status': 'Reachable' if is_online else 'Unreachable'}


def get_device_downtime_logs(device_id, tenant_id):
    device = get_device(device_id, tenant_id)
    return (
        DowntimeLog.query.filter_by(device_id=device.id, tenant_id=tenant_id)
        .order_by(DowntimeLog.down_start_time.desc())
        .all()
    )


def get_user_downtime_logs(user_id, tenant_id):
    user = MikroTikUser.query.filter_by(id=user_id, tenant_id=tenant_id).first()
    if user is None:
        raise NotFoundError('Mikrotik User not found')
    return (
        UserDowntimeLog.query.filter_by(user_id=user.id, tenant_id=tenant_id)
        .order_by(UserDowntimeLog.down_start_time.desc())
        .all()
    )
