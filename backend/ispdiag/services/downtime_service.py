"""
Downtime log lifecycle for devices and subscribers.

A device or user with an open log (no ``down_end_time``) is in an outage.
Logs are opened on the UP->DOWN edge and closed on the DOWN->UP edge; a
repeated DOWN observation never opens a second log.
"""
import logging
from datetime import datetime
from typing import Optional

from ispdiag import db
from ispdiag.models import DowntimeLog, UserDowntimeLog

logger = logging.getLogger(__name__)

WENT_DOWN = 'went_down'
CAME_UP = 'came_up'
STILL_DOWN = 'still_down'
STILL_UP = 'still_up'


def _open_log_query(model, owner_column, owner_id):
    return model.query.filter(
        owner_column == owner_id,
        model.down_end_time.is_(None),
    ).order_by(model.down_start_time.desc())


def _close(log, now: datetime):
    log.down_end_time = now
    log.duration_seconds = int(round((now - log.down_start_time).total_seconds()))
    return log


# ==================== DEVICES ====================

def find_open_device_log(device) -> Optional[DowntimeLog]:
    return _open_log_query(DowntimeLog, DowntimeLog.device_id, device.id).first()


def open_device_downtime(device, now: Optional[datetime] = None) -> Optional[DowntimeLog]:
    """Create a log unless one is already open. Returns the new log or None."""
    if find_open_device_log(device) is not None:
        return None
    log = DowntimeLog(
        tenant_id=device.tenant_id,
        device_id=device.id,
        down_start_time=now or datetime.utcnow(),
    )
    db.session.add(log)
    db.session.flush()
    logger.info(f"Device {device.ip_address} is DOWN. Opened downtime log {log.id}.")
    return log


def close_device_downtime(device, now: Optional[datetime] = None) -> Optional[DowntimeLog]:
    log = find_open_device_log(device)
    if log is None:
        return None
    _close(log, now or datetime.utcnow())
    logger.info(f"Device {device.ip_address} is back UP after {log.duration_seconds}s.")
    return log


def apply_device_status(device, is_up: bool, now: Optional[datetime] = None) -> str:
    """Record one observation of ``device`` and return the transition it caused.

    Only edges that touched a downtime log count as transitions, so a device
    created DOWN and seen UP for the first time reports ``STILL_UP``.
    """
    now = now or datetime.utcnow()
    device.last_checked = now
    if is_up:
        closed = close_device_downtime(device, now) if device.status == 'DOWN' else None
        device.status = 'UP'
        device.last_seen = now
        return CAME_UP if closed is not None else STILL_UP

    opened = open_device_downtime(device, now)
    device.status = 'DOWN'
    return WENT_DOWN if opened is not None else STILL_DOWN


# ==================== USERS ====================

def find_open_user_log(user) -> Optional[UserDowntimeLog]:
    return _open_log_query(UserDowntimeLog, UserDowntimeLog.user_id, user.id).first()


def open_user_downtime(user, now: Optional[datetime] = None) -> Optional[UserDowntimeLog]:
    if find_open_user_log(user) is not None:
        return None
    log = UserDowntimeLog(
        tenant_id=user.tenant_id,
        user_id=user.id,
        down_start_time=now or datetime.utcnow(),
    )
    db.session.add(log)
    db.session.flush()
    logger.info(f"User {user.username} went offline. Opened downtime log {log.id}.")
    return log


def close_user_downtime(user, now: Optional[datetime] = None) -> Optional[UserDowntimeLog]:
    log = find_open_user_log(user)
    if log is None:
        return None
    _close(log, now or datetime.utcnow())
    logger.info(f"User {user.username} came back online after {log.duration_seconds}s.")
    return log


def apply_user_status(user, is_online: bool, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    was_online = bool(user.is_online)
    user.last_checked = now
    user.is_online = is_online

    if is_online:
        if was_online:
            return STILL_UP
        closed = close_user_downtime(user, now)
        return CAME_UP if closed is not None else STILL_UP

    if not was_online:
        return STILL_DOWN
    open_user_downtime(user, now)
    return WENT_DOWN
