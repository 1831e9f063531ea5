"""
Hotspot user provisioning.

The router and the database are written separately. The router-side user is
created first; if the database write then fails, the router-side user is
removed again before the error is re-raised.
"""
import logging
from typing import Any, Dict

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ispdiag import db
from ispdiag.errors import BadRequestError, NotFoundError, RouterOperationError
from ispdiag.models import HotspotUser, MikroTikRouter
from ispdiag.services.router_client import RouterClient

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('router_id', 'username', 'password')


def _timeout() -> float:
    return current_app.config.get('ROUTER_CONNECT_TIMEOUT', 3)


def create_hotspot_user(data: Dict[str, Any], tenant_id: int) -> HotspotUser:
    missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
    if missing:
        raise BadRequestError(f"Missing required fields: {', '.join(missing)}")

    router = MikroTikRouter.query.filter_by(id=data['router_id'], tenant_id=tenant_id).first()
    if router is None:
        raise NotFoundError('Router not found')

    username = str(data['username']).strip()
    if HotspotUser.query.filter_by(tenant_id=tenant_id, username=username).first() is not None:
        raise BadRequestError('Hotspot user with this username already exists')

    hotspot_user = HotspotUser(
        tenant_id=tenant_id,
        router_id=router.id,
        username=username,
        password=str(data['password']),
        server=data.get('server') or 'all',
        profile=data.get('profile') or 'default',
        time_limit=data.get('time_limit'),
        data_limit=data.get('data_limit'),
    )

    try:
        with RouterClient.for_router(router, timeout=_timeout()) as client:
            client.add_hotspot_user(
                name=hotspot_user.username,
                password=hotspot_user.password,
                server=hotspot_user.server,
                profile=hotspot_user.profile,
                limit_uptime=hotspot_user.time_limit,
                limit_bytes_total=hotspot_user.data_limit,
            )
    except Exception as e:
        logger.error(f"Failed to create hotspot user {username} on router {router.name}: {e}")
        raise RouterOperationError(f'Failed to create hotspot user on router: {e}')

    try:
        db.session.add(hotspot_user)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Saving hotspot user {username} failed, removing it from router {router.name}: {e}")
        _remove_from_router(router, username)
        raise

    logger.info(f"Hotspot user {username} created on router {router.name}")
    return hotspot_user


def _remove_from_router(router: MikroTikRouter, username: str) -> None:
    try:
        with RouterClient.for_router(router, timeout=_timeout()) as client:
            if not client.remove_hotspot_user(username):
                logger.warning(f"Hotspot user {username} was not found on router {router.name} during rollback")
    except Exception as e:
        logger.error(f"Rollback of hotspot user {username} on router {router.name} failed: {e}")
