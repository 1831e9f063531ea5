from __future__ import annotations

from datetime import datetime
import hashlib
import json
from typing import Any, Callable, Dict, Optional, Tuple

import redis
from flask import current_app

from ispdiag import celery
from ispdiag.models import Tenant
from ispdiag.services.monitoring_service import MonitoringService


def _get_redis_client() -> Optional[redis.Redis]:
    redis_url = current_app.config.get('REDIS_URL')
    if not redis_url:
        return None
    try:
        return redis.from_url(redis_url, decode_responses=True)
    except Exception:
        current_app.logger.warning('Redis unavailable for task locking; continuing without lock.')
        return None


def _try_acquire_lock(lock_key: str, ttl_seconds: int) -> Tuple[Optional[redis.Redis], Optional[str], bool]:
    client = _get_redis_client()
    if client is None:
        return None, None, True

    token = hashlib.sha256(f"{lock_key}:{datetime.utcnow().isoformat()}".encode('utf-8')).hexdigest()
    try:
        acquired = bool(client.set(lock_key, token, nx=True, ex=ttl_seconds))
        return client, token, acquired
    except Exception:
        current_app.logger.warning('Failed to acquire Redis lock; continuing task execution.')
        return None, None, True


def _release_lock(client: Optional[redis.Redis], lock_key: str, token: Optional[str]) -> None:
    if client is None or token is None:
        return
    try:
        current = client.get(lock_key)
        if current == token:
            client.delete(lock_key)
    except Exception:
        current_app.logger.warning('Failed to release Redis task lock: %s', lock_key)


def _run_sweep(name: str, interval_key: str,
               sweep: Callable[[MonitoringService, int], Dict[str, Any]]) -> Dict[str, Any]:
    """Run ``sweep`` for every active tenant, at most once per interval across workers."""
    ttl = max(1, int(current_app.config.get(interval_key, 60)) - 1)
    lock_key = f"tasks:{name}"
    lock_client, lock_token, acquired = _try_acquire_lock(lock_key, ttl_seconds=ttl)
    if not acquired:
        current_app.logger.info('Skipping %s because lock is already held.', name)
        return {'skipped': True}

    results: Dict[str, Any] = {}
    try:
        service = MonitoringService()
        tenants = Tenant.query.filter_by(is_active=True).order_by(Tenant.id).all()
        current_app.logger.info('Starting %s for %s tenants.', name, len(tenants))
        for tenant in tenants:
            try:
                results[str(tenant.id)] = sweep(service, tenant.id)
            except Exception as exc:
                current_app.logger.error('%s failed for tenant %s: %s', name, tenant.id, exc, exc_info=True)
                results[str(tenant.id)] = {'error': str(exc)}
        current_app.logger.info('Finished %s: %s', name, json.dumps(results, ensure_ascii=True, default=str))
        return results
    finally:
        _release_lock(lock_client, lock_key, lock_token)


@celery.task(name='ispdiag.tasks.sweep_devices')
def sweep_devices() -> Dict[str, Any]:
    """Ping every device of every tenant and reconcile UP/DOWN state."""
    return _run_sweep('sweep_devices', 'DEVICE_SWEEP_INTERVAL_SECONDS',
                      lambda service, tenant_id: service.check_all_devices(tenant_id))


@celery.task(name='ispdiag.tasks.sweep_users')
def sweep_users() -> Dict[str, Any]:
    """Check subscriber sessions and record user downtime."""
    return _run_sweep('sweep_users', 'USER_SWEEP_INTERVAL_SECONDS',
                      lambda service, tenant_id: service.perform_user_status_check(tenant_id))


@celery.task(name='ispdiag.tasks.sweep_routers')
def sweep_routers() -> Dict[str, Any]:
    return _run_sweep('sweep_routers', 'ROUTER_SWEEP_INTERVAL_SECONDS',
                      lambda service, tenant_id: service.perform_router_status_check(tenant_id))
