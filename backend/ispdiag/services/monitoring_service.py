"""
Periodic status sweeps for devices, subscribers and routers.

Each sweep runs in two phases. Network probes fan out over a thread pool,
one worker per router so that a router only ever serves one of our API
sessions at a time. Reconciliation (status flags, downtime logs, alerts)
then runs sequentially on the calling thread, inside the app context.
"""
import logging
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from ispdiag import db
from ispdiag.errors import BadRequestError, NotFoundError
from ispdiag.models import Device, MikroTikRouter, MikroTikUser
from ispdiag.services import status_checker
from ispdiag.services.alerting_service import AlertingService, alerting_service
from ispdiag.services.downtime_service import (
    CAME_UP,
    WENT_DOWN,
    apply_device_status,
    apply_user_status,
)
from ispdiag.services.root_cause_service import RootCauseWalker
from ispdiag.services.router_client import RouterTarget
from ispdiag.services.status_checker import OFFLINE_ROUTER_DOWN, CheckOutcome

logger = logging.getLogger(__name__)

DEVICE_DOWN = 'DOWN'
DEVICE_DOWN_ROUTER = 'DOWN (Router Unreachable)'
DEVICE_UP = 'UP'
USER_OFFLINE = 'OFFLINE'
USER_OFFLINE_ROUTER = 'OFFLINE (Router Unreachable)'
USER_ONLINE = 'ONLINE'
ROUTER_OFFLINE = 'OFFLINE'
ROUTER_ONLINE = 'ONLINE'


@dataclass(frozen=True)
class DeviceTarget:
    id: int
    ip_address: str
    device_name: Optional[str] = None


@dataclass(frozen=True)
class UserTarget:
    id: int
    username: str
    service_type: str
    ip_address: Optional[str] = None


ProbeJob = Tuple[Hashable, object]


class MonitoringService:
    def __init__(self, alerting: Optional[AlertingService] = None, sleep: Callable[[float], None] = time.sleep,
                 max_workers: Optional[int] = None):
        self.alerting = alerting or alerting_service
        self.sleep = sleep
        self.max_workers = max_workers or current_app.config.get('SWEEP_MAX_WORKERS', 8)
        self.attempts = current_app.config.get('STATUS_RETRY_ATTEMPTS', 3)
        self.delay = current_app.config.get('STATUS_RETRY_DELAY_SECONDS', 1.0)

    # ==================== PROBING ====================

    def _probe_group(self, router: RouterTarget, jobs: List[ProbeJob],
                     probe: Callable[[object, RouterTarget], CheckOutcome]) -> Dict[Hashable, CheckOutcome]:
        results = {}
        for key, target in jobs:
            results[key] = status_checker.outcome_with_retry(
                lambda: probe(target, router),
                attempts=self.attempts,
                delay=self.delay,
                sleep=self.sleep,
                label=f"{router.name} -> {key}",
            )
        return results

    def _probe_all(self, groups: Dict[RouterTarget, List[ProbeJob]],
                   probe: Callable[[object, RouterTarget], CheckOutcome]) -> Dict[Hashable, CheckOutcome]:
        """Run ``probe`` for every job, concurrently across routers."""
        if not groups:
            return {}
        results: Dict[Hashable, CheckOutcome] = {}
        workers = max(1, min(self.max_workers, len(groups)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='sweep') as pool:
            futures = {pool.submit(self._probe_group, router, jobs, probe): router for router, jobs in groups.items()}
            for future in as_completed(futures):
                router = futures[future]
                try:
                    results.update(future.result())
                except Exception as e:
                    logger.error(f"Probe worker for router {router.name} failed: {e}")
        return results

    @staticmethod
    def _group_by_router(rows: Iterable, to_target: Callable) -> Dict[RouterTarget, List[ProbeJob]]:
        snapshots: Dict[int, RouterTarget] = {}
        groups: Dict[RouterTarget, List[ProbeJob]] = defaultdict(list)
        for row in rows:
            router = row.router
            if router is None:
                continue
            if router.id not in snapshots:
                try:
                    snapshots[router.id] = RouterTarget.from_router(router)
                except ValueError as e:
                    logger.error(f"Cannot decrypt credentials for router {router.name}: {e}")
                    continue
            groups[snapshots[router.id]].append((row.id, to_target(row)))
        return groups

    def _commit(self, what: str) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to save {what} sweep results: {e}")
            raise

    def _send_alerts(self, buckets: Dict[Tuple[str, str], List], tenant_id: int, entity_type: str) -> int:
        sent = 0
        for (label, _), entities in buckets.items():
            if self.alerting.send_consolidated_alert(entities, label, tenant_id, entity_type) is not None:
                sent += 1
        return sent

    # ==================== DEVICES ====================

    def check_all_devices(self, tenant_id: int) -> Dict:
        """Ping every CPE/AP of a tenant through its router and reconcile status."""
        devices = (
            Device.query.options(joinedload(Device.router))
            .filter_by(tenant_id=tenant_id)
            .order_by(Device.id)
            .all()
        )
        summary = {'checked': len(devices), 'up': 0, 'down': 0, 'went_down': [], 'came_up': [], 'alerts': 0}
        if not devices:
            logger.info(f"[tenant {tenant_id}] No devices to check.")
            return summary

        timeout = current_app.config.get('PING_CONNECT_TIMEOUT', 4)
        groups = self._group_by_router(
            devices, lambda d: DeviceTarget(id=d.id, ip_address=d.ip_address, device_name=d.device_name)
        )
        logger.info(f"[tenant {tenant_id}] Pinging {len(devices)} devices across {len(groups)} routers...")
        outcomes = self._probe_all(groups, lambda target, router: status_checker.probe_cpe(target, router, timeout))

        now = datetime.utcnow()
        buckets: Dict[Tuple[str, str], List[Device]] = defaultdict(list)
        for device in devices:
            outcome = outcomes.get(device.id, OFFLINE_ROUTER_DOWN)
            transition = apply_device_status(device, outcome.online, now)
            summary['up' if outcome.online else 'down'] += 1
            if transition == WENT_DOWN:
                label = DEVICE_DOWN if outcome.router_reachable else DEVICE_DOWN_ROUTER
                buckets[(label, device.device_type)].append(device)
                summary['went_down'].append(device.id)
            elif transition == CAME_UP:
                buckets[(DEVICE_UP, device.device_type)].append(device)
                summary['came_up'].append(device.id)

        self._commit('device')
        summary['alerts'] = self._send_alerts(buckets, tenant_id, 'Device')
        return summary

    # ==================== USERS ====================

    def perform_user_status_check(self, tenant_id: int) -> Dict:
        """Check every subscriber's session or reachability and log outages."""
        users = (
            MikroTikUser.query.options(joinedload(MikroTikUser.router))
            .filter_by(tenant_id=tenant_id)
            .order_by(MikroTikUser.id)
            .all()
        )
        summary = {'checked': 0, 'skipped': 0, 'online': 0, 'offline': 0, 'went_down': [], 'came_up': [],
                   'alerts': 0}
        if not users:
            logger.info(f"[tenant {tenant_id}] No MikroTik users found.")
            return summary

        for user in users:
            if user.router is None:
                logger.warning(f"User {user.username} has no associated router. Skipping status check.")
        checkable = [user for user in users if user.router is not None]
        summary['skipped'] = len(users) - len(checkable)

        timeout = current_app.config.get('ROUTER_CONNECT_TIMEOUT', 3)
        groups = self._group_by_router(
            checkable,
            lambda u: UserTarget(id=u.id, username=u.username, service_type=u.service_type, ip_address=u.ip_address),
        )
        outcomes = self._probe_all(groups, lambda target, router: status_checker.probe_user(target, router, timeout))

        now = datetime.utcnow()
        buckets: Dict[Tuple[str, str], List[MikroTikUser]] = defaultdict(list)
        for user in checkable:
            outcome = outcomes.get(user.id, OFFLINE_ROUTER_DOWN)
            transition = apply_user_status(user, outcome.online, now)
            summary['checked'] += 1
            summary['online' if outcome.online else 'offline'] += 1
            if transition == WENT_DOWN:
                label = USER_OFFLINE if outcome.router_reachable else USER_OFFLINE_ROUTER
                buckets[(label, 'User')].append(user)
                summary['went_down'].append(user.id)
            elif transition == CAME_UP:
                buckets[(USER_ONLINE, 'User')].append(user)
                summary['came_up'].append(user.id)

        self._commit('user')
        summary['alerts'] = self._send_alerts(buckets, tenant_id, 'User')
        return summary

    # ==================== ROUTERS ====================

    def perform_router_status_check(self, tenant_id: int) -> Dict:
        """Try an API login on every router of a tenant and record the result."""
        routers = MikroTikRouter.query.filter_by(tenant_id=tenant_id).order_by(MikroTikRouter.id).all()
        summary = {'checked': len(routers), 'online': 0, 'offline': 0, 'alerts': 0}
        if not routers:
            logger.info(f"[tenant {tenant_id}] No MikroTik routers found.")
            return summary

        timeout = current_app.config.get('ROUTER_STATUS_TIMEOUT', 2)
        groups: Dict[RouterTarget, List[ProbeJob]] = {}
        for router in routers:
            try:
                target = RouterTarget.from_router(router)
            except ValueError as e:
                logger.error(f"Cannot decrypt credentials for router {router.name}: {e}")
                continue
            groups[target] = [(router.id, target)]

        def probe(_, router):
            return CheckOutcome(status_checker.check_router_status(router, timeout), True)

        outcomes = self._probe_all(groups, probe)

        now = datetime.utcnow()
        buckets: Dict[Tuple[str, str], List[MikroTikRouter]] = defaultdict(list)
        for router in routers:
            online = outcomes.get(router.id, OFFLINE_ROUTER_DOWN).online
            was_online = bool(router.is_online)
            router.is_online = online
            router.last_checked = now
            summary['online' if online else 'offline'] += 1
            logger.info(f"Updated status for router {router.name} to {'ONLINE' if online else 'OFFLINE'}.")
            if online != was_online:
                buckets[(ROUTER_ONLINE if online else ROUTER_OFFLINE, 'Router')].append(router)

        self._commit('router')
        summary['alerts'] = self._send_alerts(buckets, tenant_id, 'Router')
        return summary

    # ==================== EVENTS ====================

    def handle_network_event(self, tenant_id: int, data: Dict) -> Dict:
        """Apply an UP/DOWN report pushed by a router (netwatch or PPP scripts).

        ``data`` names the entity by ``device_id``, ``host`` (device IP) or
        ``username`` and carries ``status`` as ``up``/``down``. A device that
        goes down triggers a root-cause walk.
        """
        status = str(data.get('status', '')).strip().lower()
        if status not in ('up', 'down'):
            raise BadRequestError("status must be 'up' or 'down'")
        is_up = status == 'up'

        if data.get('username'):
            return self._handle_user_event(tenant_id, data['username'], is_up)

        query = Device.query.filter_by(tenant_id=tenant_id)
        if data.get('device_id') is not None:
            device = query.filter_by(id=data['device_id']).first()
        elif data.get('host'):
            device = query.filter_by(ip_address=data['host']).first()
        else:
            raise BadRequestError('device_id, host or username is required')
        if device is None:
            raise NotFoundError('Device not found')

        transition = apply_device_status(device, is_up)
        self._commit('network event')
        result = {'entity_type': 'Device', 'id': device.id, 'status': device.status, 'transition': transition,
                  'root_cause': None}

        if transition == WENT_DOWN:
            self.alerting.send_consolidated_alert([device], DEVICE_DOWN, tenant_id, 'Device')
            result['root_cause'] = self._locate_root_cause(device, tenant_id)
        elif transition == CAME_UP:
            self.alerting.send_consolidated_alert([device], DEVICE_UP, tenant_id, 'Device')
        return result

    def _handle_user_event(self, tenant_id: int, username: str, is_up: bool) -> Dict:
        user = MikroTikUser.query.filter_by(tenant_id=tenant_id, username=username).first()
        if user is None:
            raise NotFoundError('Mikrotik User not found')
        transition = apply_user_status(user, is_up)
        self._commit('network event')
        if transition == WENT_DOWN:
            self.alerting.send_consolidated_alert([user], USER_OFFLINE, tenant_id, 'User')
        elif transition == CAME_UP:
            self.alerting.send_consolidated_alert([user], USER_ONLINE, tenant_id, 'User')
        return {'entity_type': 'User', 'id': user.id, 'is_online': user.is_online, 'transition': transition}

    def _locate_root_cause(self, device: Device, tenant_id: int) -> Optional[Dict]:
        try:
            result = RootCauseWalker(sleep=self.sleep).verify_root_cause(device.id, tenant_id)
        except NotFoundError as e:
            logger.warning(f"Root-cause walk for device {device.id} skipped: {e.message}")
            return None
        if result.root_cause.id != device.id:
            logger.info(
                f"[tenant {tenant_id}] Outage of {device.device_name} traced to {result.root_cause.device_name}."
            )
        return result.to_dict()
