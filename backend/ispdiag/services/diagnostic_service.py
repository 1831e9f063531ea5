"""
Diagnostic orchestrator for a single subscriber.

A run records an ordered list of steps::

    {'step_name': ..., 'status': 'Success'|'Failure'|'Warning', 'summary': ..., 'details': {...}}

Billing -> router -> client session -> hardware tree -> neighbor analysis.
No step short-circuits the run; checks that need a reachable router are
recorded as ``N/A`` when it is down. Each step is pushed to ``send_event``
as soon as it completes, then the log is persisted and emitted as ``done``.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from ispdiag import db
from ispdiag.errors import NotFoundError
from ispdiag.models import Device, DiagnosticLog, MikroTikUser
from ispdiag.services import status_checker
from ispdiag.services.root_cause_service import RootCauseWalker

logger = logging.getLogger(__name__)

SUCCESS = 'Success'
FAILURE = 'Failure'
WARNING = 'Warning'

SendEvent = Callable[[str, Any], None]


def _noop(event: str, data: Any) -> None:
    pass


def _date(value: Optional[datetime]) -> str:
    return value.strftime('%Y-%m-%d') if value else 'unknown date'


def _device_label(device: Device) -> str:
    return f'{device.device_type} "{device.device_name}" ({device.ip_address})'


class StepRecorder:
    """Collects steps and forwards each one to the event sink as it lands."""

    def __init__(self, send_event: Optional[SendEvent] = None):
        self.steps: List[Dict[str, Any]] = []
        self.send_event = send_event or _noop

    def add(self, step_name: str, status: str, summary: str, details: Optional[Dict] = None) -> Dict[str, Any]:
        step = {'step_name': step_name, 'status': status, 'summary': summary, 'details': details or {}}
        self.steps.append(step)
        self.send_event('step', step)
        return step

    def skip(self, step_name: str, reason: str) -> Dict[str, Any]:
        return self.add(step_name, WARNING, f'N/A: {reason}', {'skipped': True})

    def overall_status(self) -> str:
        statuses = {step['status'] for step in self.steps}
        if FAILURE in statuses:
            return FAILURE
        if WARNING in statuses:
            return WARNING
        return SUCCESS


@dataclass
class _Findings:
    expired: bool = False
    router_missing: bool = False
    router_online: bool = False
    router_name: str = ''
    client_online: bool = False
    has_station: bool = False
    has_building: bool = False
    offline_devices: List[Device] = field(default_factory=list)
    neighbor_scope: Optional[str] = None
    neighbors_checked: int = 0
    neighbors_offline: int = 0


class DiagnosticService:
    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        self.sleep = sleep

    # ==================== RUN ====================

    def run_diagnostic(self, user_id: int, tenant_id: int, send_event: Optional[SendEvent] = None) -> DiagnosticLog:
        """Run every check for ``user_id`` and persist the resulting log."""
        recorder = StepRecorder(send_event)
        recorder.send_event('start', {'message': 'Diagnostic process initiated...'})

        user = (
            MikroTikUser.query.options(
                joinedload(MikroTikUser.router),
                joinedload(MikroTikUser.station),
                joinedload(MikroTikUser.building),
            )
            .filter_by(id=user_id, tenant_id=tenant_id)
            .first()
        )
        if user is None:
            raise NotFoundError('Mikrotik User not found')

        logger.info(f"[tenant {tenant_id}] Running diagnostic for user {user.username}")
        findings = _Findings()
        self._billing_check(recorder, user, findings)
        self._router_check(recorder, user, findings)
        self._client_check(recorder, user, findings)

        if user.station is not None:
            findings.has_station = True
            self._hardware_tree_check(recorder, user, findings, tenant_id)
            neighbors = MikroTikUser.query.filter_by(tenant_id=tenant_id, station_id=user.station_id).all()
            self._neighbor_analysis(recorder, user, neighbors, findings, 'Station-Based')

        if user.building is not None or user.apartment_house_number:
            if user.building is None:
                recorder.add('Location Check', WARNING, 'No physical building is linked to this user.')
            else:
                findings.has_building = True
                neighbors = MikroTikUser.query.filter_by(tenant_id=tenant_id, building_id=user.building_id).all()
                self._neighbor_analysis(recorder, user, neighbors, findings, 'Building-Based')
        elif user.station is None:
            recorder.add('Hardware Check', WARNING, 'No network station (CPE) is linked to this user.')

        log = DiagnosticLog(
            tenant_id=tenant_id,
            mikrotik_user_id=user.id,
            target_entity=user.username,
            target_entity_type='User',
            steps=recorder.steps,
            final_conclusion=self.conclude(findings),
            status=recorder.overall_status(),
        )
        try:
            db.session.add(log)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f"Failed to save diagnostic log for user {user.id}")
            raise

        recorder.send_event('done', log.to_dict())
        return log

    # ==================== STEPS ====================

    def _billing_check(self, recorder: StepRecorder, user: MikroTikUser, findings: _Findings) -> None:
        findings.expired = user.expiry_date is not None and datetime.utcnow() > user.expiry_date
        if findings.expired:
            recorder.add('Billing Check', FAILURE, f'Client account expired on {_date(user.expiry_date)}.',
                         {'expiry_date': _date(user.expiry_date)})
        else:
            recorder.add('Billing Check', SUCCESS, 'Client account is active.')

    def _router_check(self, recorder: StepRecorder, user: MikroTikUser, findings: _Findings) -> None:
        router = user.router
        if router is None:
            findings.router_missing = True
            recorder.add('Mikrotik Router Check', FAILURE, 'No Mikrotik router is associated with this client.')
            return
        findings.router_name = router.name
        findings.router_online = status_checker.check_router_status(router)
        state = 'online' if findings.router_online else 'offline'
        recorder.add('Mikrotik Router Check', SUCCESS if findings.router_online else FAILURE,
                     f'Router "{router.name}" ({router.ip_address}) is {state}.')

    def _client_check(self, recorder: StepRecorder, user: MikroTikUser, findings: _Findings) -> None:
        if not findings.router_online:
            recorder.skip('Client Status Check', 'the router is unreachable, client status could not be checked.')
            return
        findings.client_online = status_checker.check_user_status(user, user.router)
        state = 'online' if findings.client_online else 'offline'
        recorder.add('Client Status Check', SUCCESS if findings.client_online else FAILURE,
                     f'Client "{user.username}" is {state}.')

    def _hardware_tree_check(self, recorder: StepRecorder, user: MikroTikUser, findings: _Findings,
                             tenant_id: int) -> None:
        """Probe the station, then each parent, until a device answers."""
        device = user.station
        if not findings.router_online:
            recorder.skip(f'{device.device_type} Check', 'the router is unreachable, hardware was not probed.')
            return

        walker = RootCauseWalker(sleep=self.sleep)
        seen = set()
        while device is not None and device.id not in seen:
            seen.add(device.id)
            online = walker.is_reachable(device, user.router)
            state = 'online' if online else 'offline'
            recorder.add(f'{device.device_type} Check', SUCCESS if online else FAILURE,
                         f'{_device_label(device)} is {state}.', {'device_id': device.id})
            if online:
                return
            findings.offline_devices.append(device)
            if device.parent_id is None:
                return
            parent = Device.query.filter_by(id=device.parent_id, tenant_id=tenant_id).first()
            if parent is None:
                logger.warning(f"Parent {device.parent_id} of device {device.id} no longer exists.")
            device = parent

    def _neighbor_analysis(self, recorder: StepRecorder, user: MikroTikUser, neighbors: List[MikroTikUser],
                           findings: _Findings, analysis_type: str) -> None:
        step_name = f'Neighbor Analysis ({analysis_type})'
        scope = 'station' if analysis_type == 'Station-Based' else 'building'
        others = [neighbor for neighbor in neighbors if neighbor.id != user.id]
        if not findings.router_online:
            recorder.skip(step_name, 'the router is unreachable, neighbors could not be checked.')
            return
        if not others:
            recorder.add(step_name, SUCCESS, 'No other clients found for this analysis.')
            return

        now = datetime.utcnow()
        offline_before = findings.neighbors_offline
        results = []
        for neighbor in others:
            online = status_checker.check_user_status(neighbor, user.router)
            expired = neighbor.expiry_date is not None and neighbor.expiry_date < now
            reason = 'N/A'
            if not online:
                reason = f'Account expired on {_date(neighbor.expiry_date)}' if expired else 'Network/Hardware Issue'
                if not expired:
                    findings.neighbors_offline += 1
            results.append({
                'name': neighbor.official_name or neighbor.username,
                'is_online': online,
                'account_status': 'Expired' if expired else 'Active',
                'reason': reason,
            })
        findings.neighbors_checked += len(results)
        # The first scope with offline neighbors names the conclusion.
        if offline_before == 0 and findings.neighbors_offline:
            findings.neighbor_scope = scope

        recorder.add(step_name, SUCCESS,
                     f'Analyzed {len(results)} other user(s) in the same {scope}.',
                     {'neighbors': results})

    # ==================== CONCLUSION ====================

    @staticmethod
    def conclude(findings: _Findings) -> str:
        if findings.router_missing:
            return 'Configuration error: Client is not linked to a router.'
        if not findings.router_online:
            return f'The core router "{findings.router_name}" is offline, affecting all connected clients.'
        if findings.client_online:
            if findings.expired:
                return 'Client is online, but their subscription has expired.'
            return 'Client is online. No issues detected.'
        if findings.expired:
            return 'Client is offline due to an expired subscription.'
        if findings.offline_devices:
            top = findings.offline_devices[-1]
            if len(findings.offline_devices) == 1:
                return ("The client's CPE is offline. This is likely a CPE power issue "
                        "or a problem with the link to the router.")
            return f'{_device_label(top)} is offline, cutting off the client\'s station.'
        if findings.neighbors_offline:
            return (f'Multiple clients on the same {findings.neighbor_scope} are offline. This suggests a problem '
                    "with the CPE or the switch/cabling at the client's building.")
        if findings.neighbors_checked:
            return ("Client is offline, but their CPE and all neighbors are online. The issue is isolated to "
                    "this client's indoor wiring, router, or device.")
        if findings.has_station or findings.has_building:
            return 'Client is offline. The issue is isolated to this client as no other users share their link.'
        return 'Client is offline, but no CPE is linked to them to continue diagnosis.'

    # ==================== HISTORY ====================

    def get_diagnostic_history(self, user_id: int, tenant_id: int) -> List[DiagnosticLog]:
        return (
            DiagnosticLog.query.filter_by(tenant_id=tenant_id, mikrotik_user_id=user_id)
            .order_by(DiagnosticLog.created_at.desc(), DiagnosticLog.id.desc())
            .all()
        )

    def get_diagnostic_log_by_id(self, log_id: int, user_id: int, tenant_id: int) -> DiagnosticLog:
        log = DiagnosticLog.query.filter_by(id=log_id, tenant_id=tenant_id, mikrotik_user_id=user_id).first()
        if log is None:
            raise NotFoundError('Diagnostic log not found')
        return log


diagnostic_service = DiagnosticService()
