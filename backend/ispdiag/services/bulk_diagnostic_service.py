"""
Device-rooted bulk diagnostic: probe an AP or station and everything hanging off it.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from ispdiag import db
from ispdiag.errors import BadRequestError, NotFoundError
from ispdiag.models import Device, DiagnosticLog, MikroTikUser
from ispdiag.services import status_checker
from ispdiag.services.diagnostic_service import FAILURE, SUCCESS, WARNING, SendEvent, StepRecorder

logger = logging.getLogger(__name__)


@dataclass
class DeviceCheck:
    device_id: int
    device_name: Optional[str]
    device_type: str
    ip_address: str
    is_up: bool

    @property
    def message(self) -> str:
        return 'Device is reachable.' if self.is_up else 'Device is unreachable (ping failed).'


@dataclass
class UserCheck:
    user_id: int
    username: str
    official_name: Optional[str]
    station: Optional[str]
    is_online: bool


def _display_name(user: MikroTikUser) -> str:
    return user.official_name or user.username


class BulkDiagnosticService:
    def run_bulk_diagnostic(self, device_id: Optional[int], tenant_id: int, user_id: Optional[int] = None,
                            send_event: Optional[SendEvent] = None) -> DiagnosticLog:
        if not device_id:
            raise BadRequestError('Device ID is required')

        recorder = StepRecorder(send_event)
        recorder.send_event('start', {'message': 'Bulk diagnostic process initiated...'})

        initial = (
            Device.query.options(joinedload(Device.router))
            .filter_by(id=device_id, tenant_id=tenant_id)
            .first()
        )
        if initial is None:
            raise NotFoundError('Initial device not found')

        target_user = None
        if user_id:
            target_user = MikroTikUser.query.filter_by(id=user_id, tenant_id=tenant_id).first()

        device_checks: List[DeviceCheck] = []
        user_checks: List[UserCheck] = []

        initial_check = self._check_device(initial)
        device_checks.append(initial_check)
        recorder.add(f'Ping Initial Device: {initial.device_name}', SUCCESS if initial_check.is_up else FAILURE,
                     initial_check.message)

        if initial_check.is_up:
            if initial.device_type == 'Access':
                stations = (
                    Device.query.options(joinedload(Device.router))
                    .filter_by(tenant_id=tenant_id, device_type='Station', ssid=initial.ssid)
                    .order_by(Device.id)
                    .all()
                ) if initial.ssid else []
                recorder.add('AP Detected', SUCCESS,
                             f'Found {len(stations)} station(s) connected to {initial.device_name}.')
                for station in stations:
                    check = self._check_device(station)
                    device_checks.append(check)
                    recorder.add(f'Ping Station: {station.device_name}', SUCCESS if check.is_up else FAILURE,
                                 check.message)
                    if check.is_up:
                        self._check_station_users(recorder, station, tenant_id, user_checks)
            elif initial.device_type == 'Station':
                self._check_station_users(recorder, initial, tenant_id, user_checks)

        conclusion = self.generate_conclusion(target_user, initial, device_checks, user_checks)
        log = DiagnosticLog(
            tenant_id=tenant_id,
            mikrotik_user_id=target_user.id if target_user else None,
            target_entity=_display_name(target_user) if target_user else initial.device_name,
            target_entity_type='User' if target_user else 'Device',
            steps=recorder.steps,
            final_conclusion=conclusion,
            status=recorder.overall_status(),
        )
        try:
            db.session.add(log)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f"Failed to save bulk diagnostic log for device {initial.id}")
            raise

        recorder.send_event('done', log.to_dict())
        return log

    @staticmethod
    def _check_device(device: Device) -> DeviceCheck:
        return DeviceCheck(
            device_id=device.id,
            device_name=device.device_name,
            device_type=device.device_type,
            ip_address=device.ip_address,
            is_up=status_checker.check_cpe_status(device, device.router),
        )

    @staticmethod
    def _check_station_users(recorder: StepRecorder, station: Device, tenant_id: int,
                             user_checks: List[UserCheck]) -> None:
        users = MikroTikUser.query.filter_by(tenant_id=tenant_id, station_id=station.id).order_by(MikroTikUser.id).all()
        recorder.add(f'User Query for {station.device_name}', SUCCESS,
                     f'Found {len(users)} user(s) associated with this station.')
        for user in users:
            online = status_checker.check_user_status(user, station.router)
            user_checks.append(UserCheck(
                user_id=user.id,
                username=user.username,
                official_name=user.official_name,
                station=station.device_name,
                is_online=online,
            ))
            recorder.add(f'User Status: {_display_name(user)}', SUCCESS if online else WARNING,
                         'User is online and active.' if online else 'User is offline.')

    @staticmethod
    def generate_conclusion(target_user: Optional[MikroTikUser], initial: Device,
                            device_checks: List[DeviceCheck], user_checks: List[UserCheck]) -> str:
        """Pick the most specific explanation, highest priority first."""
        online_users = [check for check in user_checks if check.is_online]
        offline_users = [check for check in user_checks if not check.is_online]
        offline_devices = [check for check in device_checks if not check.is_up]
        name = initial.device_name

        if any(check.device_id == initial.id for check in offline_devices):
            return (f'**Root Cause:** The primary device {name} is offline. This is the source of the outage '
                    f'for all connected users.\n'
                    f'**Recommendation:** Check the power and physical connections for {name}.')

        if target_user is not None:
            target = next((check for check in user_checks if check.user_id == target_user.id), None)
            if target is not None:
                who = _display_name(target_user)
                if target.is_online:
                    others_offline = [check for check in offline_users if check.user_id != target_user.id]
                    if others_offline:
                        return (f'**All Clear (with observations):** The user {who} is online and their connection '
                                f'appears healthy. However, we detected that **{len(others_offline)} other users** on '
                                f'the same station are currently offline.\n'
                                f'**Recommendation:** While the target user\'s connection is stable, the offline '
                                f'neighbors could indicate a potential issue with the station or upstream network. '
                                f'Monitor the situation.')
                    return (f'**All Clear:** The user {who} is online and their connection appears healthy.\n'
                            f'**Recommendation:** If the user is still reporting issues, the problem may be with '
                            f'their local device (e.g., router, computer).')
                others_online = [check for check in online_users if check.user_id != target_user.id]
                if others_online:
                    return (f'**Root Cause:** The user {who} is offline. However, all network hardware is responding '
                            f'and **{len(others_online)} other users** on the same station are online.\n'
                            f'**Recommendation:** This indicates an issue isolated to {who}. Verify their PPPoE '
                            f'credentials, account expiry, and advise them to check their router.')
                return (f'**Root Cause:** The user {who} is offline, and **all other {max(len(offline_users) - 1, 0)} '
                        f'users** on the same station are also offline.\n'
                        f'**Recommendation:** This suggests a wider issue affecting multiple users. Investigate the '
                        f'health of the station {name} and the upstream network infrastructure.')

        if initial.device_type == 'Access':
            total_stations = len(device_checks) - 1
            if offline_devices:
                names = ', '.join(str(check.device_name) for check in offline_devices)
                return (f'**Root Cause:** The access point {name} is online, but **{len(offline_devices)} of its '
                        f'{total_stations} stations** are currently offline. This is impacting all users connected '
                        f'to those offline stations.\n'
                        f'**Recommendation:** This suggests power or alignment issues. Investigate the stations '
                        f'listed as \'DOWN\': {names}.')
            if offline_users:
                return (f'**All Clear (with observations):** The access point {name} and all its connected stations '
                        f'are online. However, we detected that **{len(offline_users)} of {len(user_checks)} total '
                        f'users** are currently offline.\n'
                        f'**Recommendation:** This could indicate account issues. Verify the PPPoE credentials and '
                        f'account expiry dates for the offline users.')
            return (f'**All Clear:** No issues detected. The access point {name}, all **{total_stations} of its '
                    f'connected stations**, and all **{len(user_checks)} associated users** are online and '
                    f'responsive.')

        if initial.device_type == 'Station' and offline_users:
            return (f'**All Clear (with observations):** The station {name} is online and responsive. However, we '
                    f'detected that **{len(offline_users)} of its {len(user_checks)} users** are currently offline.\n'
                    f'**Recommendation:** This could indicate account issues. Verify the PPPoE credentials and '
                    f'account expiry dates for the offline users.')

        return ('**All Clear:** No issues detected. All network devices and associated users are online and '
                'responsive. The connection appears healthy.')


bulk_diagnostic_service = BulkDiagnosticService()
