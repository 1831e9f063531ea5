"""
Root-cause walker for device outages.

Starting from a device reported DOWN, climb the ``parent_id`` chain and probe
each parent through the tenant's core router. The walk stops at the first
reachable parent (the child below it is the root cause) or at the top of the
tree. Every unreachable parent passed on the way is persisted as DOWN.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from flask import current_app

from ispdiag import db
from ispdiag.errors import NotFoundError
from ispdiag.models import Device, MikroTikRouter
from ispdiag.services.status_checker import check_cpe_status, probe_with_retry

logger = logging.getLogger(__name__)


@dataclass
class RootCauseResult:
    root_cause: Device
    path: List[Device] = field(default_factory=list)
    dangling_parent_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'root_cause': self.root_cause.to_dict(),
            'path': [device.to_dict() for device in self.path],
            'dangling_parent_id': self.dangling_parent_id,
        }


def find_core_router(tenant_id: int) -> Optional[MikroTikRouter]:
    return MikroTikRouter.query.filter_by(tenant_id=tenant_id, is_core_router=True).first()


class RootCauseWalker:
    def __init__(self, probe: Callable = None, sleep: Callable[[float], None] = time.sleep,
                 attempts: Optional[int] = None, delay: Optional[float] = None):
        self.probe = probe or check_cpe_status
        self.sleep = sleep
        self.attempts = attempts if attempts is not None else current_app.config['ROOT_CAUSE_RETRY_ATTEMPTS']
        self.delay = delay if delay is not None else current_app.config['ROOT_CAUSE_RETRY_DELAY_SECONDS']

    def is_reachable(self, device: Device, router: MikroTikRouter) -> bool:
        return probe_with_retry(
            lambda: self.probe(device, router),
            attempts=self.attempts,
            delay=self.delay,
            sleep=self.sleep,
            label=f"Ping {device.device_name or device.ip_address}",
        )

    def mark_down(self, device: Device) -> None:
        device.status = 'DOWN'
        db.session.commit()
        logger.info(f"[Diagnostic Engine] Marked {device.device_name} ({device.ip_address}) DOWN.")

    def verify_root_cause(self, device_id: int, tenant_id: int) -> RootCauseResult:
        device = Device.query.filter_by(id=device_id, tenant_id=tenant_id).first()
        if device is None:
            raise NotFoundError('Device not found')
        logger.info(f"[Diagnostic Engine] Verifying root cause for device {device.id}")

        visited = [device]
        seen = {device.id}
        core_router = None
        current = device

        while True:
            if current.parent_id is None:
                logger.info(f"[Diagnostic Engine] No parent for {current.device_name}. It is the root cause.")
                return RootCauseResult(root_cause=current, path=visited)

            parent = Device.query.filter_by(id=current.parent_id, tenant_id=tenant_id).first()
            if parent is None:
                logger.warning(
                    f"[Diagnostic Engine] Parent {current.parent_id} of {current.device_name} no longer exists; "
                    f"treating {current.device_name} as the root cause."
                )
                return RootCauseResult(root_cause=current, path=visited, dangling_parent_id=current.parent_id)

            if parent.id in seen:
                logger.error(f"[Diagnostic Engine] Parent cycle detected at device {parent.id}; stopping walk.")
                return RootCauseResult(root_cause=current, path=visited)

            if core_router is None:
                core_router = find_core_router(tenant_id)
                if core_router is None:
                    raise NotFoundError('Core router not found')

            if self.is_reachable(parent, core_router):
                logger.info(
                    f"[Diagnostic Engine] Parent {parent.device_name} is ONLINE. "
                    f"Root cause is {current.device_name}."
                )
                return RootCauseResult(root_cause=current, path=visited[:-1] + [parent, current])

            logger.info(f"[Diagnostic Engine] Parent {parent.device_name} is OFFLINE. Walking up the tree...")
            self.mark_down(parent)
            visited.append(parent)
            seen.add(parent.id)
            current = parent


def verify_root_cause(device_id: int, tenant_id: int) -> RootCauseResult:
    return RootCauseWalker().verify_root_cause(device_id, tenant_id)
