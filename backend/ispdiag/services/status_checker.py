"""
Reachability checks proxied through a MikroTik router.

Every check opens its own short-lived API session and returns a boolean.
Connection errors, API timeouts and missing records all read as ``False``.
The ``probe_*`` variants also report whether the router itself answered,
which the monitoring sweeps use to label alerts.
"""
import logging
import time
from typing import Callable, NamedTuple, Optional

from flask import current_app

from ispdiag.services.router_client import RouterClient

logger = logging.getLogger(__name__)


class CheckOutcome(NamedTuple):
    online: bool
    router_reachable: bool


OFFLINE_ROUTER_DOWN = CheckOutcome(online=False, router_reachable=False)


def _config(key: str, default):
    try:
        return current_app.config.get(key, default)
    except RuntimeError:
        # Worker threads of a sweep run without an application context
        return default


def check_router_status(router, timeout: Optional[float] = None) -> bool:
    """True when an API session can be opened against ``router``."""
    if router is None:
        return False
    timeout = timeout if timeout is not None else _config('ROUTER_CONNECT_TIMEOUT', 3)
    try:
        with RouterClient.for_router(router, timeout=timeout) as client:
            return client.connected
    except Exception as e:
        logger.warning(f"Router {router.name} ({router.ip_address}) unreachable: {e}")
        return False


def probe_user(user, router, timeout: Optional[float] = None) -> CheckOutcome:
    """PPPoE users need an active session; static users must answer a ping."""
    if router is None:
        logger.warning(f"User {user.username} has no associated router. Skipping status check.")
        return OFFLINE_ROUTER_DOWN
    if user.service_type not in ('pppoe', 'static'):
        return CheckOutcome(False, True)
    if user.service_type == 'static' and not user.ip_address:
        return CheckOutcome(False, True)

    timeout = timeout if timeout is not None else _config('ROUTER_CONNECT_TIMEOUT', 3)
    try:
        client = RouterClient.for_router(router, timeout=timeout)
        client.connect()
    except Exception as e:
        logger.warning(f"Failed to connect to router {router.name} for user {user.username}: {e}")
        return OFFLINE_ROUTER_DOWN

    try:
        if user.service_type == 'pppoe':
            sessions = client.active_ppp_sessions(name=user.username)
            online = any(session.name == user.username for session in sessions)
        else:
            replies = client.ping(user.ip_address, count=2)
            online = any(reply.answered for reply in replies)
        return CheckOutcome(online, True)
    except Exception as e:
        logger.debug(f"Status check for user {user.username} failed: {e}")
        return CheckOutcome(False, True)
    finally:
        client.close()


def probe_cpe(device, router, timeout: Optional[float] = None) -> CheckOutcome:
    """Ping a CPE/AP once through ``router``."""
    if router is None or device is None:
        return OFFLINE_ROUTER_DOWN
    timeout = timeout if timeout is not None else _config('PING_CONNECT_TIMEOUT', 4)
    try:
        client = RouterClient.for_router(router, timeout=timeout)
        client.connect()
    except Exception as e:
        logger.warning(f"Failed to connect to router {router.name} to ping {device.ip_address}: {e}")
        return OFFLINE_ROUTER_DOWN

    try:
        replies = client.ping(device.ip_address, count=1)
        return CheckOutcome(bool(replies) and replies[0].answered, True)
    except Exception as e:
        logger.debug(f"Ping to {device.ip_address} via {router.ip_address} failed: {e}")
        return CheckOutcome(False, True)
    finally:
        client.close()


def check_user_status(user, router, timeout: Optional[float] = None) -> bool:
    return probe_user(user, router, timeout).online


def check_cpe_status(device, router, timeout: Optional[float] = None) -> bool:
    return probe_cpe(device, router, timeout).online


def probe_with_retry(probe: Callable[[], bool], attempts: int, delay: float,
                     sleep: Callable[[float], None] = time.sleep, label: str = '') -> bool:
    """Run ``probe`` until it succeeds or ``attempts`` are used up.

    Sleeps ``delay`` seconds between failed attempts, never after the last one.
    """
    attempts = max(1, int(attempts))
    for attempt in range(1, attempts + 1):
        if probe():
            if attempt > 1:
                logger.info(f"{label or 'Probe'} succeeded on attempt {attempt}/{attempts}")
            return True
        logger.debug(f"{label or 'Probe'} failed (attempt {attempt}/{attempts})")
        if attempt < attempts and delay:
            sleep(delay)
    return False


def outcome_with_retry(probe: Callable[[], CheckOutcome], attempts: int, delay: float,
                       sleep: Callable[[float], None] = time.sleep, label: str = '') -> CheckOutcome:
    """Like :func:`probe_with_retry` but keeps the last outcome for labelling."""
    last = OFFLINE_ROUTER_DOWN

    def _attempt() -> bool:
        nonlocal last
        last = probe()
        return last.online

    probe_with_retry(_attempt, attempts, delay, sleep, label)
    return last
