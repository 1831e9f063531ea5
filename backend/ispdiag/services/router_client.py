"""
RouterOS API client
Thin connect/write/close wrapper around ``routeros_api`` with typed replies
for the commands the diagnostics engine issues.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import routeros_api

logger = logging.getLogger(__name__)


def _as_int(value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class PingReply:
    host: str
    sent: int
    received: int
    status: Optional[str] = None

    @property
    def timed_out(self) -> bool:
        return self.status == 'timeout'

    @property
    def answered(self) -> bool:
        return not self.timed_out and self.received > 0

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'PingReply':
        return cls(
            host=str(record.get('host', '')),
            sent=_as_int(record.get('sent')),
            received=_as_int(record.get('received')),
            status=record.get('status'),
        )


@dataclass(frozen=True)
class PppActiveSession:
    id: str
    name: str
    address: Optional[str] = None
    uptime: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'PppActiveSession':
        return cls(
            id=str(record.get('.id') or record.get('id') or ''),
            name=str(record.get('name', '')),
            address=record.get('address'),
            uptime=record.get('uptime'),
        )


@dataclass(frozen=True)
class SimpleQueue:
    id: str
    name: str
    target: str
    max_limit: str
    disabled: bool

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'SimpleQueue':
        return cls(
            id=str(record.get('.id') or record.get('id') or ''),
            name=str(record.get('name', '')),
            target=str(record.get('target', '')),
            max_limit=str(record.get('max-limit', '')),
            disabled=str(record.get('disabled', 'false')).lower() in ('true', 'yes'),
        )


@dataclass(frozen=True)
class HotspotUserRecord:
    id: str
    name: str
    profile: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'HotspotUserRecord':
        return cls(
            id=str(record.get('.id') or record.get('id') or ''),
            name=str(record.get('name', '')),
            profile=record.get('profile'),
        )


@dataclass(frozen=True)
class RouterTarget:
    """Decrypted connection details, safe to hand to worker threads."""
    id: Optional[int]
    name: str
    ip_address: str
    username: str
    password: str
    api_port: int = 8728

    @classmethod
    def from_router(cls, router) -> 'RouterTarget':
        return cls(
            id=router.id,
            name=router.name,
            ip_address=router.ip_address,
            username=router.username,
            password=router.password,
            api_port=router.api_port or 8728,
        )


class RouterClient:
    """One exclusive API session against a MikroTik router.

    Use as a context manager so the session is closed on every exit path::

        with RouterClient.for_router(router, timeout=3) as client:
            replies = client.ping('10.0.0.5')
    """

    def __init__(self, host: str, username: str, password: str, port: int = 8728, timeout: float = 3.0):
        self.host = host
        self.username = username
        self.password = password
        self.port = port or 8728
        self.timeout = timeout
        self._pool = None
        self._api = None

    @classmethod
    def for_router(cls, router, timeout: float = 3.0) -> 'RouterClient':
        return cls(
            host=router.ip_address,
            username=router.username,
            password=router.password,
            port=router.api_port,
            timeout=timeout,
        )

    @property
    def connected(self) -> bool:
        return self._api is not None

    def connect(self) -> None:
        pool = routeros_api.RouterOsApiPool(
            self.host,
            username=self.username,
            password=self.password,
            port=self.port,
            plaintext_login=True,
            use_ssl=False,
        )
        pool.set_timeout(self.timeout)
        self._pool = pool
        try:
            self._api = pool.get_api()
        except Exception:
            self.close()
            raise
        logger.debug(f"Connected to RouterOS API at {self.host}:{self.port}")

    def close(self) -> None:
        pool, self._pool, self._api = self._pool, None, None
        if pool is None:
            return
        try:
            pool.disconnect()
        except Exception as e:
            logger.warning(f"Error disconnecting from {self.host}: {e}")

    def __enter__(self) -> 'RouterClient':
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def write(self, command: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run ``/path/verb`` and return the raw reply records.

        ``print`` maps to a filtered ``get``; every other verb is a ``call``.
        """
        if self._api is None:
            raise ConnectionError(f"Not connected to {self.host}")
        path, _, verb = command.rstrip('/').rpartition('/')
        resource = self._api.get_resource(path or '/')
        params = {key: str(value) for key, value in (params or {}).items()}
        if verb == 'print':
            return list(resource.get(**params) or [])
        return list(resource.call(verb, params) or [])

    # ==================== TYPED COMMANDS ====================

    def ping(self, address: str, count: int = 1) -> List[PingReply]:
        records = self.write('/ping', {'address': address, 'count': count})
        return [PingReply.from_record(record) for record in records]

    def active_ppp_sessions(self, name: Optional[str] = None) -> List[PppActiveSession]:
        query = {'name': name} if name else {}
        records = self.write('/ppp/active/print', query)
        return [PppActiveSession.from_record(record) for record in records]

    def simple_queues(self, name: Optional[str] = None) -> List[SimpleQueue]:
        query = {'name': name} if name else {}
        records = self.write('/queue/simple/print', query)
        return [SimpleQueue.from_record(record) for record in records]

    def hotspot_users(self, name: Optional[str] = None) -> List[HotspotUserRecord]:
        query = {'name': name} if name else {}
        records = self.write('/ip/hotspot/user/print', query)
        return [HotspotUserRecord.from_record(record) for record in records]

    def add_hotspot_user(self, name: str, password: str, server: str = 'all', profile: str = 'default',
                         limit_uptime: Optional[str] = None, limit_bytes_total: Optional[str] = None) -> None:
        params = {'name': name, 'password': password, 'server': server, 'profile': profile}
        if limit_uptime:
            params['limit-uptime'] = limit_uptime
        if limit_bytes_total:
            params['limit-bytes-total'] = limit_bytes_total
        self.write('/ip/hotspot/user/add', params)

    def remove_hotspot_user(self, name: str) -> bool:
        removed = False
        for record in self.hotspot_users(name=name):
            self.write('/ip/hotspot/user/remove', {'.id': record.id})
            removed = True
        return removed
