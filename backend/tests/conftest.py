from collections import defaultdict, deque
from datetime import datetime, timedelta
import threading

import pytest

from ispdiag import create_app, db
from ispdiag.config import TestingConfig
from ispdiag.models import Device, MikroTikRouter, MikroTikUser, Tenant
from ispdiag.services import hotspot_service, status_checker
from ispdiag.services.alerting_service import Notifier
from ispdiag.services.router_client import HotspotUserRecord, PingReply, PppActiveSession


class TestConfig(TestingConfig):
    ENCRYPTION_KEY = "itTQ-n1WYoDTC_iw8glZpwkfxAknjNtz85t-6xeUkso="
    REDIS_URL = "redis://localhost:6379/0"
    CORS_ORIGINS = ["http://localhost:3000"]
    WEBHOOK_API_KEY = "test-webhook-key"


@pytest.fixture()
def app():
    flask_app = create_app(TestConfig)

    with flask_app.app_context():
        db.create_all()

    yield flask_app

    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def ctx(app):
    with app.app_context():
        yield app


# ==================== FAKE ROUTER NETWORK ====================

class FakeNetwork:
    """State behind every FakeRouterClient created during a test."""

    def __init__(self):
        self.down_routers = set()
        self.reachable_hosts = set()
        self.ppp_online = set()
        self.ping_scripts = defaultdict(deque)
        self.hotspot_users = {}
        self.fail_hotspot_add = False
        self.fail_ping_hosts = set()
        self.pings = defaultdict(int)
        self.opened = 0
        self.closed = 0
        self.removed_hotspot_users = []
        self._lock = threading.Lock()

    def script_pings(self, host, *results):
        self.ping_scripts[host].extend(results)

    def answer(self, host):
        with self._lock:
            self.pings[host] += 1
            if self.ping_scripts[host]:
                return self.ping_scripts[host].popleft()
        return host in self.reachable_hosts

    def count(self, attr):
        with self._lock:
            setattr(self, attr, getattr(self, attr) + 1)


class FakeRouterClient:
    network = None

    def __init__(self, host, username, password, port=8728, timeout=3.0):
        self.host = host
        self.timeout = timeout
        self._connected = False

    @classmethod
    def for_router(cls, router, timeout=3.0):
        return cls(router.ip_address, router.username, router.password, router.api_port, timeout)

    @property
    def connected(self):
        return self._connected

    def connect(self):
        if self.host in self.network.down_routers:
            raise ConnectionError(f"timed out connecting to {self.host}")
        self._connected = True
        self.network.count('opened')

    def close(self):
        if self._connected:
            self._connected = False
            self.network.count('closed')

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def ping(self, address, count=1):
        if address in self.network.fail_ping_hosts:
            raise TimeoutError('api call timed out')
        if self.network.answer(address):
            return [PingReply(host=address, sent=count, received=count)]
        return [PingReply(host=address, sent=count, received=0, status='timeout')]

    def active_ppp_sessions(self, name=None):
        names = [name] if name else sorted(self.network.ppp_online)
        return [PppActiveSession(id=f'*{i}', name=n) for i, n in enumerate(names) if n in self.network.ppp_online]

    def add_hotspot_user(self, name, password, server='all', profile='default', limit_uptime=None,
                         limit_bytes_total=None):
        if self.network.fail_hotspot_add:
            raise RuntimeError('failure: already have user with this name')
        self.network.hotspot_users[name] = HotspotUserRecord(id=f'*{len(self.network.hotspot_users) + 1}',
                                                             name=name, profile=profile)

    def remove_hotspot_user(self, name):
        self.network.removed_hotspot_users.append(name)
        return self.network.hotspot_users.pop(name, None) is not None


@pytest.fixture()
def network(monkeypatch):
    fake = FakeNetwork()
    client_class = type('BoundFakeRouterClient', (FakeRouterClient,), {'network': fake})
    monkeypatch.setattr(status_checker, 'RouterClient', client_class)
    monkeypatch.setattr(hotspot_service, 'RouterClient', client_class)
    return fake


# ==================== NOTIFIER ====================

class RecordingNotifier(Notifier):
    def __init__(self):
        self.persisted = []
        self.broadcasts = []
        self.emails = []

    def persist(self, tenant_id, message, notification_type):
        self.persisted.append((tenant_id, message, notification_type))
        return {'message': message, 'type': notification_type}

    def broadcast(self, tenant_id, event, payload):
        self.broadcasts.append((tenant_id, event, payload))
        return True

    def email_batch(self, tenant_id, subject, body):
        self.emails.append((tenant_id, subject, body))
        return 1

    @property
    def messages(self):
        return [message for _, message, _ in self.persisted]


@pytest.fixture()
def notifier():
    return RecordingNotifier()


# ==================== FACTORIES ====================

@pytest.fixture()
def tenant(ctx):
    record = Tenant(slug='isp-a', name='ISP A')
    db.session.add(record)
    db.session.commit()
    return record


@pytest.fixture()
def core_router(tenant):
    router = MikroTikRouter(
        tenant_id=tenant.id,
        name='Core',
        ip_address='192.168.88.1',
        username='admin',
        password='secret',
        is_core_router=True,
        is_online=True,
    )
    db.session.add(router)
    db.session.commit()
    return router


@pytest.fixture()
def make_device(tenant, core_router):
    counter = {'n': 0}

    def _make(name, ip_address, device_type='Station', parent=None, status='UP', router=None, **fields):
        counter['n'] += 1
        device = Device(
            tenant_id=fields.pop('tenant_id', tenant.id),
            router_id=(router or core_router).id,
            ip_address=ip_address,
            mac_address=f"AA:BB:CC:00:00:{counter['n']:02X}",
            device_type=device_type,
            device_name=name,
            status=status,
            parent_id=parent.id if parent is not None else fields.pop('parent_id', None),
            **fields,
        )
        db.session.add(device)
        db.session.commit()
        return device

    return _make


@pytest.fixture()
def make_user(tenant, core_router):
    def _make(username, service_type='pppoe', expires_in_days=30, router=core_router, **fields):
        user = MikroTikUser(
            tenant_id=tenant.id,
            router_id=router.id if router is not None else None,
            service_type=service_type,
            username=username,
            official_name=fields.pop('official_name', username.title()),
            expiry_date=datetime.utcnow() + timedelta(days=expires_in_days),
            **fields,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make
