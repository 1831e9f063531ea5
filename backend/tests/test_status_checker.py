import pytest

from ispdiag.services import status_checker
from ispdiag.services.router_client import PingReply, RouterClient


def test_router_status_reflects_api_login(network, core_router):
    assert status_checker.check_router_status(core_router) is True

    network.down_routers.add(core_router.ip_address)
    assert status_checker.check_router_status(core_router) is False
    assert network.opened == network.closed == 1


def test_router_status_without_router_is_false():
    assert status_checker.check_router_status(None) is False


def test_pppoe_user_online_only_with_active_session(network, core_router, make_user):
    user = make_user('jdoe')
    assert status_checker.check_user_status(user, core_router) is False

    network.ppp_online.add('jdoe')
    assert status_checker.check_user_status(user, core_router) is True


def test_static_user_is_online_when_any_ping_answers(network, core_router, make_user):
    user = make_user('shop', service_type='static', ip_address='10.20.0.12')
    assert status_checker.check_user_status(user, core_router) is False

    network.reachable_hosts.add('10.20.0.12')
    assert status_checker.check_user_status(user, core_router) is True


def test_static_user_without_ip_is_offline_without_connecting(network, core_router, make_user):
    user = make_user('shop', service_type='static')
    assert status_checker.check_user_status(user, core_router) is False
    assert network.opened == 0


def test_user_probe_reports_unreachable_router(network, core_router, make_user):
    user = make_user('jdoe')
    network.ppp_online.add('jdoe')
    network.down_routers.add(core_router.ip_address)

    outcome = status_checker.probe_user(user, core_router)

    assert outcome == status_checker.CheckOutcome(online=False, router_reachable=False)


def test_cpe_status_uses_single_ping(network, core_router, make_device):
    device = make_device('ST-1', '10.10.1.1')
    network.reachable_hosts.add('10.10.1.1')

    assert status_checker.check_cpe_status(device, core_router) is True
    assert network.pings['10.10.1.1'] == 1


def test_cpe_ping_error_is_offline_and_connection_closed(network, core_router, make_device):
    device = make_device('ST-1', '10.10.1.1')
    network.fail_ping_hosts.add('10.10.1.1')

    outcome = status_checker.probe_cpe(device, core_router)

    assert outcome == status_checker.CheckOutcome(online=False, router_reachable=True)
    assert network.opened == network.closed == 1


def test_every_opened_connection_is_closed(network, core_router, make_device, make_user):
    device = make_device('ST-1', '10.10.1.1')
    user = make_user('jdoe')
    network.fail_ping_hosts.add('10.10.1.1')

    status_checker.check_router_status(core_router)
    status_checker.check_cpe_status(device, core_router)
    status_checker.check_user_status(user, core_router)

    assert network.opened == 3
    assert network.closed == 3


def test_probe_with_retry_stops_at_first_success():
    results = iter([False, False, True])
    sleeps = []

    assert status_checker.probe_with_retry(lambda: next(results), attempts=3, delay=2.0, sleep=sleeps.append)
    assert sleeps == [2.0, 2.0]


def test_probe_with_retry_does_not_sleep_after_last_attempt():
    calls = []
    sleeps = []

    def probe():
        calls.append(1)
        return False

    assert status_checker.probe_with_retry(probe, attempts=3, delay=1.5, sleep=sleeps.append) is False
    assert len(calls) == 3
    assert sleeps == [1.5, 1.5]


def test_ping_reply_parses_router_records():
    reply = PingReply.from_record({'host': '10.0.0.1', 'sent': '1', 'received': '0', 'status': 'timeout'})
    assert reply.timed_out
    assert not reply.answered

    assert PingReply.from_record({'host': '10.0.0.1', 'sent': '1', 'received': '1'}).answered


def test_router_client_write_maps_print_to_get_and_other_verbs_to_call():
    calls = []

    class Resource:
        def get(self, **params):
            calls.append(('get', params))
            return [{'.id': '*1', 'name': 'jdoe'}]

        def call(self, verb, params):
            calls.append(('call', verb, params))
            return [{'host': params['address'], 'sent': '1', 'received': '1'}]

    class Api:
        def get_resource(self, path):
            calls.append(('resource', path))
            return Resource()

    client = RouterClient('10.0.0.1', 'admin', 'secret')
    client._api = Api()

    sessions = client.active_ppp_sessions(name='jdoe')
    replies = client.ping('10.10.1.1', count=1)

    assert sessions[0].name == 'jdoe'
    assert replies[0].answered
    assert ('resource', '/ppp/active') in calls
    assert ('get', {'name': 'jdoe'}) in calls
    assert ('resource', '/') in calls
    assert ('call', 'ping', {'address': '10.10.1.1', 'count': '1'}) in calls


def test_router_client_typed_queue_and_hotspot_commands():
    calls = []

    class Resource:
        def __init__(self, path):
            self.path = path

        def get(self, **params):
            calls.append((self.path, 'get', params))
            if self.path == '/queue/simple':
                return [{'.id': '*4', 'name': 'jdoe', 'target': '10.20.0.12/32', 'max-limit': '10M/10M',
                         'disabled': 'false'}]
            return [{'.id': '*9', 'name': 'guest-1', 'profile': 'default'}]

        def call(self, verb, params):
            calls.append((self.path, verb, params))
            return []

    class Api:
        def get_resource(self, path):
            return Resource(path)

    client = RouterClient('10.0.0.1', 'admin', 'secret')
    client._api = Api()

    queue = client.simple_queues(name='jdoe')[0]
    removed = client.remove_hotspot_user('guest-1')

    assert queue.max_limit == '10M/10M'
    assert queue.disabled is False
    assert removed is True
    assert ('/ip/hotspot/user', 'remove', {'.id': '*9'}) in calls


def test_router_client_write_requires_connection():
    client = RouterClient('10.0.0.1', 'admin', 'secret')

    with pytest.raises(ConnectionError):
        client.write('/ppp/active/print')
