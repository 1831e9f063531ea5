from datetime import datetime, timedelta

import pytest

from ispdiag import db
from ispdiag.errors import NotFoundError
from ispdiag.models import Building, DiagnosticLog
from ispdiag.services.diagnostic_service import DiagnosticService, StepRecorder


@pytest.fixture()
def service(ctx):
    return DiagnosticService(sleep=lambda seconds: None)


def _names(log):
    return [step['step_name'] for step in log.steps]


def _step(log, name):
    return next(step for step in log.steps if step['step_name'] == name)


def test_healthy_subscriber_passes_every_step(network, service, make_device, make_user):
    station = make_device('ST-1', '10.10.1.1')
    user = make_user('jdoe', station_id=station.id)
    network.ppp_online.add('jdoe')
    network.reachable_hosts.add('10.10.1.1')

    log = service.run_diagnostic(user.id, user.tenant_id)

    assert _names(log) == [
        'Billing Check',
        'Mikrotik Router Check',
        'Client Status Check',
        'Station Check',
        'Neighbor Analysis (Station-Based)',
    ]
    assert {step['status'] for step in log.steps} == {'Success'}
    assert log.status == 'Success'
    assert log.final_conclusion == 'Client is online. No issues detected.'
    assert log.target_entity == 'jdoe'


def test_expired_billing_fails_first_step_but_run_continues(network, service, make_user):
    user = make_user('jdoe', expires_in_days=-3)
    expected_date = user.expiry_date.strftime('%Y-%m-%d')

    log = service.run_diagnostic(user.id, user.tenant_id)

    billing = log.steps[0]
    assert billing['step_name'] == 'Billing Check'
    assert billing['status'] == 'Failure'
    assert expected_date in billing['summary']
    assert _names(log)[1:] == ['Mikrotik Router Check', 'Client Status Check', 'Hardware Check']
    assert log.status == 'Failure'
    assert log.final_conclusion == 'Client is offline due to an expired subscription.'


def test_unreachable_router_marks_dependent_steps_not_applicable(network, service, core_router, make_device,
                                                                make_user):
    station = make_device('ST-1', '10.10.1.1')
    user = make_user('jdoe', station_id=station.id)
    network.down_routers.add(core_router.ip_address)

    log = service.run_diagnostic(user.id, user.tenant_id)

    assert _step(log, 'Mikrotik Router Check')['status'] == 'Failure'
    for name in ('Client Status Check', 'Station Check', 'Neighbor Analysis (Station-Based)'):
        step = _step(log, name)
        assert step['summary'].startswith('N/A')
        assert step['details'] == {'skipped': True}
    assert network.pings == {}
    assert log.final_conclusion == 'The core router "Core" is offline, affecting all connected clients.'


def test_user_without_router_is_a_configuration_error(network, service, make_user):
    user = make_user('orphan', router=None)

    log = service.run_diagnostic(user.id, user.tenant_id)

    assert _step(log, 'Mikrotik Router Check')['summary'] == 'No Mikrotik router is associated with this client.'
    assert log.final_conclusion == 'Configuration error: Client is not linked to a router.'


def test_hardware_walk_climbs_until_a_device_answers(network, service, make_device, make_user):
    backbone = make_device('Backbone', '10.0.0.1', device_type='Access')
    ap = make_device('AP-1', '10.10.0.2', device_type='Access', parent=backbone)
    station = make_device('ST-1', '10.10.1.1', parent=ap)
    user = make_user('jdoe', station_id=station.id)
    network.reachable_hosts.add('10.0.0.1')

    log = service.run_diagnostic(user.id, user.tenant_id)

    hardware = [step for step in log.steps if step['step_name'].endswith(' Check') and 'device_id' in step['details']]
    assert [(step['details']['device_id'], step['status']) for step in hardware] == [
        (station.id, 'Failure'),
        (ap.id, 'Failure'),
        (backbone.id, 'Success'),
    ]
    assert log.final_conclusion == 'Access "AP-1" (10.10.0.2) is offline, cutting off the client\'s station.'


def test_offline_station_alone_points_at_the_cpe(network, service, make_device, make_user):
    station = make_device('ST-1', '10.10.1.1')
    user = make_user('jdoe', station_id=station.id)

    log = service.run_diagnostic(user.id, user.tenant_id)

    assert _step(log, 'Station Check')['status'] == 'Failure'
    assert network.pings['10.10.1.1'] == 3
    assert log.final_conclusion.startswith("The client's CPE is offline.")


def test_station_neighbors_are_classified(network, service, make_device, make_user):
    station = make_device('ST-1', '10.10.1.1')
    user = make_user('jdoe', station_id=station.id)
    make_user('asmith', station_id=station.id)
    make_user('bexpired', station_id=station.id, expires_in_days=-10)
    make_user('conline', station_id=station.id)
    network.reachable_hosts.add('10.10.1.1')
    network.ppp_online.add('conline')

    log = service.run_diagnostic(user.id, user.tenant_id)

    neighbors = {row['name']: row for row in _step(log, 'Neighbor Analysis (Station-Based)')['details']['neighbors']}
    assert set(neighbors) == {'Asmith', 'Bexpired', 'Conline'}
    assert neighbors['Asmith']['reason'] == 'Network/Hardware Issue'
    assert neighbors['Bexpired']['account_status'] == 'Expired'
    assert neighbors['Bexpired']['reason'].startswith('Account expired on ')
    assert neighbors['Conline'] == {'name': 'Conline', 'is_online': True, 'account_status': 'Active', 'reason': 'N/A'}
    assert log.final_conclusion.startswith('Multiple clients on the same station are offline.')


def test_building_neighbors_are_used_without_station(network, service, tenant, make_user):
    building = Building(tenant_id=tenant.id, name='Block 7')
    db.session.add(building)
    db.session.commit()
    user = make_user('jdoe', building_id=building.id)
    make_user('asmith', building_id=building.id)
    network.ppp_online.add('asmith')

    log = service.run_diagnostic(user.id, user.tenant_id)

    step = _step(log, 'Neighbor Analysis (Building-Based)')
    assert step['summary'] == 'Analyzed 1 other user(s) in the same building.'
    assert log.final_conclusion.startswith('Client is offline, but their CPE and all neighbors are online.')


def test_station_and_building_paths_both_run(network, service, tenant, make_device, make_user):
    building = Building(tenant_id=tenant.id, name='Block 7')
    db.session.add(building)
    db.session.commit()
    station = make_device('ST-1', '10.10.1.1')
    network.reachable_hosts.add('10.10.1.1')
    user = make_user('jdoe', station_id=station.id, building_id=building.id, apartment_house_number='12B')
    make_user('asmith', station_id=station.id)
    make_user('bwells', building_id=building.id)
    network.ppp_online.add('asmith')

    log = service.run_diagnostic(user.id, user.tenant_id)

    assert _names(log)[-3:] == [
        'Station Check',
        'Neighbor Analysis (Station-Based)',
        'Neighbor Analysis (Building-Based)',
    ]
    building_step = _step(log, 'Neighbor Analysis (Building-Based)')
    assert [row['name'] for row in building_step['details']['neighbors']] == ['Bwells']
    assert log.final_conclusion.startswith('Multiple clients on the same building are offline.')


def test_apartment_without_building_warns_about_location(network, service, make_user):
    user = make_user('jdoe', apartment_house_number='12B')

    log = service.run_diagnostic(user.id, user.tenant_id)

    assert _step(log, 'Location Check')['status'] == 'Warning'
    assert log.status == 'Failure'
    assert log.final_conclusion == 'Client is offline, but no CPE is linked to them to continue diagnosis.'


def test_events_stream_start_steps_then_done(network, service, make_user):
    user = make_user('jdoe')
    events = []

    log = service.run_diagnostic(user.id, user.tenant_id, send_event=lambda event, data: events.append((event, data)))

    assert events[0] == ('start', {'message': 'Diagnostic process initiated...'})
    assert [event for event, _ in events[1:-1]] == ['step'] * len(log.steps)
    assert [data for _, data in events[1:-1]] == log.steps
    assert events[-1][0] == 'done'
    assert events[-1][1]['id'] == log.id


def test_missing_user_raises_not_found(network, service, tenant):
    with pytest.raises(NotFoundError) as excinfo:
        service.run_diagnostic(404, tenant.id)
    assert excinfo.value.message == 'Mikrotik User not found'
    assert DiagnosticLog.query.count() == 0


def test_history_is_newest_first_and_scoped(network, service, make_user):
    user = make_user('jdoe')
    first = service.run_diagnostic(user.id, user.tenant_id)
    second = service.run_diagnostic(user.id, user.tenant_id)
    first.created_at = datetime.utcnow() - timedelta(hours=1)
    db.session.commit()

    history = service.get_diagnostic_history(user.id, user.tenant_id)

    assert [log.id for log in history] == [second.id, first.id]
    assert service.get_diagnostic_log_by_id(first.id, user.id, user.tenant_id).id == first.id
    with pytest.raises(NotFoundError):
        service.get_diagnostic_log_by_id(first.id, user.id, user.tenant_id + 1)


def test_step_recorder_overall_status():
    recorder = StepRecorder()
    recorder.add('A', 'Success', 'ok')
    assert recorder.overall_status() == 'Success'
    recorder.skip('B', 'router down')
    assert recorder.overall_status() == 'Warning'
    recorder.add('C', 'Failure', 'bad')
    assert recorder.overall_status() == 'Failure'
