import pytest

from ispdiag import db
from ispdiag.errors import NotFoundError
from ispdiag.models import Device, MikroTikRouter, Tenant
from ispdiag.services.root_cause_service import RootCauseWalker, verify_root_cause


def _ids(devices):
    return [device.id for device in devices]


def test_device_without_parent_is_its_own_root_cause(network, make_device):
    leaf = make_device('ST-1', '10.10.1.1')

    result = verify_root_cause(leaf.id, leaf.tenant_id)

    assert result.root_cause.id == leaf.id
    assert _ids(result.path) == [leaf.id]
    assert network.opened == 0


def test_reachable_parent_makes_child_the_root_cause(network, make_device):
    parent = make_device('AP-1', '10.10.0.2', device_type='Access')
    child = make_device('ST-1', '10.10.1.1', parent=parent, status='DOWN')
    network.reachable_hosts.add('10.10.0.2')

    result = verify_root_cause(child.id, child.tenant_id)

    assert result.root_cause.id == child.id
    assert _ids(result.path) == [parent.id, child.id]
    assert db.session.get(Device, parent.id).status == 'UP'


def test_unreachable_parent_is_retried_then_marked_down(network, make_device):
    parent = make_device('AP-1', '10.10.0.2', device_type='Access')
    child = make_device('ST-1', '10.10.1.1', parent=parent, status='DOWN')
    sleeps = []

    result = RootCauseWalker(sleep=sleeps.append, delay=2.0).verify_root_cause(child.id, child.tenant_id)

    assert network.pings['10.10.0.2'] == 3
    assert sleeps == [2.0, 2.0]
    assert db.session.get(Device, parent.id).status == 'DOWN'
    assert result.root_cause.id == parent.id


def test_flaky_parent_recovering_on_retry_is_online(network, make_device):
    parent = make_device('AP-1', '10.10.0.2', device_type='Access')
    child = make_device('ST-1', '10.10.1.1', parent=parent, status='DOWN')
    network.script_pings('10.10.0.2', False, True)

    result = verify_root_cause(child.id, child.tenant_id)

    assert network.pings['10.10.0.2'] == 2
    assert result.root_cause.id == child.id
    assert db.session.get(Device, parent.id).status == 'UP'


def test_chain_walk_stops_below_first_reachable_ancestor(network, make_device):
    root = make_device('Backbone', '10.0.0.1', device_type='Access')
    mid = make_device('AP-1', '10.10.0.2', device_type='Access', parent=root)
    leaf = make_device('ST-1', '10.10.1.1', parent=mid, status='DOWN')
    network.reachable_hosts.add('10.0.0.1')

    result = verify_root_cause(leaf.id, leaf.tenant_id)

    assert result.root_cause.id == mid.id
    assert _ids(result.path) == [leaf.id, root.id, mid.id]
    assert db.session.get(Device, mid.id).status == 'DOWN'
    assert db.session.get(Device, root.id).status == 'UP'


def test_fully_unreachable_chain_reports_topmost_device(network, make_device):
    root = make_device('Backbone', '10.0.0.1', device_type='Access')
    mid = make_device('AP-1', '10.10.0.2', device_type='Access', parent=root)
    leaf = make_device('ST-1', '10.10.1.1', parent=mid, status='DOWN')

    result = verify_root_cause(leaf.id, leaf.tenant_id)

    assert result.root_cause.id == root.id
    assert _ids(result.path) == [leaf.id, mid.id, root.id]
    assert {db.session.get(Device, i).status for i in (mid.id, root.id)} == {'DOWN'}


def test_dangling_parent_is_treated_as_no_parent(network, make_device, caplog):
    leaf = make_device('ST-1', '10.10.1.1', status='DOWN', parent_id=9999)

    result = verify_root_cause(leaf.id, leaf.tenant_id)

    assert result.root_cause.id == leaf.id
    assert _ids(result.path) == [leaf.id]
    assert result.dangling_parent_id == 9999
    assert result.to_dict()['dangling_parent_id'] == 9999
    assert 'no longer exists' in caplog.text
    assert network.opened == 0


def test_missing_device_raises_not_found(network, tenant):
    with pytest.raises(NotFoundError) as excinfo:
        verify_root_cause(12345, tenant.id)
    assert excinfo.value.status_code == 404
    assert excinfo.value.message == 'Device not found'


def test_device_of_other_tenant_is_not_found(network, make_device):
    other = Tenant(slug='isp-b', name='ISP B')
    db.session.add(other)
    db.session.commit()
    leaf = make_device('ST-1', '10.10.1.1')

    with pytest.raises(NotFoundError):
        verify_root_cause(leaf.id, other.id)


def test_parent_walk_requires_core_router(network, make_device, core_router):
    parent = make_device('AP-1', '10.10.0.2', device_type='Access')
    child = make_device('ST-1', '10.10.1.1', parent=parent)
    db.session.get(MikroTikRouter, core_router.id).is_core_router = False
    db.session.commit()

    with pytest.raises(NotFoundError) as excinfo:
        verify_root_cause(child.id, child.tenant_id)
    assert excinfo.value.message == 'Core router not found'


def test_parent_cycle_terminates(network, make_device):
    first = make_device('ST-1', '10.10.1.1')
    second = make_device('ST-2', '10.10.1.2', parent=first)
    first.parent_id = second.id
    db.session.commit()

    result = verify_root_cause(first.id, first.tenant_id)

    assert result.root_cause.id == second.id
    assert _ids(result.path) == [first.id, second.id]
