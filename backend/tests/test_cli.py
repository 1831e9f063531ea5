import json

from ispdiag.models import Device, MikroTikRouter, MikroTikUser, Tenant


def test_seed_builds_sample_network(app, ctx):
    result = app.test_cli_runner().invoke(args=['seed'])

    assert result.exit_code == 0, result.output
    assert 'successfully seeded' in result.output
    assert Tenant.query.count() == 1
    assert MikroTikRouter.query.filter_by(is_core_router=True).count() == 1
    access_point = Device.query.filter_by(device_type='Access').one()
    assert {station.parent_id for station in Device.query.filter_by(device_type='Station')} == {access_point.id}
    assert MikroTikUser.query.count() == 3


def test_seed_can_run_twice(app, ctx):
    runner = app.test_cli_runner()
    runner.invoke(args=['seed'])

    result = runner.invoke(args=['seed'])

    assert result.exit_code == 0, result.output
    assert Tenant.query.count() == 1


def test_sweep_command_prints_summary(app, network, core_router):
    result = app.test_cli_runner().invoke(args=['sweep', 'routers', '--tenant', str(core_router.tenant_id)])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)['online'] == 1


def test_sweep_command_rejects_unknown_target(app, ctx):
    result = app.test_cli_runner().invoke(args=['sweep', 'olts', '--tenant', '1'])

    assert result.exit_code != 0


def test_issue_token_binds_tenant_and_admin_role(app, tenant):
    from flask_jwt_extended import decode_token

    result = app.test_cli_runner().invoke(args=['issue-token', '--tenant', str(tenant.id)])

    assert result.exit_code == 0, result.output
    claims = decode_token(result.stdout.strip())
    assert claims['tenant_id'] == tenant.id
    assert claims['role'] == 'admin'


def test_issue_token_for_unknown_tenant_fails(app, ctx):
    result = app.test_cli_runner().invoke(args=['issue-token', '--tenant', '999'])

    assert result.exit_code != 0
    assert 'Tenant 999 not found' in result.output
