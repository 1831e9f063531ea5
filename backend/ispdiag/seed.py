from datetime import datetime, timedelta
import json
import os

import click

from ispdiag import db
from ispdiag.models import (
    ApplicationSettings,
    Building,
    Device,
    DiagnosticLog,
    DowntimeLog,
    HotspotUser,
    MikroTikRouter,
    MikroTikUser,
    Notification,
    Tenant,
    UserDowntimeLog,
)


def seed_data():
    """Seeds the database with a small sample network."""

    print("Deleting old data...")
    for model in (DiagnosticLog, UserDowntimeLog, DowntimeLog, Notification, HotspotUser, MikroTikUser,
                  Device, Building, MikroTikRouter, ApplicationSettings, Tenant):
        db.session.query(model).delete()
    db.session.commit()
    print("Old data deleted.")

    print("Creating new sample data...")

    tenant = Tenant(slug="default", name="Default ISP Tenant")
    db.session.add(tenant)
    db.session.commit()
    print(f"Created tenant: {tenant.slug}")

    admin_email = os.environ.get('SEED_ADMIN_EMAIL', 'noc@ispdiag.local')
    db.session.add(ApplicationSettings(tenant_id=tenant.id, admin_notification_emails=[admin_email]))

    core = MikroTikRouter(
        name="Core Router",
        ip_address="192.168.88.1",
        username="admin",
        password=os.environ.get('SEED_ROUTER_PASSWORD', 'your_router_password'),
        api_port=8728,
        is_core_router=True,
        tenant_id=tenant.id,
    )
    db.session.add(core)
    db.session.commit()

    building = Building(name="Block A", tenant_id=tenant.id)
    db.session.add(building)
    db.session.commit()

    access_point = Device(
        tenant_id=tenant.id,
        router_id=core.id,
        ip_address="10.10.0.2",
        mac_address="AA:BB:CC:00:00:01",
        device_type="Access",
        device_name="AP-North",
        ssid="north-sector",
    )
    db.session.add(access_point)
    db.session.commit()

    stations = []
    for index, name in enumerate(("ST-Block-A", "ST-Block-B"), start=1):
        station = Device(
            tenant_id=tenant.id,
            router_id=core.id,
            ip_address=f"10.10.1.{index}",
            mac_address=f"AA:BB:CC:00:01:0{index}",
            device_type="Station",
            device_name=name,
            ssid="north-sector",
            parent_id=access_point.id,
            physical_building_id=building.id if index == 1 else None,
        )
        stations.append(station)
    db.session.add_all(stations)
    db.session.commit()

    now = datetime.utcnow()
    users = [
        MikroTikUser(
            tenant_id=tenant.id,
            router_id=core.id,
            service_type="pppoe",
            username="jdoe",
            official_name="John Doe",
            mobile_number="0700000001",
            expiry_date=now + timedelta(days=30),
            station_id=stations[0].id,
            building_id=building.id,
            apartment_house_number="A1",
        ),
        MikroTikUser(
            tenant_id=tenant.id,
            router_id=core.id,
            service_type="pppoe",
            username="asmith",
            official_name="Alice Smith",
            mobile_number="0700000002",
            expiry_date=now + timedelta(days=12),
            station_id=stations[0].id,
            building_id=building.id,
            apartment_house_number="A2",
        ),
        MikroTikUser(
            tenant_id=tenant.id,
            router_id=core.id,
            service_type="static",
            username="shop-12",
            official_name="Corner Shop",
            ip_address="10.20.0.12",
            expiry_date=now - timedelta(days=3),
            station_id=stations[1].id,
        ),
    ]
    db.session.add_all(users)
    db.session.commit()

    print("Sample data has been successfully seeded to the database!")
    print(f"  tenant id: {tenant.id} (send it as X-Tenant-ID)")
    print(f"  alerts go to: {admin_email}")


def register_commands(app):
    @app.cli.command('seed')
    def seed_command():
        """Replace all data with the sample network."""
        seed_data()

    @app.cli.command('sweep')
    @click.argument('target', type=click.Choice(['devices', 'users', 'routers']))
    @click.option('--tenant', 'tenant_id', type=int, required=True, help='Tenant to sweep.')
    def sweep_command(target, tenant_id):
        """Run one monitoring sweep in the foreground."""
        from ispdiag.services.monitoring_service import MonitoringService

        service = MonitoringService()
        sweep = {
            'devices': service.check_all_devices,
            'users': service.perform_user_status_check,
            'routers': service.perform_router_status_check,
        }[target]
        click.echo(json.dumps(sweep(tenant_id), indent=2, default=str))

    @app.cli.command('issue-token')
    @click.option('--tenant', 'tenant_id', type=int, required=True, help='Tenant the token is bound to.')
    @click.option('--identity', default='noc', show_default=True, help='Operator the token is issued to.')
    def issue_token_command(tenant_id, identity):
        """Print an admin access token for the API."""
        from flask_jwt_extended import create_access_token

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None or not tenant.is_active:
            raise click.ClickException(f"Tenant {tenant_id} not found or inactive.")
        click.echo(create_access_token(identity=identity, additional_claims={'tenant_id': tenant.id, 'role': 'admin'}))
