"""
Device root-cause, live ping and downtime history endpoints.
"""
from flask import Blueprint, jsonify

from ispdiag.services import device_service
from ispdiag.services.root_cause_service import verify_root_cause
from ispdiag.tenancy import admin_required, current_tenant_id

devices_bp = Blueprint('devices', __name__)


@devices_bp.route('/<int:device_id>/root-cause', methods=['POST'])
@admin_required()
def root_cause(device_id):
    result = verify_root_cause(device_id, current_tenant_id())
    return jsonify(result.to_dict())


@devices_bp.route('/<int:device_id>/ping', methods=['GET'])
@admin_required()
def ping(device_id):
    return jsonify(device_service.ping_device(device_id, current_tenant_id()))


@devices_bp.route('/<int:device_id>/downtime-logs', methods=['GET'])
@admin_required()
def downtime_logs(device_id):
    logs = device_service.get_device_downtime_logs(device_id, current_tenant_id())
    return jsonify([log.to_dict() for log in logs])
