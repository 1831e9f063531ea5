"""
Subscriber and bulk diagnostic endpoints.
"""
from flask import Blueprint, jsonify, request

from ispdiag import limiter
from ispdiag.services import device_service
from ispdiag.services.bulk_diagnostic_service import bulk_diagnostic_service
from ispdiag.services.diagnostic_service import diagnostic_service
from ispdiag.sse import stream_run
from ispdiag.tenancy import admin_required, current_tenant_id

diagnostics_bp = Blueprint('diagnostics', __name__)


@diagnostics_bp.route('/users/<int:user_id>/diagnostics', methods=['POST'])
@limiter.limit("30/minute")
@admin_required()
def run_diagnostic(user_id):
    log = diagnostic_service.run_diagnostic(user_id, current_tenant_id())
    return jsonify(log.to_dict()), 201


@diagnostics_bp.route('/users/<int:user_id>/diagnostics/stream', methods=['GET'])
@limiter.limit("30/minute")
@admin_required()
def stream_diagnostic(user_id):
    tenant_id = current_tenant_id()
    return stream_run(lambda send_event: diagnostic_service.run_diagnostic(user_id, tenant_id, send_event))


@diagnostics_bp.route('/users/<int:user_id>/diagnostics', methods=['GET'])
@admin_required()
def diagnostic_history(user_id):
    logs = diagnostic_service.get_diagnostic_history(user_id, current_tenant_id())
    return jsonify([log.to_dict() for log in logs])


@diagnostics_bp.route('/users/<int:user_id>/diagnostics/<int:log_id>', methods=['GET'])
@admin_required()
def diagnostic_log(user_id, log_id):
    log = diagnostic_service.get_diagnostic_log_by_id(log_id, user_id, current_tenant_id())
    return jsonify(log.to_dict())


@diagnostics_bp.route('/users/<int:user_id>/downtime-logs', methods=['GET'])
@admin_required()
def user_downtime_logs(user_id):
    logs = device_service.get_user_downtime_logs(user_id, current_tenant_id())
    return jsonify([log.to_dict() for log in logs])


def _bulk_params():
    data = request.get_json(silent=True) or {}
    return data.get('device_id'), data.get('user_id')


@diagnostics_bp.route('/diagnostics/bulk', methods=['POST'])
@limiter.limit("10/minute")
@admin_required()
def run_bulk_diagnostic():
    device_id, user_id = _bulk_params()
    log = bulk_diagnostic_service.run_bulk_diagnostic(device_id, current_tenant_id(), user_id=user_id)
    return jsonify(log.to_dict()), 201


@diagnostics_bp.route('/diagnostics/bulk/stream', methods=['POST'])
@limiter.limit("10/minute")
@admin_required()
def stream_bulk_diagnostic():
    device_id, user_id = _bulk_params()
    tenant_id = current_tenant_id()
    return stream_run(
        lambda send_event: bulk_diagnostic_service.run_bulk_diagnostic(
            device_id, tenant_id, user_id=user_id, send_event=send_event
        )
    )
