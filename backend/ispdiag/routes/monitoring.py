"""
On-demand monitoring sweeps.
"""
from flask import Blueprint, jsonify, request

from ispdiag import limiter
from ispdiag.errors import BadRequestError
from ispdiag.services.monitoring_service import MonitoringService
from ispdiag.tenancy import admin_required, current_tenant_id

monitoring_bp = Blueprint('monitoring', __name__)

SWEEPS = ('devices', 'users', 'routers')


@monitoring_bp.route('/sweep', methods=['POST'])
@limiter.limit("6/minute")
@admin_required()
def sweep():
    """Run the requested sweeps now and return their summaries."""
    data = request.get_json(silent=True) or {}
    targets = data.get('targets') or list(SWEEPS)
    if isinstance(targets, str):
        targets = [targets]
    unknown = [target for target in targets if target not in SWEEPS]
    if unknown:
        raise BadRequestError(f"Unknown sweep target(s): {', '.join(map(str, unknown))}")

    tenant_id = current_tenant_id()
    service = MonitoringService()
    results = {}
    if 'routers' in targets:
        results['routers'] = service.perform_router_status_check(tenant_id)
    if 'devices' in targets:
        results['devices'] = service.check_all_devices(tenant_id)
    if 'users' in targets:
        results['users'] = service.perform_user_status_check(tenant_id)
    return jsonify(results)
