"""
Inbound status reports from routers (netwatch up/down scripts, PPP on-up/on-down).
"""
import hmac

from flask import Blueprint, current_app, jsonify, request

from ispdiag.services.monitoring_service import MonitoringService
from ispdiag.tenancy import current_tenant_id, tenant_required

webhooks_bp = Blueprint('webhooks', __name__)


def _api_key_valid() -> bool:
    expected = current_app.config.get('WEBHOOK_API_KEY')
    provided = request.headers.get('X-API-Key') or request.args.get('api_key') or ''
    return bool(expected) and hmac.compare_digest(str(provided).encode('utf-8'), str(expected).encode('utf-8'))


@webhooks_bp.route('/network-event', methods=['GET', 'POST'])
def network_event():
    if not current_app.config.get('WEBHOOK_API_KEY'):
        return jsonify({'error': 'Webhook endpoint is not configured'}), 503
    if not _api_key_valid():
        return jsonify({'error': 'Invalid API key'}), 401
    return _handle_event()


@tenant_required
def _handle_event():
    data = dict(request.args)
    data.pop('api_key', None)
    data.update(request.get_json(silent=True) or {})
    if 'device_id' in data and data['device_id'] not in (None, ''):
        try:
            data['device_id'] = int(data['device_id'])
        except (TypeError, ValueError):
            return jsonify({'error': 'device_id must be an integer'}), 400
    result = MonitoringService().handle_network_event(current_tenant_id(), data)
    return jsonify(result)
