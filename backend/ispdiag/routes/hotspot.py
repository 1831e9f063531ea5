from flask import Blueprint, jsonify, request

from ispdiag.services.hotspot_service import create_hotspot_user
from ispdiag.tenancy import admin_required, current_tenant_id

hotspot_bp = Blueprint('hotspot', __name__)


@hotspot_bp.route('/users', methods=['POST'])
@admin_required()
def create_user():
    user = create_hotspot_user(request.get_json(silent=True) or {}, current_tenant_id())
    return jsonify(user.to_dict()), 201
