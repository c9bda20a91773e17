"""
Administrator configuration routes for Libreta.
Curricular areas can be switched off without deleting their data; inactive
areas disappear from teacher loads and monitoring.
"""
import logging
from flask import Blueprint, jsonify

from libreta.routes.common import current_session, request_data
from libreta.store import StoreError

admin_bp = Blueprint('admin', __name__)
logger = logging.getLogger(__name__)


def _admin_session():
    session, error = current_session()
    if error:
        return None, error
    if not session.permissions()['can_manage_areas']:
        return None, (jsonify({"error": "Administrador role required"}), 403)
    return session, None


@admin_bp.route('/api/admin/areas', methods=['GET'])
def list_areas():
    session, error = _admin_session()
    if error:
        return error
    return jsonify({"areas": session.store.query_curricular_areas()})


@admin_bp.route('/api/admin/areas/<int:area_id>/toggle', methods=['POST'])
def toggle_area(area_id):
    """Flip an area's active flag, or set it explicitly with {"active": bool}."""
    session, error = _admin_session()
    if error:
        return error
    area = next((a for a in session.store.query_curricular_areas() if a.get('id') == area_id), None)
    if area is None:
        return jsonify({"error": f"Area {area_id} not found"}), 404

    data = request_data()
    active = data['active'] if isinstance(data.get('active'), bool) else not area.get('active', True)
    try:
        session.store.set_area_active(area_id, active)
    except StoreError as e:
        logger.error("Error toggling area %s: %s", area_id, e)
        return jsonify({"error": str(e)}), 500

    logger.info("Area %s set active=%s by %s", area_id, active, session.user_id)
    return jsonify({"id": area_id, "active": active})
