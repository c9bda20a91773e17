"""
Session API routes for Libreta.
Profile, bimestre and course selection, and the current working set.
"""
import logging
from flask import Blueprint, jsonify, g

from libreta.routes.common import current_session, request_data
from libreta.services.session import drop_session, COURSE

session_bp = Blueprint('session', __name__)
logger = logging.getLogger(__name__)


@session_bp.route('/api/me', methods=['GET'])
def me():
    session, error = current_session()
    if error:
        return error
    return jsonify({
        "user_id": session.user_id,
        "email": g.get("user_email", ""),
        "full_name": session.full_name,
        "role": session.role,
        "tutor_classroom_id": session.tutor_classroom_id,
        "permissions": session.permissions(),
        "academic_load": session.academic_load,
        "tutor_sections": session.tutor_sections(),
    })


@session_bp.route('/api/periods', methods=['GET'])
def list_periods():
    session, error = current_session()
    if error:
        return error
    return jsonify({"periods": session.periods, "selected": session.period})


@session_bp.route('/api/periods/select', methods=['POST'])
def select_period():
    """Switch the selected bimestre (pending drafts are written first)."""
    session, error = current_session()
    if error:
        return error
    period_id = request_data().get('period_id')
    if period_id is None:
        return jsonify({"error": "period_id is required"}), 400
    try:
        session.select_period(period_id)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(session.snapshot())


@session_bp.route('/api/courses/select', methods=['POST'])
def select_course():
    session, error = current_session()
    if error:
        return error
    data = request_data()
    assignment_id = data.get('assignment_id')
    if assignment_id is None:
        return jsonify({"error": "assignment_id is required"}), 400
    try:
        session.select_course(assignment_id, data.get('mode', COURSE))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except LookupError as e:
        return jsonify({"error": str(e)}), 404
    except PermissionError as e:
        return jsonify({"error": str(e)}), 403
    return jsonify(session.snapshot())


@session_bp.route('/api/review/open', methods=['POST'])
def open_review():
    """Load every section's appreciations for review (no course selected)."""
    session, error = current_session()
    if error:
        return error
    if not session.period:
        return jsonify({"error": "No bimestre selected"}), 400
    session.open_review()
    return jsonify(session.snapshot())


@session_bp.route('/api/workspace', methods=['GET'])
def workspace():
    session, error = current_session()
    if error:
        return error
    return jsonify(session.snapshot())


@session_bp.route('/api/sync/retry', methods=['POST'])
def retry_sync():
    """Re-issue writes the store has not confirmed."""
    session, error = current_session()
    if error:
        return error
    result = session.retry_unsynced()
    if result["remaining"]:
        logger.warning("%d changes still unsynced for %s", result["remaining"], session.user_id)
    return jsonify(result)


@session_bp.route('/api/session/close', methods=['POST'])
def close_session():
    drop_session(g.get('user_id'))
    return jsonify({"status": "closed"})
