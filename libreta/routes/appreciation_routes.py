"""
Appreciation API routes for Libreta.
Tutor drafting and sending, supervisor review and approval.
"""
import logging
from flask import Blueprint, request, jsonify

from libreta.routes.common import current_session, request_data, with_progress
from libreta.services import appreciations, monitoring

appreciation_bp = Blueprint('appreciations', __name__)
logger = logging.getLogger(__name__)


@appreciation_bp.route('/api/appreciations/draft', methods=['POST'])
def save_draft():
    """Autosave comment text. The write is debounced per student."""
    session, error = current_session()
    if error:
        return error
    data = request_data()
    try:
        result = appreciations.save_draft(session, data.get('student_id'), data.get('comment', ''))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(with_progress(session, result))


@appreciation_bp.route('/api/appreciations/flush', methods=['POST'])
def flush_drafts():
    session, error = current_session()
    if error:
        return error
    session.debouncer.flush_all()
    return jsonify({"pending": session.debouncer.pending(), "unsynced": len(session.unsynced)})


@appreciation_bp.route('/api/appreciations/send', methods=['POST'])
def send_for_review():
    session, error = current_session()
    if error:
        return error
    try:
        result = appreciations.submit_for_review(session, request_data().get('student_id'))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(with_progress(session, result))


@appreciation_bp.route('/api/appreciations/toggle-approval', methods=['POST'])
def toggle_approval():
    session, error = current_session()
    if error:
        return error
    try:
        result = appreciations.toggle_approval(session, request_data().get('student_id'))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(with_progress(session, result))


@appreciation_bp.route('/api/appreciations/review', methods=['GET'])
def review_queue():
    """Review list for the selected bimestre: ?status=pending|approved|all&search=..."""
    session, error = current_session()
    if error:
        return error
    if not session.period:
        return jsonify({"error": "No bimestre selected"}), 400
    try:
        items = monitoring.review_queue(
            session.store,
            session.period['id'],
            session.role,
            status=request.args.get('status', 'pending'),
            search=request.args.get('search', ''),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"items": items, "count": len(items), "can_approve": session.permissions()['can_approve']})
