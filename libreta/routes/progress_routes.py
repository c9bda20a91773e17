"""
Progress & Monitoring API routes for Libreta.
Completion percentages per course, section, teacher and school, plus the
supervisor dashboards (section cards, stats, student audit).
"""
import logging
from flask import Blueprint, request, jsonify

from libreta.routes.common import current_session
from libreta.services import completion, monitoring
from libreta.services.permissions import DOCENTE, STAFF_ROLES

progress_bp = Blueprint('progress', __name__)
logger = logging.getLogger(__name__)


def _period_id(session):
    """?period_id=... when it belongs to the active year, else the selected bimestre."""
    requested = request.args.get('period_id')
    if requested is None:
        return session.period['id'] if session.period else None
    match = next((p for p in session.periods if str(p['id']) == str(requested)), None)
    return match['id'] if match else None


def _completion_options():
    raw = request.args.get('categories', '')
    categories = tuple(c.strip() for c in raw.split(',') if c.strip()) or None
    if categories:
        unknown = set(categories) - set(completion.ALL_CATEGORIES)
        if unknown:
            raise ValueError(f"Unknown categories: {', '.join(sorted(unknown))}")
    bar = request.args.get('bar', completion.APPROVED)
    if bar not in (completion.APPROVED, completion.WRITTEN):
        raise ValueError(f"Unknown appreciation bar: {bar!r}")
    return categories, bar


def _completion_response(session, scope):
    period_id = _period_id(session)
    if period_id is None:
        return jsonify({"error": "No bimestre selected"}), 400
    try:
        categories, bar = _completion_options()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    result = completion.compute_completion(session.store, scope, period_id,
                                           categories=categories, appreciation_bar=bar)
    return jsonify(dict(result, period_id=period_id))


# ═══════════════════════════════════════════════════════
# COMPLETION
# ═══════════════════════════════════════════════════════

@progress_bp.route('/api/progress/course', methods=['GET'])
def course_progress():
    session, error = current_session()
    if error:
        return error
    if not session.course:
        return jsonify({"error": "No course selected"}), 400
    scope = completion.course_scope(session.course['classroom_id'], session.competency_ids())
    return _completion_response(session, scope)


@progress_bp.route('/api/progress/section/<int:classroom_id>', methods=['GET'])
def section_progress(classroom_id):
    session, error = current_session()
    if error:
        return error
    if session.role == DOCENTE and classroom_id not in {load['classroom_id'] for load in session.academic_load}:
        return jsonify({"error": "Section not in your academic load"}), 403
    return _completion_response(session, completion.section_scope(classroom_id))


@progress_bp.route('/api/progress/teacher', methods=['GET'])
def teacher_progress():
    """Own progress; staff may pass ?profile_id= to inspect another teacher."""
    session, error = current_session()
    if error:
        return error
    profile_id = request.args.get('profile_id')
    if profile_id and profile_id != session.user_id:
        if session.role not in STAFF_ROLES:
            return jsonify({"error": "Forbidden"}), 403
        profile = session.store.query_profile(profile_id)
        if not profile:
            return jsonify({"error": "Profile not found"}), 404
        scope = completion.teacher_scope(profile_id, profile.get('tutor_classroom_id'))
    else:
        scope = completion.teacher_scope(session.user_id, session.tutor_classroom_id)
    return _completion_response(session, scope)


@progress_bp.route('/api/progress/global', methods=['GET'])
def global_progress():
    session, error = current_session()
    if error:
        return error
    return _completion_response(session, completion.global_scope())


# ═══════════════════════════════════════════════════════
# MONITORING (Supervisor / Administrador)
# ═══════════════════════════════════════════════════════

def _staff_session():
    session, error = current_session()
    if error:
        return None, None, error
    if session.role not in STAFF_ROLES:
        return None, None, (jsonify({"error": "Forbidden"}), 403)
    period_id = _period_id(session)
    if period_id is None:
        return None, None, (jsonify({"error": "No bimestre selected"}), 400)
    return session, period_id, None


@progress_bp.route('/api/monitoring/sections', methods=['GET'])
def monitoring_sections():
    """Section cards, most pending appreciations first: ?status=all|pending|completed|incomplete"""
    session, period_id, error = _staff_session()
    if error:
        return error
    try:
        sections = monitoring.filter_sections(monitoring.section_overview(session.store, period_id),
                                              request.args.get('status', 'all'))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"sections": sections, "period_id": period_id})


@progress_bp.route('/api/monitoring/stats', methods=['GET'])
def monitoring_stats():
    session, period_id, error = _staff_session()
    if error:
        return error
    return jsonify(dict(monitoring.school_stats(session.store, period_id), period_id=period_id))


@progress_bp.route('/api/monitoring/sections/<int:classroom_id>/students', methods=['GET'])
def monitoring_students(classroom_id):
    session, period_id, error = _staff_session()
    if error:
        return error
    return jsonify({"students": monitoring.student_audit(session.store, classroom_id, period_id),
                    "period_id": period_id})
