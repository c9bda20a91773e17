"""
Shared helpers for route handlers.
"""
from flask import g, jsonify, request

from libreta.store import get_store
from libreta.services import completion
from libreta.services.session import get_session, COURSE


def request_data():
    return request.get_json(silent=True) or {}


def current_session():
    """
    Session of the authenticated user with its period re-read from the store.

    Returns (session, None) or (None, error_response).
    """
    try:
        session = get_session(get_store(), g.get('user_id'))
    except PermissionError as e:
        return None, (jsonify({"error": str(e)}), 403)
    if session is None:
        return None, (jsonify({"error": "Profile not found"}), 404)
    session.refresh_period()
    return session, None



def with_progress(session, result):
    """Attach a fresh recount of the selected course (or tutored section) after an applied change."""
    if not result.get('applied') or not session.course or not session.period:
        return result
    if session.mode == COURSE:
        scope = completion.course_scope(session.course['classroom_id'], session.competency_ids())
    else:
        scope = completion.section_scope(session.course['classroom_id'])
    return dict(result, progress=completion.compute_completion(session.store, scope, session.period['id']))
