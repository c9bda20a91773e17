"""
Grade API routes for Libreta.
Competency grades, mass descriptive conclusions, behavior/values grades and
family-commitment evaluations for the selected course.
"""
import logging
from flask import Blueprint, jsonify

from libreta.routes.common import current_session, request_data, with_progress
from libreta.services import grading

grade_bp = Blueprint('grades', __name__)
logger = logging.getLogger(__name__)


@grade_bp.route('/api/grades', methods=['POST'])
def save_grade():
    """
    Set (or clear, with an empty grade) one competency grade.

    A failed save is the one write failure surfaced as an error status;
    the grade stays in the working set and in `unsynced`.
    """
    session, error = current_session()
    if error:
        return error
    data = request_data()
    try:
        result = grading.set_grade(
            session,
            data.get('student_id'),
            data.get('competency_id'),
            data.get('grade', ''),
            data.get('descriptive_conclusion'),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    result = with_progress(session, result)
    if result.get('applied') and not result.get('synced'):
        return jsonify(dict(result, error=result.get('error') or "Error al guardar la nota")), 500
    return jsonify(result)


@grade_bp.route('/api/grades/mass-conclusion/preview', methods=['POST'])
def preview_mass_conclusion():
    """How many graded slots a mass conclusion would overwrite."""
    session, error = current_session()
    if error:
        return error
    data = request_data()
    try:
        count = grading.count_mass_conclusion_targets(
            session,
            data.get('competency_id', grading.ALL_COMPETENCIES),
            data.get('filter_type', grading.ALL_WITH_GRADE),
            data.get('filter_value'),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"count": count})


@grade_bp.route('/api/grades/mass-conclusion', methods=['POST'])
def mass_conclusion():
    session, error = current_session()
    if error:
        return error
    data = request_data()
    try:
        result = grading.apply_mass_conclusion(
            session,
            data.get('competency_id', grading.ALL_COMPETENCIES),
            data.get('filter_type', grading.ALL_WITH_GRADE),
            data.get('filter_value'),
            data.get('text', ''),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    result = with_progress(session, result)
    if result.get('reason') == 'empty_text':
        return jsonify(dict(result, error="Conclusion text is required")), 400
    if result.get('applied') and not result.get('synced'):
        return jsonify(dict(result, error="Error al guardar las conclusiones")), 500
    return jsonify(result)


@grade_bp.route('/api/behavior', methods=['POST'])
def save_behavior():
    session, error = current_session()
    if error:
        return error
    data = request_data()
    try:
        result = grading.set_behavior(session, data.get('student_id'), data.get('field'), data.get('value', ''))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(with_progress(session, result))


@grade_bp.route('/api/family-evaluations', methods=['POST'])
def save_family_evaluation():
    session, error = current_session()
    if error:
        return error
    data = request_data()
    try:
        result = grading.set_family_evaluation(
            session, data.get('student_id'), data.get('commitment_id'), data.get('grade', ''))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(with_progress(session, result))
