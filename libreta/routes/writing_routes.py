"""
Writing improvement route for Libreta.
"""
from flask import Blueprint, jsonify

from libreta.routes.common import request_data
from libreta.services.writing_service import improve_text

writing_bp = Blueprint('writing', __name__)


@writing_bp.route('/api/improve-writing', methods=['POST'])
def improve_writing():
    """Suggest a reworded text. The caller decides whether to apply it."""
    text = request_data().get('text') or ''
    if not isinstance(text, str) or not text.strip():
        return jsonify({"error": "text is required"}), 400
    suggestion = improve_text(text)
    if suggestion is None:
        return jsonify({"error": "Writing improvement unavailable"}), 503
    return jsonify({"original": text, "suggestion": suggestion})
