"""
Libreta API Routes
==================

All API route blueprints for the Libreta application.

Usage:
    from libreta.routes import register_routes
    register_routes(app)
"""
from .session_routes import session_bp
from .grade_routes import grade_bp
from .appreciation_routes import appreciation_bp
from .progress_routes import progress_bp
from .writing_routes import writing_bp
from .admin_routes import admin_bp


def register_routes(app):
    """Register all route blueprints with the Flask app."""
    app.register_blueprint(session_bp)
    app.register_blueprint(grade_bp)
    app.register_blueprint(appreciation_bp)
    app.register_blueprint(progress_bp)
    app.register_blueprint(writing_bp)
    app.register_blueprint(admin_bp)


__all__ = [
    'register_routes',
    'session_bp',
    'grade_bp',
    'appreciation_bp',
    'progress_bp',
    'writing_bp',
    'admin_bp',
]
