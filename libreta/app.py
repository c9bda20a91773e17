#!/usr/bin/env python3
"""
Libreta - School Grading Portal API
===================================
Run: python3 -m libreta.app
Then point the web client at: http://localhost:3000
"""
import sys
import logging

from flask import Flask, jsonify
from flask_cors import CORS

from libreta import __version__
from libreta.config import config, HOST, PORT, DEBUG
from libreta.auth import init_auth
from libreta.routes import register_routes
from libreta.store import set_store

LOG_FORMAT = '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'


def configure_logging(level=None):
    """Single stdout handler on the libreta logger tree."""
    root = logging.getLogger('libreta')
    root.setLevel((level or config.log_level or 'INFO').upper())
    if not any(getattr(h, '_libreta', False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._libreta = True
        root.addHandler(handler)
    return root


def create_app(store=None):
    """
    Build the Flask app.

    Args:
        store: data store to install (GradeStore or a test double).
               When omitted the Supabase-backed store is built on first use.
    """
    configure_logging()
    if store is not None:
        set_store(store)

    app = Flask(__name__)
    CORS(app)

    # ══════════════════════════════════════════════════════════════
    # AUTHENTICATION
    # ══════════════════════════════════════════════════════════════
    init_auth(app)

    # ══════════════════════════════════════════════════════════════
    # ROUTES
    # ══════════════════════════════════════════════════════════════
    register_routes(app)

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({"status": "ok", "version": __version__})

    return app


if __name__ == '__main__':
    app = create_app()

    print()
    print("+" + "=" * 50 + "+")
    print("|  Libreta - School Grading Portal API             |")
    print("+" + "=" * 50 + "+")
    print(f"|  Listening on http://{HOST}:{PORT}".ljust(51) + "|")
    print("|  Press Ctrl+C to stop                            |")
    print("+" + "=" * 50 + "+")
    print()

    app.run(host=HOST, port=PORT, debug=DEBUG)
