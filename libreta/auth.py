"""
Supabase JWT Authentication for Libreta.
Every /api/ route except the health check needs a Bearer token issued by
Supabase Auth. The token subject is the profiles.id that keys the user's
grading session.
"""
import logging
import os
import jwt
from flask import request, jsonify, g

logger = logging.getLogger(__name__)

PUBLIC_EXACT = [
    '/api/health',
]


class AuthError(Exception):
    """Token rejected; the message is returned to the client with a 401."""


def get_jwt_secret():
    """Get the Supabase JWT secret from environment."""
    secret = os.getenv('SUPABASE_JWT_SECRET')
    if not secret:
        raise RuntimeError('SUPABASE_JWT_SECRET not configured')
    return secret


def decode_token(token):
    """
    Validate a Supabase JWT and return (user_id, email).
    Raises AuthError for expired, forged or subject-less tokens.
    """
    try:
        payload = jwt.decode(
            token,
            get_jwt_secret(),
            algorithms=['HS256'],
            audience='authenticated',
        )
    except jwt.ExpiredSignatureError:
        raise AuthError('Session expired, sign in again')
    except jwt.InvalidTokenError as e:
        logger.debug("Rejected token: %s", e)
        raise AuthError('Invalid or expired token')

    user_id = payload.get('sub')
    if not user_id:
        raise AuthError('Token has no user')
    return user_id, payload.get('email', '')


def bearer_token():
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None
    return auth_header[len('Bearer '):]


def init_auth(app):
    """
    Register the before_request auth hook on the Flask app.
    Call this BEFORE registering blueprints.
    """
    @app.before_request
    def check_auth():
        # Skip non-API routes and CORS preflight
        if not request.path.startswith('/api/') or request.method == 'OPTIONS':
            return None
        if request.path in PUBLIC_EXACT:
            return None

        token = bearer_token()
        if token is None:
            return jsonify({'error': 'Authentication required'}), 401
        try:
            g.user_id, g.user_email = decode_token(token)
        except AuthError as e:
            return jsonify({'error': str(e)}), 401
        return None
