# utils/auth.py
from functools import wraps
from flask import request, jsonify, current_app
import logging

from database import get_supabase

logger = logging.getLogger(__name__)


def resolve_supabase_user(token):
    """Verify the JWT with Supabase Auth and return the user id, or None."""
    user_response = get_supabase().auth.get_user(token)
    if not user_response or not user_response.user:
        return None
    return user_response.user.id


def token_required(f):
    """Decorator to protect routes with a Supabase bearer token"""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = None
        auth_header = request.headers.get('Authorization', '')
        if auth_header.startswith('Bearer '):
            token = auth_header.split(' ', 1)[1].strip()

        if not token:
            logger.warning(f"Token missing for {request.path}")
            return jsonify({'error': 'Token is required'}), 401

        resolver = current_app.config.get('AUTH_RESOLVER') or resolve_supabase_user
        try:
            current_user_id = resolver(token)
        except Exception as e:
            logger.error(f"Token validation error: {str(e)}")
            return jsonify({'error': 'Invalid token'}), 401

        if not current_user_id:
            return jsonify({'error': 'Invalid token'}), 401

        return f(str(current_user_id), *args, **kwargs)

    return decorated
