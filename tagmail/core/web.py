"""
Shared helpers for the admin blueprints: login guard, access to the
Tagmail extension, tenant resolution and error-to-JSON mapping.
"""

import logging
from functools import wraps

from flask import current_app, jsonify, request, session

from .exceptions import (
    CampaignValidationError, InvalidTransitionError, NotFoundError, TagmailError
)

logger = logging.getLogger(__name__)


def admin_required(f):
    """Decorator to require admin login"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'admin_id' not in session:
            return jsonify({'error': 'Authentication required'}), 401
        return f(*args, **kwargs)
    return decorated_function


def get_tagmail():
    """The Tagmail extension registered on the current app"""
    return current_app.extensions['tagmail']


def get_db():
    return get_tagmail().db


def resolve_database_id():
    """Tenant for this request: ?database_id=, JSON database_id, else the active one"""
    database_id = request.args.get('database_id', type=int)
    if database_id is None and request.is_json:
        database_id = (request.get_json(silent=True) or {}).get('database_id')
    if database_id is None:
        database_id = get_tagmail().active_database_id()
    if database_id is None:
        raise NotFoundError('No active database. Create one first.')
    return int(database_id)


def error_response(e, context='Request failed'):
    """Map an exception raised by a route to a JSON error response"""
    if isinstance(e, NotFoundError):
        return jsonify({'error': str(e)}), 404
    if isinstance(e, InvalidTransitionError):
        return jsonify({'error': str(e), 'status': e.status}), 409
    if isinstance(e, CampaignValidationError):
        return jsonify({'error': e.message, 'reason': e.reason}), 400
    if isinstance(e, (TagmailError, ValueError)):
        return jsonify({'error': str(e)}), 400

    logger.error(f"{context}: {e}")
    try:
        from .logging_service import db_log
        db_log('error', 'http', context, {'error': str(e), 'type': type(e).__name__})
    except Exception:
        pass
    return jsonify({'error': str(e)}), 500
