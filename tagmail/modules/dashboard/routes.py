"""
Dashboard Routes
================
"""

import logging
from flask import jsonify, request, session

from tagmail.core.web import admin_required, error_response, get_db, resolve_database_id
from . import dashboard_bp
from .stats import get_dashboard_stats

logger = logging.getLogger(__name__)


@dashboard_bp.route('/login', methods=['POST'])
def login():
    """Placeholder login: always succeeds"""
    data = request.get_json(silent=True) or {}
    session['admin_id'] = 1
    session['admin_email'] = data.get('email') or 'admin'
    logger.info(f"Admin session opened for {session['admin_email']}")
    return jsonify({'message': 'Logged in', 'email': session['admin_email']}), 200


@dashboard_bp.route('/logout', methods=['POST'])
def logout():
    session.pop('admin_id', None)
    session.pop('admin_email', None)
    return jsonify({'message': 'Logged out'}), 200


@dashboard_bp.route('/dashboard', methods=['GET'])
@admin_required
def dashboard():
    try:
        return jsonify(get_dashboard_stats(get_db(), resolve_database_id())), 200
    except Exception as e:
        return error_response(e, 'Error loading dashboard stats')
