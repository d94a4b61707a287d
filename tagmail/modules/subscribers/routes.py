"""
Subscribers Routes
==================

Admin JSON routes for subscriber management and CSV import/export.
"""

import logging
from flask import Response, request, jsonify

from tagmail.core.web import admin_required, error_response, get_db, resolve_database_id
from . import subscribers_bp
from .models import (
    get_subscribers, get_subscriber, add_subscriber, update_subscriber, delete_subscriber,
    set_subscribed, unlink_tag, import_csv, export_csv
)

logger = logging.getLogger(__name__)


def _db_log(level, message, details=None):
    """Log to framework's persistent DB logger"""
    try:
        from tagmail.core import db_log
        db_log(level, 'subscribers', message, details)
    except Exception:
        pass


@subscribers_bp.route('', methods=['GET'])
@admin_required
def list_subscribers():
    try:
        subscribers = get_subscribers(get_db(), resolve_database_id())
        active = sum(1 for s in subscribers if not s.get('unsubscribed_at'))
        return jsonify({'subscribers': subscribers, 'count': len(subscribers), 'active': active}), 200
    except Exception as e:
        return error_response(e, 'Error listing subscribers')


@subscribers_bp.route('', methods=['POST'])
@admin_required
def create():
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No data provided'}), 400
    try:
        subscriber = add_subscriber(get_db(), resolve_database_id(), data)
        _db_log('info', 'Subscriber added', {'id': subscriber['id'], 'email': subscriber['email']})
        return jsonify(subscriber), 201
    except Exception as e:
        return error_response(e, 'Error adding subscriber')


@subscribers_bp.route('/<int:subscriber_id>', methods=['GET'])
@admin_required
def show(subscriber_id):
    try:
        return jsonify(get_subscriber(get_db(), subscriber_id)), 200
    except Exception as e:
        return error_response(e, 'Error loading subscriber')


@subscribers_bp.route('/<int:subscriber_id>', methods=['PUT'])
@admin_required
def update(subscriber_id):
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No data provided'}), 400
    try:
        return jsonify(update_subscriber(get_db(), subscriber_id, data)), 200
    except Exception as e:
        return error_response(e, 'Error updating subscriber')


@subscribers_bp.route('/<int:subscriber_id>', methods=['DELETE'])
@admin_required
def delete(subscriber_id):
    try:
        delete_subscriber(get_db(), subscriber_id)
        _db_log('info', 'Subscriber deleted', {'id': subscriber_id})
        return jsonify({'message': 'Subscriber deleted'}), 200
    except Exception as e:
        return error_response(e, 'Error deleting subscriber')


@subscribers_bp.route('/<int:subscriber_id>/unsubscribe', methods=['POST'])
@admin_required
def unsubscribe(subscriber_id):
    try:
        return jsonify(set_subscribed(get_db(), subscriber_id, False)), 200
    except Exception as e:
        return error_response(e, 'Error unsubscribing subscriber')


@subscribers_bp.route('/<int:subscriber_id>/resubscribe', methods=['POST'])
@admin_required
def resubscribe(subscriber_id):
    try:
        return jsonify(set_subscribed(get_db(), subscriber_id, True)), 200
    except Exception as e:
        return error_response(e, 'Error resubscribing subscriber')


@subscribers_bp.route('/<int:subscriber_id>/tags/<int:tag_id>', methods=['DELETE'])
@admin_required
def remove_tag(subscriber_id, tag_id):
    try:
        unlink_tag(get_db(), subscriber_id, tag_id)
        return jsonify(get_subscriber(get_db(), subscriber_id)), 200
    except Exception as e:
        return error_response(e, 'Error removing tag')


# ===================
# CSV
# ===================

@subscribers_bp.route('/import', methods=['POST'])
@admin_required
def import_subscribers():
    """Import from an uploaded 'file' or a raw text/csv body"""
    if 'file' in request.files:
        csv_text = request.files['file'].read().decode('utf-8-sig', errors='replace')
    else:
        csv_text = request.get_data(as_text=True)

    if not csv_text.strip():
        return jsonify({'error': 'No CSV data provided'}), 400

    try:
        result = import_csv(get_db(), resolve_database_id(), csv_text)
        _db_log('info', 'CSV import', result)
        return jsonify({
            'message': f"Import complete. Success: {result['success']}, Failed: {result['failed']}",
            **result,
        }), 200
    except Exception as e:
        return error_response(e, 'Error importing subscribers')


@subscribers_bp.route('/export', methods=['GET'])
@admin_required
def export_subscribers():
    try:
        csv_text = export_csv(get_db(), resolve_database_id())
    except Exception as e:
        return error_response(e, 'Error exporting subscribers')
    return Response(
        csv_text,
        mimetype='text/csv',
        headers={'Content-Disposition': 'attachment; filename=subscribers.csv'}
    )
