"""
Databases Routes
================

Tenant administration and store maintenance routes.
"""

import logging
import os
import tempfile
from flask import Response, request, jsonify

from tagmail.core.timestamps import today_iso
from tagmail.core.web import admin_required, error_response, get_db, get_tagmail
from . import databases_bp
from .models import (
    get_databases, get_database_contents, add_database, update_database, delete_database,
    set_active_database_id, transfer_subscribers, csv_template
)

logger = logging.getLogger(__name__)


def _db_log(level, message, details=None):
    """Log to framework's persistent DB logger"""
    try:
        from tagmail.core import db_log
        db_log(level, 'databases', message, details)
    except Exception:
        pass


# ===================
# TENANTS
# ===================

@databases_bp.route('', methods=['GET'])
@admin_required
def list_databases():
    tagmail = get_tagmail()
    try:
        active_id = tagmail.active_database_id()
        return jsonify({'databases': get_databases(tagmail.db), 'active_id': active_id}), 200
    except Exception as e:
        return error_response(e, 'Error listing databases')


@databases_bp.route('', methods=['POST'])
@admin_required
def create():
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No data provided'}), 400
    tagmail = get_tagmail()
    try:
        database = add_database(tagmail.db, data)
        # first tenant becomes active automatically
        tagmail.active_database_id()
        _db_log('info', 'Database created', {'id': database['id'], 'name': database['name']})
        return jsonify(database), 201
    except Exception as e:
        return error_response(e, 'Error creating database')


@databases_bp.route('/<int:database_id>', methods=['GET'])
@admin_required
def show(database_id):
    try:
        return jsonify(get_database_contents(get_db(), database_id)), 200
    except Exception as e:
        return error_response(e, 'Error loading database')


@databases_bp.route('/<int:database_id>', methods=['PUT'])
@admin_required
def update(database_id):
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No data provided'}), 400
    try:
        return jsonify(update_database(get_db(), database_id, data)), 200
    except Exception as e:
        return error_response(e, 'Error updating database')


@databases_bp.route('/<int:database_id>', methods=['DELETE'])
@admin_required
def delete(database_id):
    tagmail = get_tagmail()
    try:
        delete_database(tagmail.db, database_id)
        _db_log('info', 'Database deleted', {'id': database_id})
        return jsonify({'message': 'Database deleted', 'active_id': tagmail.active_database_id()}), 200
    except Exception as e:
        return error_response(e, 'Error deleting database')


@databases_bp.route('/active', methods=['GET'])
@admin_required
def get_active():
    return jsonify({'active_id': get_tagmail().active_database_id()}), 200


@databases_bp.route('/active', methods=['PUT'])
@admin_required
def set_active():
    data = request.get_json(silent=True) or {}
    tagmail = get_tagmail()
    try:
        database_id = int(data.get('id'))
    except (TypeError, ValueError):
        return jsonify({'error': 'A database id is required'}), 400
    try:
        get_database_contents(tagmail.db, database_id)
        set_active_database_id(tagmail.active_pointer_path, database_id)
        return jsonify({'active_id': database_id}), 200
    except Exception as e:
        return error_response(e, 'Error switching database')


@databases_bp.route('/transfer', methods=['POST'])
@admin_required
def transfer():
    """Copy or move subscribers between tenants"""
    data = request.get_json(silent=True) or {}
    try:
        result = transfer_subscribers(
            get_db(),
            int(data.get('source_id')),
            int(data.get('target_id')),
            data.get('subscriber_ids', []),
            data.get('mode', 'copy'),
        )
        _db_log('info', 'Subscribers transferred', dict(data, **result))
        return jsonify(result), 200
    except TypeError:
        return jsonify({'error': 'source_id and target_id are required'}), 400
    except Exception as e:
        return error_response(e, 'Error transferring subscribers')


@databases_bp.route('/csv-template/<table>', methods=['GET'])
@admin_required
def template(table):
    try:
        header = csv_template(table)
    except Exception as e:
        return error_response(e, 'Error building CSV template')
    return Response(
        header,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={table}_template.csv'}
    )


# ===================
# MAINTENANCE
# ===================

@databases_bp.route('/schema', methods=['GET'])
@admin_required
def schema():
    """Compare the live store against the expected schema"""
    try:
        return jsonify(get_db().compare_schema()), 200
    except Exception as e:
        return error_response(e, 'Error comparing schema')


@databases_bp.route('/backup', methods=['GET'])
@admin_required
def backup():
    """Download a copy of the whole store"""
    db = get_db()
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    try:
        db.backup(path)
        with open(path, 'rb') as f:
            payload = f.read()
    except Exception as e:
        return error_response(e, 'Error backing up store')
    finally:
        os.remove(path)

    _db_log('info', 'Store backup downloaded', {'bytes': len(payload)})
    return Response(
        payload,
        mimetype='application/x-sqlite3',
        headers={'Content-Disposition': f'attachment; filename=tagmail-backup-{today_iso()}.db'}
    )


@databases_bp.route('/restore', methods=['POST'])
@admin_required
def restore():
    """Replace the whole store with an uploaded backup"""
    if 'file' not in request.files:
        return jsonify({'error': 'No file provided'}), 400

    tagmail = get_tagmail()
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    try:
        request.files['file'].save(path)
        report = tagmail.db.restore(path)
        active_id = tagmail.active_database_id()
    except Exception as e:
        return error_response(e, 'Error restoring store')
    finally:
        os.remove(path)

    _db_log('warning', 'Store restored from upload')
    return jsonify({'message': 'Store restored', 'schema': report, 'active_id': active_id}), 200


@databases_bp.route('/recreate', methods=['POST'])
@admin_required
def recreate():
    """Drop everything and rebuild an empty schema"""
    data = request.get_json(silent=True) or {}
    if data.get('confirm') != 'RECREATE':
        return jsonify({'error': "Send {'confirm': 'RECREATE'} to wipe the store"}), 400

    tagmail = get_tagmail()
    try:
        tagmail.db.recreate()
        set_active_database_id(tagmail.active_pointer_path, None)
    except Exception as e:
        return error_response(e, 'Error recreating store')

    logger.warning("Store recreated from admin")
    _db_log('warning', 'Store recreated')
    return jsonify({'message': 'Store recreated'}), 200


@databases_bp.route('/dump', methods=['GET'])
@admin_required
def dump():
    """SQL text dump of the store"""
    try:
        sql = get_db().dump_sql()
    except Exception as e:
        return error_response(e, 'Error dumping store')
    return Response(sql, mimetype='application/sql',
                    headers={'Content-Disposition': 'attachment; filename=tagmail.sql'})
