"""
Tags Routes
===========
"""

import logging
from flask import request, jsonify

from tagmail.core.web import admin_required, error_response, get_db, resolve_database_id
from . import tags_bp
from .models import add_tag, delete_tag, get_tag, get_tag_usage, rename_tag, update_tag_with_relations

logger = logging.getLogger(__name__)


@tags_bp.route('', methods=['GET'])
@admin_required
def list_tags():
    """Tags with subscriber counts and referencing campaigns"""
    try:
        tags = get_tag_usage(get_db(), resolve_database_id())
        return jsonify({'tags': tags, 'count': len(tags)}), 200
    except Exception as e:
        return error_response(e, 'Error listing tags')


@tags_bp.route('', methods=['POST'])
@admin_required
def create():
    data = request.get_json(silent=True) or {}
    try:
        return jsonify(add_tag(get_db(), resolve_database_id(), data.get('name'))), 201
    except Exception as e:
        return error_response(e, 'Error adding tag')


@tags_bp.route('/<int:tag_id>', methods=['GET'])
@admin_required
def show(tag_id):
    try:
        return jsonify(get_tag(get_db(), tag_id)), 200
    except Exception as e:
        return error_response(e, 'Error loading tag')


@tags_bp.route('/<int:tag_id>', methods=['PUT'])
@admin_required
def update(tag_id):
    """Rename, or rename and replace relations when subscriber_ids/campaign_ids are sent"""
    data = request.get_json(silent=True) or {}
    try:
        if 'subscriber_ids' in data or 'campaign_ids' in data:
            tag = update_tag_with_relations(
                get_db(), tag_id, data.get('name'),
                data.get('subscriber_ids', []), data.get('campaign_ids', [])
            )
        else:
            tag = rename_tag(get_db(), tag_id, data.get('name'))
        return jsonify(tag), 200
    except Exception as e:
        return error_response(e, 'Error updating tag')


@tags_bp.route('/<int:tag_id>', methods=['DELETE'])
@admin_required
def delete(tag_id):
    try:
        delete_tag(get_db(), tag_id)
        return jsonify({'message': 'Tag deleted'}), 200
    except Exception as e:
        return error_response(e, 'Error deleting tag')
