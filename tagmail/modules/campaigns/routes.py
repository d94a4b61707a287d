"""
Campaigns Routes
================

Admin JSON routes for composing, scheduling and sending campaigns.
All routes require an admin session.
"""

import logging
from flask import request, jsonify

from tagmail.core.web import admin_required, error_response, get_db, get_tagmail, resolve_database_id
from . import campaigns_bp
from .assist import generate_content
from .composer import content_warnings, get_template, get_templates, subject_suggestions
from .models import STATUSES, get_campaign, get_campaigns

logger = logging.getLogger(__name__)


def _db_log(level, message, details=None):
    """Log to framework's persistent DB logger"""
    try:
        from tagmail.core import db_log
        db_log(level, 'campaigns', message, details)
    except Exception:
        pass


def _lifecycle():
    return get_tagmail().lifecycle


# ===================
# LISTING
# ===================

@campaigns_bp.route('', methods=['GET'])
@admin_required
def list_campaigns():
    """Campaigns of a tenant, optionally filtered by ?status="""
    status = request.args.get('status')
    if status and status not in STATUSES:
        return jsonify({'error': f"Unknown status '{status}'"}), 400
    try:
        campaigns = get_campaigns(get_db(), resolve_database_id(), status=status)
        return jsonify({'campaigns': campaigns, 'count': len(campaigns)}), 200
    except Exception as e:
        return error_response(e, 'Error listing campaigns')


@campaigns_bp.route('/<int:campaign_id>', methods=['GET'])
@admin_required
def show(campaign_id):
    try:
        return jsonify(get_campaign(get_db(), campaign_id)), 200
    except Exception as e:
        return error_response(e, 'Error loading campaign')


# ===================
# COMPOSER
# ===================

@campaigns_bp.route('/save', methods=['POST'])
@admin_required
def save():
    """Create or update a draft (also used by autosave)"""
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No data provided'}), 400
    try:
        campaign = _lifecycle().save_draft(resolve_database_id(), data)
        return jsonify({
            'campaign': campaign,
            'warnings': content_warnings(campaign['subject'], campaign['body']),
        }), 200
    except Exception as e:
        return error_response(e, 'Error saving campaign')


@campaigns_bp.route('/estimate', methods=['POST'])
@admin_required
def estimate():
    """Live recipient count for a target"""
    data = request.get_json(silent=True) or {}
    try:
        return jsonify(_lifecycle().estimate(resolve_database_id(), data.get('target'))), 200
    except Exception as e:
        return error_response(e, 'Error estimating audience')


@campaigns_bp.route('/warnings', methods=['POST'])
@admin_required
def warnings():
    data = request.get_json(silent=True) or {}
    return jsonify({'warnings': content_warnings(data.get('subject'), data.get('body'))}), 200


@campaigns_bp.route('/suggestions', methods=['GET'])
@admin_required
def suggestions():
    """Subjects of other drafts matching ?q="""
    try:
        campaigns = get_campaigns(get_db(), resolve_database_id())
        found = subject_suggestions(campaigns, request.args.get('q', ''),
                                    exclude_id=request.args.get('exclude', type=int))
        return jsonify({'suggestions': found}), 200
    except Exception as e:
        return error_response(e, 'Error loading subject suggestions')


@campaigns_bp.route('/templates', methods=['GET'])
@admin_required
def templates():
    return jsonify({'templates': get_templates()}), 200


@campaigns_bp.route('/templates/<template_id>', methods=['GET'])
@admin_required
def template(template_id):
    found = get_template(template_id)
    if not found:
        return jsonify({'error': 'Template not found'}), 404
    return jsonify(found), 200


@campaigns_bp.route('/generate', methods=['POST'])
@admin_required
def generate():
    """AI-assisted body generation"""
    data = request.get_json(silent=True) or {}
    try:
        html = generate_content(data.get('prompt'))
        return jsonify({'html': html}), 200
    except Exception as e:
        return error_response(e, 'Error generating content')


# ===================
# TRANSITIONS
# ===================

@campaigns_bp.route('/<int:campaign_id>/schedule', methods=['POST'])
@admin_required
def schedule(campaign_id):
    data = request.get_json(silent=True) or {}
    try:
        campaign = _lifecycle().schedule(get_campaign(get_db(), campaign_id), data.get('scheduled_at'))
        return jsonify(campaign), 200
    except Exception as e:
        return error_response(e, 'Error scheduling campaign')


@campaigns_bp.route('/<int:campaign_id>/unschedule', methods=['POST'])
@admin_required
def unschedule(campaign_id):
    try:
        return jsonify(_lifecycle().unschedule(get_campaign(get_db(), campaign_id))), 200
    except Exception as e:
        return error_response(e, 'Error unscheduling campaign')


@campaigns_bp.route('/<int:campaign_id>/send', methods=['POST'])
@admin_required
def send_now(campaign_id):
    """Send immediately; returns once the campaign is Sent"""
    try:
        campaign = _lifecycle().send_now(campaign_id)
        return jsonify({
            'message': f"Campaign sent to {campaign['recipient_count']} subscribers",
            'campaign': campaign,
        }), 200
    except Exception as e:
        return error_response(e, 'Error sending campaign')


@campaigns_bp.route('/<int:campaign_id>/test-send', methods=['POST'])
@admin_required
def test_send(campaign_id):
    try:
        record = _lifecycle().test_send(get_campaign(get_db(), campaign_id))
        return jsonify({
            'message': f"Test sent to {record['recipient_count']} test subscribers",
            'campaign': record,
        }), 200
    except Exception as e:
        return error_response(e, 'Error sending test campaign')


@campaigns_bp.route('/<int:campaign_id>/clone', methods=['POST'])
@admin_required
def clone(campaign_id):
    try:
        return jsonify(_lifecycle().clone(get_campaign(get_db(), campaign_id))), 201
    except Exception as e:
        return error_response(e, 'Error cloning campaign')


@campaigns_bp.route('/<int:campaign_id>', methods=['DELETE'])
@admin_required
def delete(campaign_id):
    try:
        _lifecycle().delete(get_campaign(get_db(), campaign_id))
        return jsonify({'message': 'Campaign deleted'}), 200
    except Exception as e:
        return error_response(e, 'Error deleting campaign')


# ===================
# SCHEDULER
# ===================

@campaigns_bp.route('/scheduler', methods=['GET'])
@admin_required
def scheduler_status():
    scheduler = get_tagmail().scheduler
    return jsonify({
        'running': scheduler.running,
        'busy': scheduler.busy,
        'interval': scheduler.interval,
    }), 200


@campaigns_bp.route('/scheduler/run', methods=['POST'])
@admin_required
def scheduler_run():
    """Run one scheduler tick now"""
    sent = get_tagmail().scheduler.run_once()
    if sent is None:
        return jsonify({'skipped': True, 'sent': 0}), 200
    _db_log('info', 'Manual scheduler run', {'sent': sent})
    return jsonify({'skipped': False, 'sent': sent}), 200
