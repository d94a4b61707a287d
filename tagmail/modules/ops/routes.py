"""
Ops Routes
==========
"""

from flask import current_app, jsonify, request

from tagmail.core.logging_service import LoggingService
from tagmail.core.timestamps import to_iso, utcnow
from tagmail.core.web import admin_required, get_tagmail
from . import ops_health_bp, ops_admin_bp


def _check_store():
    try:
        with get_tagmail().db.connect() as conn:
            conn.execute('SELECT 1').fetchone()
        return {'ok': True}
    except Exception as e:
        current_app.logger.error(f"ops: store check failed: {e}")
        return {'ok': False, 'error': str(e)}


def _build_health_response():
    """Build the health check response dict."""
    tagmail = get_tagmail()
    store = _check_store()
    scheduler = {
        'enabled': tagmail.scheduler_enabled,
        'running': tagmail.scheduler.running,
    }

    issues = []
    if not store['ok']:
        issues.append('store unavailable')
    if scheduler['enabled'] and not scheduler['running']:
        issues.append('scheduler not running')

    if not store['ok']:
        status = 'critical'
    elif issues:
        status = 'degraded'
    else:
        status = 'ok'

    return {
        'status': status,
        'timestamp': to_iso(utcnow()),
        'checks': {'store': store, 'scheduler': scheduler},
        'issues': issues,
    }, status


# ---------------------------------------------------------------------------
# Public routes (ops_health_bp, no auth)
# ---------------------------------------------------------------------------

@ops_health_bp.route('/')
@ops_health_bp.route('')
def health_check():
    """Public health endpoint for uptime monitors."""
    data, status = _build_health_response()
    code = 503 if status == 'critical' else 200
    return jsonify(data), code


# ---------------------------------------------------------------------------
# Admin routes (ops_admin_bp, session auth)
# ---------------------------------------------------------------------------

@ops_admin_bp.route('/logs')
@admin_required
def api_logs():
    """Recent rows of the persistent log, filterable by ?level= and ?source="""
    limit = min(request.args.get('limit', 100, type=int), 500)
    logs = LoggingService.get_recent_logs(
        limit=limit,
        level=request.args.get('level'),
        source=request.args.get('source'),
    )
    return jsonify({'logs': logs, 'count': len(logs)})


@ops_admin_bp.route('/logs', methods=['DELETE'])
@admin_required
def prune_logs():
    """Drop log rows older than ?days= (default 30)"""
    days = request.args.get('days', 30, type=int)
    if days < 0:
        return jsonify({'error': 'days must be zero or more'}), 400
    return jsonify({'deleted': LoggingService.prune(days)})
