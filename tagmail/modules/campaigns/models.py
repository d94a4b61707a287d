"""
Campaigns Models
================

Database schema access and CRUD operations for email campaigns.
Campaign rows live in the shared Tagmail store alongside subscribers;
targets, frozen recipient lists and the ids of an in-progress send are
stored as JSON columns.
"""

import json
import logging

from tagmail.core.exceptions import InvalidTransitionError, NotFoundError
from tagmail.core.timestamps import parse_timestamp, utcnow
from tagmail.modules.audience.targeting import normalize_target

logger = logging.getLogger(__name__)

STATUS_DRAFT = 'Draft'
STATUS_SCHEDULED = 'Scheduled'
STATUS_SENDING = 'Sending'
STATUS_SENT = 'Sent'
STATUSES = (STATUS_DRAFT, STATUS_SCHEDULED, STATUS_SENDING, STATUS_SENT)

_COLUMNS = ('subject', 'body', 'sent_at', 'scheduled_at', 'recipient_count', 'status',
            'target_json', 'recipients_json', 'pending_recipients_json')


def get_campaign(db, campaign_id):
    """Get a single campaign by ID, raises NotFoundError"""
    with db.connect() as conn:
        row = conn.execute('SELECT * FROM campaigns WHERE id = ?', (campaign_id,)).fetchone()
    if not row:
        raise NotFoundError(f'Campaign {campaign_id} not found')
    return _row_to_dict(row)


def get_campaigns(db, database_id, status=None):
    """All campaigns of a tenant, newest first"""
    query = 'SELECT * FROM campaigns WHERE database_id = ?'
    params = [database_id]
    if status:
        query += ' AND status = ?'
        params.append(status)
    query += ' ORDER BY id DESC'
    with db.connect() as conn:
        return [_row_to_dict(row) for row in conn.execute(query, params).fetchall()]


def get_due_campaigns(db, database_id, now=None):
    """Scheduled campaigns of a tenant whose scheduled_at has passed"""
    now = now or utcnow()
    due = []
    for campaign in get_campaigns(db, database_id, status=STATUS_SCHEDULED):
        try:
            scheduled_at = parse_timestamp(campaign.get('scheduled_at'))
        except ValueError:
            logger.warning(f"Campaign {campaign['id']} has an unreadable scheduled_at: {campaign.get('scheduled_at')!r}")
            continue
        if scheduled_at is not None and scheduled_at <= now:
            due.append(campaign)
    due.sort(key=lambda c: (parse_timestamp(c['scheduled_at']), c['id']))
    return due


def get_sending_campaigns(db, database_id):
    """Campaigns of a tenant left in Sending, oldest send first"""
    campaigns = get_campaigns(db, database_id, status=STATUS_SENDING)
    return sorted(campaigns, key=lambda c: (c.get('sent_at') or '', c['id']))


def add_campaign(db, database_id, campaign):
    """Insert a campaign (any id in the payload is ignored). Returns the stored campaign."""
    values = _to_row(campaign)
    with db.connect() as conn:
        exists = conn.execute('SELECT 1 FROM databases WHERE id = ?', (database_id,)).fetchone()
        if not exists:
            raise NotFoundError(f'Database {database_id} not found')
        cursor = conn.execute(f'''
            INSERT INTO campaigns (database_id, {', '.join(_COLUMNS)})
            VALUES (?, {', '.join('?' for _ in _COLUMNS)})
        ''', (database_id, *values))
        campaign_id = cursor.lastrowid

    logger.info(f"Added campaign {campaign_id}: {campaign.get('subject')}")
    return get_campaign(db, campaign_id)


def update_campaign(db, campaign, expected_status=None):
    """
    Full-record update of a campaign; every field is written in one statement.

    With expected_status the write only lands while the stored row still
    has that status, otherwise InvalidTransitionError is raised. Two
    threads starting a send from the same stale record cannot both win.
    """
    values = _to_row(campaign)
    assignments = ', '.join(f'{col} = ?' for col in _COLUMNS)
    query = f'UPDATE campaigns SET {assignments} WHERE id = ?'
    params = (*values, campaign['id'])
    if expected_status is not None:
        query += ' AND status = ?'
        params += (expected_status,)

    with db.connect() as conn:
        cursor = conn.execute(query, params)
        if cursor.rowcount:
            return
        row = conn.execute('SELECT status FROM campaigns WHERE id = ?', (campaign['id'],)).fetchone()
    if row is None:
        raise NotFoundError(f"Campaign {campaign['id']} not found")
    raise InvalidTransitionError(campaign['id'], row['status'], f"move to {campaign.get('status')}")


def delete_campaign(db, campaign_id):
    with db.connect() as conn:
        cursor = conn.execute('DELETE FROM campaigns WHERE id = ?', (campaign_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f'Campaign {campaign_id} not found')
    logger.info(f"Deleted campaign {campaign_id}")


def blank_campaign():
    """A new, empty Draft"""
    return {
        'subject': '',
        'body': '',
        'status': STATUS_DRAFT,
        'sent_at': None,
        'scheduled_at': None,
        'recipient_count': 0,
        'recipients': [],
        'pending_recipients': [],
        'target': normalize_target(None),
    }


def _to_row(campaign):
    status = campaign.get('status') or STATUS_DRAFT
    if status not in STATUSES:
        raise ValueError(f"Invalid campaign status '{status}'")
    return (
        campaign.get('subject') or '',
        campaign.get('body') or '',
        campaign.get('sent_at'),
        campaign.get('scheduled_at'),
        int(campaign.get('recipient_count') or 0),
        status,
        json.dumps(normalize_target(campaign.get('target'))),
        json.dumps(list(campaign.get('recipients') or [])),
        json.dumps(list(campaign.get('pending_recipients') or [])),
    )


def _row_to_dict(row):
    """Convert a sqlite3.Row to a campaign dict with parsed JSON columns"""
    d = dict(row)
    try:
        target = json.loads(d.pop('target_json', None) or 'null')
    except (json.JSONDecodeError, TypeError):
        target = None
    try:
        d['target'] = normalize_target(target)
    except ValueError:
        logger.warning(f"Campaign {d.get('id')} has an invalid target, falling back to all subscribers")
        d['target'] = normalize_target(None)
    try:
        d['recipients'] = json.loads(d.pop('recipients_json', None) or '[]')
    except (json.JSONDecodeError, TypeError):
        d['recipients'] = []
    try:
        d['pending_recipients'] = json.loads(d.pop('pending_recipients_json', None) or '[]')
    except (json.JSONDecodeError, TypeError):
        d['pending_recipients'] = []
    d['recipient_count'] = d.get('recipient_count') or 0
    # legacy columns are folded into target by migrations
    d.pop('target_tags_json', None)
    d.pop('target_logic', None)
    return d
