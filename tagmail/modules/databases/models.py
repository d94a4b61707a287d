"""
Databases Models
================

Tenant ("company database") administration: CRUD with company profile,
full-tenant snapshot reads, the active-tenant pointer and subscriber
transfer between tenants.
"""

import json
import logging
import os

from tagmail.core.exceptions import NotFoundError
from tagmail.core.database import EXPECTED_SCHEMA

logger = logging.getLogger(__name__)

PROFILE_FIELDS = (
    'name', 'description', 'logo_base64', 'street', 'city', 'state', 'zip_code',
    'county', 'website', 'phone', 'fax_number', 'key_contact_name',
    'key_contact_phone', 'key_contact_email',
)
SOCIAL_PLATFORMS = ('Facebook', 'Twitter', 'LinkedIn', 'Instagram', 'Other')


def _row_to_dict(row):
    d = dict(row)
    try:
        d['social_links'] = json.loads(d.pop('social_links_json', None) or '[]')
    except (json.JSONDecodeError, TypeError):
        d['social_links'] = []
    return d


def _clean_social_links(links):
    cleaned = []
    for link in links or []:
        if not isinstance(link, dict) or not (link.get('url') or '').strip():
            continue
        platform = link.get('platform') if link.get('platform') in SOCIAL_PLATFORMS else 'Other'
        cleaned.append({'platform': platform, 'url': link['url'].strip()})
    return cleaned


def _profile_values(data):
    name = (data.get('name') or '').strip()
    if not name:
        raise ValueError('Database name is required')
    values = [name] + [data.get(field) or None for field in PROFILE_FIELDS[1:]]
    values.append(json.dumps(_clean_social_links(data.get('social_links'))))
    return values


def get_databases(db):
    """Every tenant's profile (without contents)"""
    with db.connect() as conn:
        return [_row_to_dict(row) for row in conn.execute('SELECT * FROM databases ORDER BY id').fetchall()]


def get_database(db, database_id):
    with db.connect() as conn:
        row = conn.execute('SELECT * FROM databases WHERE id = ?', (database_id,)).fetchone()
    if not row:
        raise NotFoundError(f'Database {database_id} not found')
    return _row_to_dict(row)


def get_database_contents(db, database_id):
    """Profile plus subscribers (with tag ids), tags and campaigns of one tenant"""
    from tagmail.modules.campaigns.models import get_campaigns
    from tagmail.modules.subscribers.models import get_subscribers
    from tagmail.modules.tags.models import get_tags

    contents = get_database(db, database_id)
    contents['subscribers'] = get_subscribers(db, database_id)
    contents['tags'] = get_tags(db, database_id)
    contents['campaigns'] = get_campaigns(db, database_id)
    return contents


def add_database(db, data):
    values = _profile_values(data)
    columns = list(PROFILE_FIELDS) + ['social_links_json']
    with db.connect() as conn:
        database_id = conn.execute(
            f"INSERT INTO databases ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            values
        ).lastrowid
    logger.info(f"Created database {database_id}: {values[0]}")
    return get_database(db, database_id)


def update_database(db, database_id, data):
    values = _profile_values(data)
    columns = list(PROFILE_FIELDS) + ['social_links_json']
    with db.connect() as conn:
        cursor = conn.execute(
            f"UPDATE databases SET {', '.join(f'{c} = ?' for c in columns)} WHERE id = ?",
            [*values, database_id]
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f'Database {database_id} not found')
    return get_database(db, database_id)


def delete_database(db, database_id):
    """Delete a tenant; its subscribers, tags and campaigns cascade"""
    with db.connect() as conn:
        cursor = conn.execute('DELETE FROM databases WHERE id = ?', (database_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f'Database {database_id} not found')
    logger.info(f"Deleted database {database_id}")


# ===================
# ACTIVE DATABASE POINTER
# ===================

def get_active_database_id(pointer_path):
    """Read the active tenant id from its pointer file (None when unset)"""
    if not pointer_path or not os.path.exists(pointer_path):
        return None
    try:
        with open(pointer_path, 'r') as f:
            value = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Unreadable active database pointer {pointer_path}: {e}")
        return None
    return value if isinstance(value, int) else None


def set_active_database_id(pointer_path, database_id):
    """Write (or clear, with None) the active tenant pointer"""
    if database_id is None:
        if os.path.exists(pointer_path):
            os.remove(pointer_path)
        return
    directory = os.path.dirname(pointer_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(pointer_path, 'w') as f:
        json.dump(int(database_id), f)


def ensure_active_database(db, pointer_path):
    """
    Validate the stored pointer: a pointer to a deleted tenant is cleared,
    and when tenants exist but none is active the first one is activated.
    Returns the resulting active id (or None).
    """
    active_id = get_active_database_id(pointer_path)
    ids = [d['id'] for d in get_databases(db)]

    if active_id is not None and active_id not in ids:
        logger.warning(f"Stored active database ID {active_id} was not found. Clearing it.")
        active_id = None
        set_active_database_id(pointer_path, None)

    if active_id is None and ids:
        active_id = ids[0]
        set_active_database_id(pointer_path, active_id)

    return active_id


# ===================
# TRANSFER
# ===================

def transfer_subscribers(db, source_id, target_id, subscriber_ids, mode='copy'):
    """
    Copy or move subscribers between tenants. Tags travel by name
    (case-insensitive); missing tags are created in the target.
    Subscribers whose email already exists in the target are merged into
    the existing record. Runs as one transaction.

    Returns:
        dict with {transferred: int}
    """
    if mode not in ('copy', 'move'):
        raise ValueError("Transfer mode must be 'copy' or 'move'")
    if source_id == target_id:
        raise ValueError('Source and target databases must differ')
    subscriber_ids = [int(s) for s in subscriber_ids or []]
    if not subscriber_ids:
        return {'transferred': 0}

    get_database(db, source_id)
    get_database(db, target_id)

    placeholders = ','.join('?' for _ in subscriber_ids)
    transferred = 0
    with db.connect() as conn:
        subscribers = conn.execute(
            f'SELECT * FROM subscribers WHERE database_id = ? AND id IN ({placeholders})',
            [source_id, *subscriber_ids]
        ).fetchall()

        tag_links = {}
        for row in conn.execute(f'''
            SELECT st.subscriber_id, t.name FROM subscriber_tags st
            JOIN tags t ON t.id = st.tag_id
            WHERE st.subscriber_id IN ({placeholders})
        ''', subscriber_ids):
            tag_links.setdefault(row['subscriber_id'], []).append(row['name'])

        target_tags = {
            row['name'].lower(): row['id']
            for row in conn.execute('SELECT id, name FROM tags WHERE database_id = ?', (target_id,))
        }

        for sub in subscribers:
            existing = conn.execute('SELECT id FROM subscribers WHERE database_id = ? AND email = ?',
                                    (target_id, sub['email'])).fetchone()
            if existing:
                new_id = existing['id']
                if mode == 'move':
                    conn.execute('DELETE FROM subscribers WHERE id = ?', (sub['id'],))
            elif mode == 'copy':
                new_id = conn.execute('''
                    INSERT INTO subscribers (database_id, email, name, subscribed_at, unsubscribed_at,
                                             external_id, notes)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                ''', (target_id, sub['email'], sub['name'], sub['subscribed_at'], sub['unsubscribed_at'],
                      sub['external_id'], sub['notes'])).lastrowid
            else:
                new_id = sub['id']
                # old tag links point at the source tenant's tags
                conn.execute('DELETE FROM subscriber_tags WHERE subscriber_id = ?', (new_id,))
                conn.execute('UPDATE subscribers SET database_id = ? WHERE id = ?', (target_id, new_id))

            for tag_name in tag_links.get(sub['id'], []):
                tag_id = target_tags.get(tag_name.lower())
                if tag_id is None:
                    tag_id = conn.execute('INSERT INTO tags (database_id, name) VALUES (?, ?)',
                                          (target_id, tag_name)).lastrowid
                    target_tags[tag_name.lower()] = tag_id
                conn.execute('INSERT OR IGNORE INTO subscriber_tags (subscriber_id, tag_id) VALUES (?, ?)',
                             (new_id, tag_id))
            transferred += 1

    logger.info(f"Transferred ({mode}) {transferred} subscribers from {source_id} to {target_id}")
    return {'transferred': transferred}


def csv_template(table):
    """Header-only CSV for one of the store's tables"""
    if table not in EXPECTED_SCHEMA:
        raise NotFoundError(f"Unknown table '{table}'")
    return ','.join(name for name, _ in EXPECTED_SCHEMA[table]) + '\n'
