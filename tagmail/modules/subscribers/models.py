"""
Subscribers Models
==================

CRUD for subscribers and their tag links, plus CSV import/export.
Tag links live in the subscriber_tags join table; every subscriber dict
returned here carries a 'tags' list of tag ids.
"""

import csv
import io
import logging
import re
import sqlite3

from tagmail.core.exceptions import CSVImportError, NotFoundError
from tagmail.core.timestamps import to_iso, today_iso, utcnow

logger = logging.getLogger(__name__)

# Email validation regex: rejects consecutive dots, leading/trailing dots
EMAIL_REGEX = re.compile(r'^[a-zA-Z0-9_%+-]+(\.[a-zA-Z0-9_%+-]+)*@[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)*\.[a-zA-Z]{2,}$')


def validate_email(email):
    """Validate email format"""
    if not email or len(email) > 255:
        return False
    return EMAIL_REGEX.match(email.lower().strip()) is not None


def _attach_tags(conn, subscribers):
    """Fill each subscriber's 'tags' list from the join table"""
    if not subscribers:
        return subscribers
    by_id = {s['id']: s for s in subscribers}
    for s in subscribers:
        s['tags'] = []
    placeholders = ','.join('?' for _ in by_id)
    rows = conn.execute(
        f'SELECT subscriber_id, tag_id FROM subscriber_tags WHERE subscriber_id IN ({placeholders}) '
        'ORDER BY tag_id',
        list(by_id)
    ).fetchall()
    for row in rows:
        by_id[row['subscriber_id']]['tags'].append(row['tag_id'])
    return subscribers


def get_subscribers(db, database_id):
    """All subscribers of a tenant with their tag ids"""
    with db.connect() as conn:
        rows = conn.execute(
            'SELECT * FROM subscribers WHERE database_id = ? ORDER BY id', (database_id,)
        ).fetchall()
        return _attach_tags(conn, [dict(row) for row in rows])


def get_subscriber(db, subscriber_id):
    with db.connect() as conn:
        row = conn.execute('SELECT * FROM subscribers WHERE id = ?', (subscriber_id,)).fetchone()
        if not row:
            raise NotFoundError(f'Subscriber {subscriber_id} not found')
        return _attach_tags(conn, [dict(row)])[0]


def _check_tags(conn, database_id, tag_ids):
    """Only tags that belong to the subscriber's own tenant may be linked"""
    tag_ids = [int(t) for t in tag_ids or []]
    if not tag_ids:
        return []
    placeholders = ','.join('?' for _ in tag_ids)
    rows = conn.execute(
        f'SELECT id FROM tags WHERE database_id = ? AND id IN ({placeholders})',
        [database_id, *tag_ids]
    ).fetchall()
    known = {row['id'] for row in rows}
    unknown = [t for t in tag_ids if t not in known]
    if unknown:
        raise ValueError(f'Unknown tag ids for this database: {unknown}')
    return list(dict.fromkeys(tag_ids))


def add_subscriber(db, database_id, data):
    """
    Add a subscriber to a tenant.

    Raises:
        ValueError: invalid email, duplicate email or unknown tags
    """
    email = (data.get('email') or '').strip().lower()
    if not validate_email(email):
        raise ValueError('Please enter a valid email address')
    name = (data.get('name') or '').strip() or email

    try:
        with db.connect() as conn:
            tag_ids = _check_tags(conn, database_id, data.get('tags'))
            cursor = conn.execute('''
                INSERT INTO subscribers (database_id, email, name, subscribed_at, external_id, notes)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (database_id, email, name, data.get('subscribed_at') or today_iso(),
                  data.get('external_id') or None, data.get('notes') or None))
            subscriber_id = cursor.lastrowid
            conn.executemany('INSERT INTO subscriber_tags (subscriber_id, tag_id) VALUES (?, ?)',
                             [(subscriber_id, t) for t in tag_ids])
    except sqlite3.IntegrityError as e:
        if 'UNIQUE' in str(e):
            raise ValueError(f'{email} is already subscribed to this database')
        raise NotFoundError(f'Database {database_id} not found')

    logger.info(f"Added subscriber {subscriber_id}: {email}")
    return get_subscriber(db, subscriber_id)


def update_subscriber(db, subscriber_id, data):
    """Update profile fields and replace the subscriber's tag links"""
    current = get_subscriber(db, subscriber_id)

    email = (data.get('email', current['email']) or '').strip().lower()
    if not validate_email(email):
        raise ValueError('Please enter a valid email address')

    try:
        with db.connect() as conn:
            conn.execute('''
                UPDATE subscribers SET name = ?, email = ?, external_id = ?, notes = ?
                WHERE id = ?
            ''', (
                (data.get('name', current['name']) or '').strip() or email,
                email,
                data.get('external_id', current['external_id']) or None,
                data.get('notes', current['notes']) or None,
                subscriber_id,
            ))
            if 'tags' in data:
                tag_ids = _check_tags(conn, current['database_id'], data.get('tags'))
                conn.execute('DELETE FROM subscriber_tags WHERE subscriber_id = ?', (subscriber_id,))
                conn.executemany('INSERT INTO subscriber_tags (subscriber_id, tag_id) VALUES (?, ?)',
                                 [(subscriber_id, t) for t in tag_ids])
    except sqlite3.IntegrityError:
        raise ValueError(f'{email} is already subscribed to this database')

    return get_subscriber(db, subscriber_id)


def delete_subscriber(db, subscriber_id):
    """Delete a subscriber; join rows go with it"""
    with db.connect() as conn:
        cursor = conn.execute('DELETE FROM subscribers WHERE id = ?', (subscriber_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f'Subscriber {subscriber_id} not found')
    logger.info(f"Deleted subscriber {subscriber_id}")


def set_subscribed(db, subscriber_id, active):
    """Unsubscribe (active=False) or resubscribe (active=True)"""
    unsubscribed_at = None if active else to_iso(utcnow())
    with db.connect() as conn:
        cursor = conn.execute('UPDATE subscribers SET unsubscribed_at = ? WHERE id = ?',
                              (unsubscribed_at, subscriber_id))
        if cursor.rowcount == 0:
            raise NotFoundError(f'Subscriber {subscriber_id} not found')
    return get_subscriber(db, subscriber_id)


def unlink_tag(db, subscriber_id, tag_id):
    with db.connect() as conn:
        conn.execute('DELETE FROM subscriber_tags WHERE subscriber_id = ? AND tag_id = ?',
                     (subscriber_id, tag_id))


def active_subscribers(subscribers):
    """Subscribers that have not unsubscribed"""
    return [s for s in subscribers if not s.get('unsubscribed_at')]


# ===================
# CSV IMPORT / EXPORT
# ===================

def import_csv(db, database_id, csv_text):
    """
    Import subscribers from CSV text. The header must contain 'email';
    'name', 'external_id' and 'tags' (names separated by ';') are optional.
    Existing emails are updated, unknown tag names are created.
    The whole import is one transaction.

    Returns:
        dict with {success: int, failed: int}
    """
    reader = csv.reader(io.StringIO(csv_text.lstrip('\ufeff')))
    try:
        header = [h.strip().lower() for h in next(reader)]
    except StopIteration:
        raise CSVImportError('CSV file is empty')

    if 'email' not in header:
        raise CSVImportError("CSV must contain an 'email' column.")

    def column(values, name):
        if name not in header:
            return ''
        index = header.index(name)
        return values[index].strip() if index < len(values) else ''

    success = 0
    failed = 0
    try:
        with db.connect() as conn:
            tag_map = {
                row['name'].lower(): row['id']
                for row in conn.execute('SELECT id, name FROM tags WHERE database_id = ?', (database_id,))
            }

            for values in reader:
                if not any(v.strip() for v in values):
                    continue
                email = column(values, 'email').lower()
                if not validate_email(email):
                    failed += 1
                    continue

                name = column(values, 'name') or email
                external_id = column(values, 'external_id') or None

                conn.execute('''
                    INSERT INTO subscribers (database_id, email, name, external_id, subscribed_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(database_id, email) DO UPDATE SET
                        name = excluded.name, external_id = excluded.external_id
                ''', (database_id, email, name, external_id, today_iso()))
                subscriber_id = conn.execute(
                    'SELECT id FROM subscribers WHERE database_id = ? AND email = ?', (database_id, email)
                ).fetchone()['id']

                tag_names = [t.strip() for t in column(values, 'tags').replace('"', '').split(';') if t.strip()]
                for tag_name in tag_names:
                    tag_id = tag_map.get(tag_name.lower())
                    if tag_id is None:
                        tag_id = conn.execute('INSERT INTO tags (database_id, name) VALUES (?, ?)',
                                              (database_id, tag_name)).lastrowid
                        tag_map[tag_name.lower()] = tag_id
                    conn.execute('INSERT OR IGNORE INTO subscriber_tags (subscriber_id, tag_id) VALUES (?, ?)',
                                 (subscriber_id, tag_id))
                success += 1
    except sqlite3.Error as e:
        logger.error(f"CSV import transaction failed: {e}")
        raise CSVImportError(f'CSV import failed: {e}')

    logger.info(f"CSV import into database {database_id}: {success} imported, {failed} failed")
    return {'success': success, 'failed': failed}


def export_csv(db, database_id):
    """Subscribers as CSV text: name,email,external_id,tags"""
    subscribers = get_subscribers(db, database_id)
    with db.connect() as conn:
        tag_names = {
            row['id']: row['name']
            for row in conn.execute('SELECT id, name FROM tags WHERE database_id = ?', (database_id,))
        }

    output = io.StringIO()
    writer = csv.writer(output, lineterminator='\n')
    writer.writerow(['name', 'email', 'external_id', 'tags'])
    for s in subscribers:
        writer.writerow([
            s['name'],
            s['email'],
            s.get('external_id') or '',
            ';'.join(tag_names[t] for t in s['tags'] if t in tag_names),
        ])
    return output.getvalue()
