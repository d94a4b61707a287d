"""
Tags Models
===========

CRUD for tags. Deleting a tag removes its subscriber links; campaign
targets keep the stale id, which then simply matches nobody.
"""

import json
import logging
import sqlite3

from tagmail.core.exceptions import NotFoundError
from tagmail.modules.audience.targeting import normalize_target, referenced_tag_ids

logger = logging.getLogger(__name__)


def get_tags(db, database_id):
    with db.connect() as conn:
        rows = conn.execute('SELECT * FROM tags WHERE database_id = ? ORDER BY name COLLATE NOCASE',
                            (database_id,)).fetchall()
        return [dict(row) for row in rows]


def get_tag(db, tag_id):
    with db.connect() as conn:
        row = conn.execute('SELECT * FROM tags WHERE id = ?', (tag_id,)).fetchone()
    if not row:
        raise NotFoundError(f'Tag {tag_id} not found')
    return dict(row)


def find_tag_by_name(db, database_id, name):
    """Case-insensitive lookup, returns None when missing"""
    with db.connect() as conn:
        row = conn.execute('SELECT * FROM tags WHERE database_id = ? AND lower(name) = lower(?)',
                           (database_id, name.strip())).fetchone()
    return dict(row) if row else None


def add_tag(db, database_id, name):
    name = (name or '').strip()
    if not name:
        raise ValueError('Tag name is required')
    if find_tag_by_name(db, database_id, name):
        raise ValueError(f"Tag '{name}' already exists")
    try:
        with db.connect() as conn:
            tag_id = conn.execute('INSERT INTO tags (database_id, name) VALUES (?, ?)',
                                  (database_id, name)).lastrowid
    except sqlite3.IntegrityError as e:
        if 'UNIQUE' in str(e):
            raise ValueError(f"Tag '{name}' already exists")
        raise NotFoundError(f'Database {database_id} not found')
    logger.info(f"Added tag {tag_id}: {name}")
    return {'id': tag_id, 'database_id': database_id, 'name': name}


def rename_tag(db, tag_id, name):
    name = (name or '').strip()
    if not name:
        raise ValueError('Tag name is required')
    existing = find_tag_by_name(db, get_tag(db, tag_id)['database_id'], name)
    if existing and existing['id'] != tag_id:
        raise ValueError(f"Tag '{name}' already exists")
    try:
        with db.connect() as conn:
            cursor = conn.execute('UPDATE tags SET name = ? WHERE id = ?', (name, tag_id))
            if cursor.rowcount == 0:
                raise NotFoundError(f'Tag {tag_id} not found')
    except sqlite3.IntegrityError:
        raise ValueError(f"Tag '{name}' already exists")
    return get_tag(db, tag_id)


def delete_tag(db, tag_id):
    with db.connect() as conn:
        cursor = conn.execute('DELETE FROM tags WHERE id = ?', (tag_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f'Tag {tag_id} not found')
    logger.info(f"Deleted tag {tag_id}")


def update_tag_with_relations(db, tag_id, name, subscriber_ids, campaign_ids):
    """
    Rename a tag and replace its relations in one transaction.

    - subscriber links become exactly subscriber_ids
    - Draft campaigns listed in campaign_ids gain the tag (in their first
      group); Draft campaigns not listed lose it from every group.
      Campaigns in any other status are never touched.
    """
    tag = get_tag(db, tag_id)
    name = (name or '').strip() or tag['name']
    subscriber_ids = {int(s) for s in subscriber_ids or []}
    campaign_ids = {int(c) for c in campaign_ids or []}

    try:
        with db.connect() as conn:
            conn.execute('UPDATE tags SET name = ? WHERE id = ?', (name, tag_id))

            conn.execute('DELETE FROM subscriber_tags WHERE tag_id = ?', (tag_id,))
            if subscriber_ids:
                placeholders = ','.join('?' for _ in subscriber_ids)
                valid = [row['id'] for row in conn.execute(
                    f'SELECT id FROM subscribers WHERE database_id = ? AND id IN ({placeholders})',
                    [tag['database_id'], *subscriber_ids]
                )]
                conn.executemany('INSERT INTO subscriber_tags (subscriber_id, tag_id) VALUES (?, ?)',
                                 [(s, tag_id) for s in valid])

            drafts = conn.execute(
                "SELECT id, target_json FROM campaigns WHERE database_id = ? AND status = 'Draft'",
                (tag['database_id'],)
            ).fetchall()
            for row in drafts:
                target = normalize_target(json.loads(row['target_json'] or 'null'))
                has_tag = tag_id in referenced_tag_ids(target)
                should_have_tag = row['id'] in campaign_ids

                if has_tag and not should_have_tag:
                    for group in target['groups']:
                        group['tags'] = [t for t in group['tags'] if t != tag_id]
                elif should_have_tag and not has_tag:
                    target['groups'][0]['tags'].append(tag_id)
                else:
                    continue
                conn.execute('UPDATE campaigns SET target_json = ? WHERE id = ?',
                             (json.dumps(target), row['id']))
    except sqlite3.IntegrityError:
        raise ValueError(f"Tag '{name}' already exists")

    logger.info(f"Updated tag {tag_id} relations: {len(subscriber_ids)} subscribers, {len(campaign_ids)} campaigns")
    return get_tag(db, tag_id)


def get_tag_usage(db, database_id):
    """
    Per-tag usage: number of subscribers holding it and ids of campaigns
    whose target references it.
    """
    tags = get_tags(db, database_id)
    with db.connect() as conn:
        counts = {
            row['tag_id']: row['n']
            for row in conn.execute('''
                SELECT st.tag_id, COUNT(*) AS n FROM subscriber_tags st
                JOIN tags t ON t.id = st.tag_id
                WHERE t.database_id = ?
                GROUP BY st.tag_id
            ''', (database_id,))
        }
        campaigns = conn.execute('SELECT id, target_json FROM campaigns WHERE database_id = ?',
                                 (database_id,)).fetchall()

    referenced = {}
    for row in campaigns:
        try:
            target = normalize_target(json.loads(row['target_json'] or 'null'))
        except ValueError:
            continue
        for tag_id in referenced_tag_ids(target):
            referenced.setdefault(tag_id, []).append(row['id'])

    return [
        dict(tag, subscriber_count=counts.get(tag['id'], 0), campaign_ids=referenced.get(tag['id'], []))
        for tag in tags
    ]
