import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager

from .timestamps import to_iso, utcnow, today_iso

logger = logging.getLogger(__name__)


SCHEMA = '''
    CREATE TABLE IF NOT EXISTS databases (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT,
        logo_base64 TEXT,
        street TEXT,
        city TEXT,
        state TEXT,
        zip_code TEXT,
        county TEXT,
        website TEXT,
        phone TEXT,
        fax_number TEXT,
        social_links_json TEXT,
        key_contact_name TEXT,
        key_contact_phone TEXT,
        key_contact_email TEXT
    );
    CREATE TABLE IF NOT EXISTS subscribers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        database_id INTEGER NOT NULL,
        email TEXT NOT NULL,
        name TEXT NOT NULL,
        subscribed_at TEXT NOT NULL,
        unsubscribed_at TEXT,
        external_id TEXT,
        notes TEXT,
        UNIQUE(database_id, email),
        FOREIGN KEY(database_id) REFERENCES databases(id) ON DELETE CASCADE
    );
    CREATE TABLE IF NOT EXISTS tags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        database_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        UNIQUE(database_id, name),
        FOREIGN KEY(database_id) REFERENCES databases(id) ON DELETE CASCADE
    );
    CREATE TABLE IF NOT EXISTS campaigns (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        database_id INTEGER NOT NULL,
        subject TEXT NOT NULL,
        body TEXT,
        sent_at TEXT,
        scheduled_at TEXT,
        recipient_count INTEGER DEFAULT 0,
        status TEXT NOT NULL,
        target_json TEXT,
        recipients_json TEXT,
        pending_recipients_json TEXT,
        FOREIGN KEY(database_id) REFERENCES databases(id) ON DELETE CASCADE
    );
    CREATE TABLE IF NOT EXISTS subscriber_tags (
        subscriber_id INTEGER NOT NULL,
        tag_id INTEGER NOT NULL,
        PRIMARY KEY(subscriber_id, tag_id),
        FOREIGN KEY(subscriber_id) REFERENCES subscribers(id) ON DELETE CASCADE,
        FOREIGN KEY(tag_id) REFERENCES tags(id) ON DELETE CASCADE
    );
    CREATE INDEX IF NOT EXISTS idx_subscribers_database ON subscribers(database_id);
    CREATE INDEX IF NOT EXISTS idx_tags_database ON tags(database_id);
    CREATE INDEX IF NOT EXISTS idx_campaigns_database_status ON campaigns(database_id, status);
'''

# Expected columns per table, used by migrations and the schema report
EXPECTED_SCHEMA = {
    'databases': [
        ('id', 'INTEGER'), ('name', 'TEXT'), ('description', 'TEXT'),
        ('logo_base64', 'TEXT'), ('street', 'TEXT'), ('city', 'TEXT'),
        ('state', 'TEXT'), ('zip_code', 'TEXT'), ('county', 'TEXT'),
        ('website', 'TEXT'), ('phone', 'TEXT'), ('fax_number', 'TEXT'),
        ('social_links_json', 'TEXT'), ('key_contact_name', 'TEXT'),
        ('key_contact_phone', 'TEXT'), ('key_contact_email', 'TEXT'),
    ],
    'subscribers': [
        ('id', 'INTEGER'), ('database_id', 'INTEGER'), ('email', 'TEXT'),
        ('name', 'TEXT'), ('subscribed_at', 'TEXT'), ('unsubscribed_at', 'TEXT'),
        ('external_id', 'TEXT'), ('notes', 'TEXT'),
    ],
    'tags': [
        ('id', 'INTEGER'), ('database_id', 'INTEGER'), ('name', 'TEXT'),
    ],
    'campaigns': [
        ('id', 'INTEGER'), ('database_id', 'INTEGER'), ('subject', 'TEXT'),
        ('body', 'TEXT'), ('sent_at', 'TEXT'), ('scheduled_at', 'TEXT'),
        ('recipient_count', 'INTEGER'), ('status', 'TEXT'),
        ('target_json', 'TEXT'), ('recipients_json', 'TEXT'),
        ('pending_recipients_json', 'TEXT'),
    ],
    'subscriber_tags': [
        ('subscriber_id', 'INTEGER'), ('tag_id', 'INTEGER'),
    ],
}

# Columns that may be missing from stores created by older releases
_MIGRATABLE = {
    'databases': [c for c in EXPECTED_SCHEMA['databases'] if c[0] not in ('id', 'name')],
    'subscribers': [('unsubscribed_at', 'TEXT'), ('external_id', 'TEXT'), ('notes', 'TEXT')],
    'campaigns': [
        ('scheduled_at', 'TEXT'), ('target_json', 'TEXT'), ('recipients_json', 'TEXT'),
        ('pending_recipients_json', 'TEXT'),
    ],
}


class Database:
    """
    Handle on the relational store. Every tenant lives in the same SQLite
    file; each logical operation commits before it returns.
    """

    def __init__(self, path):
        self.path = path
        # Serialises writers inside this process (scheduler thread + requests)
        self._lock = threading.RLock()

    @contextmanager
    def connect(self):
        """Open a connection, commit on success, roll back on error"""
        with self._lock:
            conn = sqlite3.connect(self.path)
            conn.row_factory = sqlite3.Row
            conn.execute('PRAGMA foreign_keys = ON')
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    # ===================
    # SCHEMA
    # ===================

    def init_db(self):
        """Create tables on a fresh store, run migrations on an existing one"""
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with self.connect() as conn:
            existing = _table_names(conn)
            if 'databases' in existing:
                self._run_migrations(conn)
            conn.executescript(SCHEMA)
        logger.info(f"Tagmail store ready at {self.path}")

    def _run_migrations(self, conn):
        """Non-destructive migrations for stores written by older releases"""
        for table, columns in _MIGRATABLE.items():
            if table not in _table_names(conn):
                continue
            present = _column_names(conn, table)
            for name, col_type in columns:
                if name not in present:
                    conn.execute(f'ALTER TABLE {table} ADD COLUMN {name} {col_type}')
                    logger.info(f"Migrated: added column {name} to {table}")

        # Legacy single-group targets: target_tags_json + target_logic
        if 'campaigns' in _table_names(conn):
            present = _column_names(conn, 'campaigns')
            if 'target_tags_json' in present:
                from tagmail.modules.audience.targeting import normalize_target
                logic_col = 'target_logic' if 'target_logic' in present else "'ANY'"
                rows = conn.execute(
                    f'SELECT id, target_tags_json, {logic_col} AS logic FROM campaigns '
                    'WHERE target_json IS NULL'
                ).fetchall()
                for row in rows:
                    try:
                        legacy_tags = json.loads(row['target_tags_json'] or '[]')
                    except (json.JSONDecodeError, TypeError):
                        legacy_tags = []
                    target = normalize_target({'tags': legacy_tags, 'logic': row['logic'] or 'ANY'})
                    conn.execute('UPDATE campaigns SET target_json = ? WHERE id = ?',
                                 (json.dumps(target), row['id']))
                if rows:
                    logger.info(f"Migrated {len(rows)} legacy campaign targets to tag groups")

    def recreate(self):
        """Drop everything and rebuild a blank schema"""
        with self.connect() as conn:
            conn.execute('PRAGMA foreign_keys = OFF')
            for table in _table_names(conn):
                conn.execute(f'DROP TABLE IF EXISTS "{table}"')
            conn.executescript(SCHEMA)
        logger.warning(f"Recreated blank store at {self.path}")

    def compare_schema(self, path=None):
        """
        Compare a store file (this one by default) against the expected schema.

        Returns:
            dict with {tables: [{name, is_missing, missing_columns, extra_columns}],
                       extra_tables: [...]}
        """
        target = path or self.path
        conn = sqlite3.connect(target)
        try:
            found_tables = _table_names(conn)
            report = {'tables': [], 'extra_tables': []}

            for table, columns in EXPECTED_SCHEMA.items():
                if table not in found_tables:
                    report['tables'].append({
                        'name': table,
                        'is_missing': True,
                        'missing_columns': [],
                        'extra_columns': [],
                    })
                    continue

                found = {row[1]: (row[2] or '').upper() for row in conn.execute(f'PRAGMA table_info("{table}")')}
                missing = []
                for name, col_type in columns:
                    if name not in found:
                        missing.append({'name': name, 'expected': col_type, 'found': None})
                    elif found[name] != col_type:
                        missing.append({'name': name, 'expected': col_type, 'found': found[name]})
                expected_names = {name for name, _ in columns}
                extra = [name for name in found if name not in expected_names]

                report['tables'].append({
                    'name': table,
                    'is_missing': False,
                    'missing_columns': missing,
                    'extra_columns': extra,
                })

            report['extra_tables'] = sorted(
                t for t in found_tables if t not in EXPECTED_SCHEMA
            )
            return report
        finally:
            conn.close()

    # ===================
    # BACKUP / RESTORE
    # ===================

    def backup(self, dest_path):
        """Write a consistent copy of the whole store to dest_path"""
        with self._lock:
            src = sqlite3.connect(self.path)
            dest = sqlite3.connect(dest_path)
            try:
                src.backup(dest)
            finally:
                dest.close()
                src.close()
        logger.info(f"Backed up store to {dest_path}")
        return dest_path

    def restore(self, src_path):
        """Replace the whole store with the contents of src_path"""
        report = self.compare_schema(src_path)
        missing_tables = [t['name'] for t in report['tables'] if t['is_missing']]
        if 'databases' in missing_tables:
            raise ValueError('File is not a Tagmail store: databases table missing')

        with self._lock:
            src = sqlite3.connect(src_path)
            dest = sqlite3.connect(self.path)
            try:
                src.backup(dest)
            finally:
                dest.close()
                src.close()
        self.init_db()
        logger.info(f"Restored store from {src_path}")
        return report

    def dump_sql(self):
        """Full SQL script (schema + data) for the store"""
        with self.connect() as conn:
            conn.row_factory = None
            return '\n'.join(conn.iterdump())

    # ===================
    # SEEDING
    # ===================

    def is_empty(self):
        with self.connect() as conn:
            return conn.execute('SELECT COUNT(*) FROM databases').fetchone()[0] == 0

    def seed_default(self):
        """Create a starter tenant with a few tags, subscribers and one sent campaign"""
        with self.connect() as conn:
            cursor = conn.execute(
                'INSERT INTO databases (name, description, social_links_json) VALUES (?, ?, ?)',
                ('Default Newsletter', 'Auto-generated starter database', '[]')
            )
            database_id = cursor.lastrowid

            tag_ids = {}
            for name in ('Customers', 'Prospects', 'VIP', 'Test'):
                cursor = conn.execute('INSERT INTO tags (database_id, name) VALUES (?, ?)', (database_id, name))
                tag_ids[name] = cursor.lastrowid

            sample = [
                ('alice@example.com', 'Alice Johnson', ['Customers', 'VIP']),
                ('bob@example.com', 'Bob Smith', ['Customers']),
                ('carol@example.com', 'Carol White', ['Prospects']),
                ('dave@example.com', 'Dave Brown', ['Prospects', 'Test']),
            ]
            subscriber_ids = []
            for email, name, tags in sample:
                cursor = conn.execute(
                    'INSERT INTO subscribers (database_id, email, name, subscribed_at) VALUES (?, ?, ?, ?)',
                    (database_id, email, name, today_iso())
                )
                subscriber_ids.append(cursor.lastrowid)
                for tag in tags:
                    conn.execute('INSERT INTO subscriber_tags (subscriber_id, tag_id) VALUES (?, ?)',
                                 (cursor.lastrowid, tag_ids[tag]))

            target = {
                'groups': [{'id': 'group-1', 'tags': [], 'logic': 'ANY', 'at_least': 1}],
                'groups_logic': 'AND',
            }
            conn.execute(
                'INSERT INTO campaigns (database_id, subject, body, sent_at, recipient_count, status, '
                'target_json, recipients_json) VALUES (?, ?, ?, ?, ?, ?, ?, ?)',
                (database_id, 'Welcome to our newsletter!', '<p>Thanks for subscribing.</p>',
                 to_iso(utcnow()), len(subscriber_ids), 'Sent',
                 json.dumps(target), json.dumps(subscriber_ids))
            )

        logger.info(f"Seeded starter database {database_id}")
        return database_id


def _table_names(conn):
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'")
    return [row[0] for row in rows]


def _column_names(conn, table):
    return [row[1] for row in conn.execute(f'PRAGMA table_info("{table}")')]
