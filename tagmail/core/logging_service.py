"""
Persistent diagnostic log for Tagmail.

Rows go to an ``app_logs`` table in LOG_DB so scheduler and persistence
failures stay visible after the console scrolls away. Writing a row never
raises: when the log store itself is broken the entry falls back to the
stdlib logger.
"""

import json
import logging
import os
import sqlite3
import threading
import traceback
from contextlib import closing, contextmanager
from datetime import timedelta

from flask import request, has_request_context

from .config import get_config_value
from .timestamps import to_iso, utcnow

console = logging.getLogger(__name__)

LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS app_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        level TEXT NOT NULL,
        source TEXT NOT NULL,
        message TEXT NOT NULL,
        details TEXT,
        request_path TEXT
    );
    CREATE INDEX IF NOT EXISTS idx_logs_timestamp ON app_logs(timestamp DESC);
    CREATE INDEX IF NOT EXISTS idx_logs_source ON app_logs(source);
"""


class LoggingService:
    """Writes and reads the app_logs table of the configured LOG_DB"""

    _initialised = set()
    _init_lock = threading.Lock()

    @staticmethod
    def _get_log_db():
        return get_config_value('LOG_DB')

    @classmethod
    @contextmanager
    def _connect(cls, db_path):
        """Connection that commits on success and is always closed"""
        # schema is created once per path per process
        if db_path not in cls._initialised:
            with cls._init_lock:
                directory = os.path.dirname(db_path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                with closing(sqlite3.connect(db_path)) as conn:
                    conn.executescript(_SCHEMA)
                cls._initialised.add(db_path)
        with closing(sqlite3.connect(db_path)) as conn:
            with conn:
                yield conn

    @staticmethod
    def _request_path():
        if has_request_context():
            return request.path
        return None

    @classmethod
    def log(cls, level, source, message, details=None):
        """
        Store one log row.

        Args:
            level (str): one of LEVELS, case-insensitive
            source (str): component name (campaigns, scheduler, databases, ...)
            message (str): short human-readable message
            details (str/dict): extra context, JSON-encoded when a dict or list
        """
        level = level.upper()
        if isinstance(details, (dict, list)):
            details = json.dumps(details, default=str)

        try:
            with cls._connect(cls._get_log_db()) as conn:
                conn.execute(
                    "INSERT INTO app_logs (timestamp, level, source, message, details, request_path) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (to_iso(utcnow()), level, source, message, details, cls._request_path())
                )
        except Exception as e:
            console.log(getattr(logging, level, logging.INFO), f"[{source}] {message} {details or ''}")
            console.warning(f"Log store unavailable: {e}")

    @classmethod
    def log_exception(cls, source, error, details=None):
        """Store an ERROR row carrying the exception type and traceback"""
        payload = {
            'error_type': type(error).__name__,
            'error_message': str(error),
            'traceback': ''.join(traceback.format_exception(type(error), error, error.__traceback__)),
        }
        if details:
            payload['context'] = details
        cls.log('ERROR', source, f"{type(error).__name__}: {error}", payload)

    @classmethod
    def get_recent_logs(cls, limit=100, level=None, source=None):
        """Most recent rows, newest first"""
        db_path = cls._get_log_db()
        if not db_path or not os.path.exists(db_path):
            return []

        clauses, params = [], []
        if level:
            clauses.append('level = ?')
            params.append(level.upper())
        if source:
            clauses.append('source = ?')
            params.append(source)

        query = 'SELECT * FROM app_logs'
        if clauses:
            query += ' WHERE ' + ' AND '.join(clauses)
        query += ' ORDER BY id DESC LIMIT ?'
        params.append(limit)

        with cls._connect(db_path) as conn:
            conn.row_factory = sqlite3.Row
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    @classmethod
    def prune(cls, days_to_keep=30):
        """Delete rows older than `days_to_keep` days; returns the number removed"""
        cutoff = to_iso(utcnow() - timedelta(days=days_to_keep))
        with cls._connect(cls._get_log_db()) as conn:
            deleted = conn.execute("DELETE FROM app_logs WHERE timestamp < ?", (cutoff,)).rowcount
        cls.log('INFO', 'ops', f"Pruned {deleted} log rows", {'days_to_keep': days_to_keep})
        return deleted


def db_log(level, source, message, details=None):
    """Shortcut used by every module's _db_log wrapper"""
    LoggingService.log(level, source, message, details)
