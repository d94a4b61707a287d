"""
Tagmail - Tag-Targeted Newsletter Admin
=======================================

A Flask admin framework for running newsletters across several tenant
("company") databases:
- Subscribers, tags and tag-group audience targeting
- Campaign lifecycle (Draft -> Scheduled -> Sending -> Sent)
- Background scheduler for due campaigns
- Store maintenance: backup, restore, migrations, schema report

Usage:
    from flask import Flask
    from tagmail import Tagmail

    app = Flask(__name__)
    tagmail = Tagmail(app)
"""

import logging
import os

from .core.config import Config
from .core.database import Database
from .core.store import Store
from .modules.campaigns.lifecycle import CampaignLifecycle
from .modules.campaigns.scheduler import CampaignScheduler
from .modules.databases.models import ensure_active_database

__version__ = '0.1.0'

logger = logging.getLogger(__name__)

# Settings copied from Config into app.config unless the app sets them
_DEFAULT_KEYS = (
    'SECRET_KEY', 'DB_DIR', 'SCHEDULER_ENABLED', 'SCHEDULER_INTERVAL', 'SEND_DELAY',
    'TEST_TAG_NAME', 'SEED_ON_EMPTY', 'GEMINI_API_KEY', 'GEMINI_MODEL',
)

# Paths derived from DB_DIR when not set explicitly
_DB_FILES = {
    'TAGMAIL_DB': 'tagmail.db',
    'LOG_DB': 'tagmail_log.db',
    'ACTIVE_DB_FILE': 'active_database.json',
}


class Tagmail:
    """
    Flask extension wiring the store, campaign lifecycle, scheduler and
    admin blueprints onto an app.

    Args:
        app: Flask application (optional, see init_app)
        config: dict of settings applied on top of app.config
    """

    def __init__(self, app=None, config=None):
        self.app = None
        self.db = None
        self.store = None
        self.lifecycle = None
        self.scheduler = None
        self.active_pointer_path = None
        self.scheduler_enabled = False
        self._blueprints = []
        if app is not None:
            self.init_app(app, config)

    def init_app(self, app, config=None):
        self.app = app
        self._apply_config(app, config or {})

        os.makedirs(app.config['DB_DIR'], exist_ok=True)
        self.db = Database(app.config['TAGMAIL_DB'])
        self.db.init_db()
        self.active_pointer_path = app.config['ACTIVE_DB_FILE']

        if app.config['SEED_ON_EMPTY'] and self.db.is_empty():
            self.db.seed_default()

        self.store = Store(self.db)
        self.lifecycle = CampaignLifecycle(
            self.store,
            send_delay=float(app.config['SEND_DELAY']),
            test_tag_name=app.config['TEST_TAG_NAME'],
        )
        self.scheduler = CampaignScheduler(
            self.store,
            self.lifecycle,
            self.active_database_id,
            interval=float(app.config['SCHEDULER_INTERVAL']),
            on_transition=self._on_transition,
            app_context=app.app_context,
        )

        self._register_blueprints(app)
        app.extensions['tagmail'] = self

        self.scheduler_enabled = bool(app.config['SCHEDULER_ENABLED']) and not app.config.get('TESTING')
        if self.scheduler_enabled:
            self.scheduler.start()

        logger.info(f"Tagmail initialised with store {app.config['TAGMAIL_DB']}")

    @staticmethod
    def _apply_config(app, config):
        app.config.update(config)
        for key in _DEFAULT_KEYS:
            if app.config.get(key) is None:
                app.config[key] = getattr(Config, key)
        for key, filename in _DB_FILES.items():
            if not app.config.get(key):
                app.config[key] = os.path.join(app.config['DB_DIR'], filename)

    def _register_blueprints(self, app):
        from .modules.campaigns import campaigns_bp
        from .modules.dashboard import dashboard_bp
        from .modules.databases import databases_bp
        from .modules.ops import ops_health_bp, ops_admin_bp
        from .modules.subscribers import subscribers_bp
        from .modules.tags import tags_bp

        for bp in (dashboard_bp, databases_bp, subscribers_bp, tags_bp, campaigns_bp,
                   ops_health_bp, ops_admin_bp):
            if bp.name not in app.blueprints:
                app.register_blueprint(bp)
            self._blueprints.append(bp.name)

    def _on_transition(self, campaign):
        logger.debug(f"Campaign {campaign['id']} is now {campaign['status']}")

    def active_database_id(self):
        """Current active tenant id, repairing a stale pointer"""
        return ensure_active_database(self.db, self.active_pointer_path)

    def get_registered_modules(self):
        """Names of the blueprints this extension registered"""
        return list(self._blueprints)

    def shutdown(self):
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.stop(timeout=5)


__all__ = ['Tagmail', 'Config', 'Database', 'Store', 'CampaignLifecycle', 'CampaignScheduler']
