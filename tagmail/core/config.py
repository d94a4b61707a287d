import os
from dotenv import load_dotenv

load_dotenv(override=True)


def _env_flag(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """
    Base configuration for the Tagmail framework.
    Projects should provide database paths via environment variables.
    """
    SECRET_KEY = os.getenv('FLASK_SECRET_KEY')

    # Get DB_DIR from environment, or use a default if not set
    DB_DIR = os.getenv('DB_DIR', os.path.join(os.getcwd(), 'databases'))

    # Relational store (all tenants live in one file) and diagnostic log
    TAGMAIL_DB = os.getenv('TAGMAIL_DB', os.path.join(DB_DIR, 'tagmail.db'))
    LOG_DB = os.getenv('LOG_DB', os.path.join(DB_DIR, 'tagmail_log.db'))

    # Pointer to the active tenant, kept outside the relational store
    ACTIVE_DB_FILE = os.getenv('ACTIVE_DB_FILE', os.path.join(DB_DIR, 'active_database.json'))

    # Scheduler
    SCHEDULER_ENABLED = _env_flag('SCHEDULER_ENABLED', True)
    SCHEDULER_INTERVAL = float(os.getenv('SCHEDULER_INTERVAL', '30'))

    # Simulated transport: seconds spent in the Sending state
    SEND_DELAY = float(os.getenv('SEND_DELAY', '2'))

    # Subscribers holding this tag receive test sends
    TEST_TAG_NAME = os.getenv('TEST_TAG_NAME', 'Test')

    # Seed a starter tenant when the store is empty
    SEED_ON_EMPTY = _env_flag('SEED_ON_EMPTY', True)

    # AI content assist (Gemini REST API)
    GEMINI_API_KEY = os.getenv('GEMINI_API_KEY') or os.getenv('API_KEY')
    GEMINI_MODEL = os.getenv('GEMINI_MODEL', 'gemini-2.5-flash')

    # Port for local server
    port = int(os.getenv('PORT', '5000'))


def get_config_value(key, default=None):
    """Resolve a setting: app.config > Config class > env var (3-tier pattern)"""
    try:
        from flask import current_app
        val = current_app.config.get(key)
        if val is not None:
            return val
    except RuntimeError:
        pass
    if hasattr(Config, key):
        val = getattr(Config, key)
        if val is not None:
            return val
    return os.getenv(key, default)
