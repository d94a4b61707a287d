"""
Shared fixtures for the Tagmail test suite.

Run with: pytest -v
Install test dependencies with: pip install -e ".[dev]"
"""

import os
import shutil
import tempfile
from datetime import datetime, timezone

import pytest
from flask import Flask

from tagmail import Tagmail
from tagmail.core.config import Config
from tagmail.core.database import Database
from tagmail.core.store import Store
from tagmail.modules.campaigns.lifecycle import CampaignLifecycle
from tagmail.modules.databases.models import add_database
from tagmail.modules.subscribers.models import add_subscriber
from tagmail.modules.tags.models import add_tag


FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_db_dir():
    """Create a temporary directory for test databases, cleaned up after."""
    d = tempfile.mkdtemp(prefix="tagmail-test-")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture(autouse=True)
def isolated_log_db(tmp_db_dir, monkeypatch):
    """Keep the persistent diagnostic log out of the working directory."""
    monkeypatch.setattr(Config, "LOG_DB", os.path.join(tmp_db_dir, "tagmail_log.db"))


@pytest.fixture
def db(tmp_db_dir):
    database = Database(os.path.join(tmp_db_dir, "tagmail.db"))
    database.init_db()
    return database


@pytest.fixture
def store(db):
    return Store(db)


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def lifecycle(store, now):
    """Lifecycle with a frozen clock and no send delay."""
    return CampaignLifecycle(store, send_delay=0, clock=lambda: now)


@pytest.fixture
def tenant(db):
    """
    One tenant with tags News, VIP, Test and four subscribers:

        ann   -> News, VIP
        ben   -> News
        cat   -> VIP
        tess  -> Test
    """
    database = add_database(db, {"name": "Acme Newsletter"})
    tags = {name: add_tag(db, database["id"], name)["id"] for name in ("News", "VIP", "Test")}
    subscribers = {}
    for key, email, tag_names in (
        ("ann", "ann@example.com", ["News", "VIP"]),
        ("ben", "ben@example.com", ["News"]),
        ("cat", "cat@example.com", ["VIP"]),
        ("tess", "tess@example.com", ["Test"]),
    ):
        subscriber = add_subscriber(db, database["id"], {
            "email": email,
            "name": key.title(),
            "tags": [tags[t] for t in tag_names],
        })
        subscribers[key] = subscriber["id"]
    return {"id": database["id"], "tags": tags, "subscribers": subscribers}


# ---------------------------------------------------------------------------
# Flask app
# ---------------------------------------------------------------------------

@pytest.fixture
def app(tmp_db_dir):
    """Flask app with Tagmail registered, scheduler thread off, no seeding."""
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["SECRET_KEY"] = "test-secret"
    app.config["DB_DIR"] = tmp_db_dir
    Tagmail(app, {
        "SEED_ON_EMPTY": False,
        "SEND_DELAY": 0,
        "GEMINI_API_KEY": "",
    })
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    """Test client with an open admin session."""
    resp = client.post("/admin/login", json={"email": "admin@example.com"})
    assert resp.status_code == 200
    return client


@pytest.fixture
def app_tenant(app):
    """The `tenant` fixture's data, created inside the app's own store."""
    tagmail = app.extensions["tagmail"]
    db = tagmail.db
    database = add_database(db, {"name": "Acme Newsletter"})
    tags = {name: add_tag(db, database["id"], name)["id"] for name in ("News", "VIP", "Test")}
    subscribers = {}
    for key, tag_names in (("ann", ["News", "VIP"]), ("ben", ["News"]), ("tess", ["Test"])):
        subscribers[key] = add_subscriber(db, database["id"], {
            "email": f"{key}@example.com",
            "tags": [tags[t] for t in tag_names],
        })["id"]
    tagmail.active_database_id()
    return {"id": database["id"], "tags": tags, "subscribers": subscribers}
