"""
Critical Integration Tests for Tagmail
======================================

Focused tests covering the integration points most likely to break:
extension wiring, config resolution, auth, and the HTTP flows that drive
the campaign lifecycle.

Run with: pytest tests/test_critical.py -v
"""

import io
import os
from unittest.mock import patch, MagicMock

import pytest
import requests
from flask import Flask

from tagmail import Tagmail


# ---------------------------------------------------------------------------
# 1. Framework initialisation
# ---------------------------------------------------------------------------

def test_framework_initialisation(tmp_db_dir):
    """Tagmail(app) boots, stores itself on the app and registers modules."""
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["DB_DIR"] = tmp_db_dir

    tagmail = Tagmail(app)

    assert app.extensions["tagmail"] is tagmail
    assert set(tagmail.get_registered_modules()) >= {"admin", "campaigns", "subscribers", "tags", "databases"}
    assert not tagmail.scheduler.running
    # empty store is seeded with a starter tenant which becomes active
    assert tagmail.active_database_id() is not None


def test_config_db_paths(app, tmp_db_dir):
    """Store, log and pointer paths derive from DB_DIR."""
    assert app.config["TAGMAIL_DB"] == os.path.join(tmp_db_dir, "tagmail.db")
    assert app.config["LOG_DB"] == os.path.join(tmp_db_dir, "tagmail_log.db")
    assert app.config["ACTIVE_DB_FILE"] == os.path.join(tmp_db_dir, "active_database.json")
    assert os.path.exists(app.config["TAGMAIL_DB"])


def test_scheduler_starts_outside_testing(tmp_db_dir):
    app = Flask(__name__)
    app.config["DB_DIR"] = tmp_db_dir
    tagmail = Tagmail(app, {"SCHEDULER_INTERVAL": 3600, "SEED_ON_EMPTY": False})
    try:
        assert tagmail.scheduler.running
    finally:
        tagmail.shutdown()
    assert not tagmail.scheduler.running


# ---------------------------------------------------------------------------
# 2. Health and auth
# ---------------------------------------------------------------------------

def test_health_endpoint(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "ok"
    assert data["checks"]["store"]["ok"] is True


def test_admin_routes_require_login(client):
    assert client.get("/admin/campaigns").status_code == 401
    assert client.post("/admin/subscribers", json={"email": "x@example.com"}).status_code == 401


def test_logout_closes_session(admin_client):
    admin_client.post("/admin/logout")
    assert admin_client.get("/admin/tags").status_code == 401


# ---------------------------------------------------------------------------
# 3. Tenants
# ---------------------------------------------------------------------------

def test_first_database_becomes_active(admin_client):
    resp = admin_client.post("/admin/databases", json={"name": "Acme"})
    assert resp.status_code == 201
    database_id = resp.get_json()["id"]

    assert admin_client.get("/admin/databases/active").get_json()["active_id"] == database_id

    resp = admin_client.post("/admin/databases", json={"name": "Beta"})
    beta_id = resp.get_json()["id"]
    assert admin_client.put("/admin/databases/active", json={"id": beta_id}).status_code == 200
    assert admin_client.get("/admin/databases").get_json()["active_id"] == beta_id


def test_no_active_database_is_404(admin_client):
    resp = admin_client.get("/admin/subscribers")
    assert resp.status_code == 404


def test_schema_report_and_backup(admin_client, app_tenant):
    report = admin_client.get("/admin/databases/schema").get_json()
    assert all(not t["is_missing"] for t in report["tables"])

    resp = admin_client.get("/admin/databases/backup")
    assert resp.status_code == 200
    assert resp.data.startswith(b"SQLite format 3")


def test_restore_round_trip(admin_client, app_tenant):
    backup = admin_client.get("/admin/databases/backup").data
    assert admin_client.post("/admin/databases/recreate", json={"confirm": "RECREATE"}).status_code == 200
    assert admin_client.get("/admin/databases").get_json()["databases"] == []

    resp = admin_client.post(
        "/admin/databases/restore",
        data={"file": (io.BytesIO(backup), "backup.db")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 200
    assert resp.get_json()["active_id"] == app_tenant["id"]


def test_recreate_requires_confirmation(admin_client, app_tenant):
    assert admin_client.post("/admin/databases/recreate", json={}).status_code == 400


# ---------------------------------------------------------------------------
# 4. Subscribers and tags
# ---------------------------------------------------------------------------

def test_subscriber_crud_and_csv(admin_client, app_tenant):
    resp = admin_client.post("/admin/subscribers", json={
        "email": "new@example.com", "tags": [app_tenant["tags"]["VIP"]]
    })
    assert resp.status_code == 201
    subscriber_id = resp.get_json()["id"]

    assert admin_client.post("/admin/subscribers", json={"email": "new@example.com"}).status_code == 400
    assert admin_client.post(f"/admin/subscribers/{subscriber_id}/unsubscribe").get_json()["unsubscribed_at"]

    listing = admin_client.get("/admin/subscribers").get_json()
    assert listing["count"] == 4
    assert listing["active"] == 3

    resp = admin_client.post("/admin/subscribers/import", data="email,tags\nbulk@example.com,News\n",
                             content_type="text/csv")
    assert resp.get_json()["success"] == 1

    export = admin_client.get("/admin/subscribers/export")
    assert export.mimetype == "text/csv"
    assert b"bulk@example.com" in export.data


def test_tag_usage_listing(admin_client, app_tenant):
    tags = {t["name"]: t for t in admin_client.get("/admin/tags").get_json()["tags"]}
    assert tags["News"]["subscriber_count"] == 2
    assert admin_client.post("/admin/tags", json={"name": "news"}).status_code == 400


# ---------------------------------------------------------------------------
# 5. Campaign flows
# ---------------------------------------------------------------------------

def _save_draft(client, tenant, subject="Launch", tags=None):
    resp = client.post("/admin/campaigns/save", json={
        "subject": subject,
        "body": "<p>Hi</p>",
        "target": {"groups": [{"tags": tags or [], "logic": "ANY"}], "groupsLogic": "AND"},
    })
    assert resp.status_code == 200
    return resp.get_json()["campaign"]


def test_estimate_endpoint(admin_client, app_tenant):
    resp = admin_client.post("/admin/campaigns/estimate", json={
        "target": {"groups": [{"tags": [app_tenant["tags"]["News"]], "logic": "NONE"}]}
    })
    assert resp.get_json()["count"] == 1


def test_send_now_endpoint(admin_client, app_tenant):
    draft = _save_draft(admin_client, app_tenant)
    resp = admin_client.post(f"/admin/campaigns/{draft['id']}/send")
    assert resp.status_code == 200
    sent = resp.get_json()["campaign"]
    assert sent["status"] == "Sent"
    assert sent["recipient_count"] == 3

    # a Sent campaign cannot be sent again
    assert admin_client.post(f"/admin/campaigns/{draft['id']}/send").status_code == 409


def test_schedule_validation_reaches_caller(admin_client, app_tenant):
    draft = _save_draft(admin_client, app_tenant, subject="")
    resp = admin_client.post(f"/admin/campaigns/{draft['id']}/schedule",
                             json={"scheduled_at": "2099-01-01T09:00:00Z"})
    assert resp.status_code == 400
    assert resp.get_json()["reason"] == "subject_required"


def test_schedule_then_unschedule(admin_client, app_tenant):
    draft = _save_draft(admin_client, app_tenant)
    resp = admin_client.post(f"/admin/campaigns/{draft['id']}/schedule",
                             json={"scheduled_at": "2099-01-01T09:00:00Z"})
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "Scheduled"

    resp = admin_client.post(f"/admin/campaigns/{draft['id']}/unschedule")
    assert resp.get_json()["status"] == "Draft"
    assert resp.get_json()["scheduled_at"] is None


def test_manual_scheduler_run(admin_client, app_tenant):
    resp = admin_client.post("/admin/campaigns/scheduler/run")
    assert resp.get_json() == {"skipped": False, "sent": 0}


def test_clone_and_test_send(admin_client, app_tenant):
    draft = _save_draft(admin_client, app_tenant)
    clone = admin_client.post(f"/admin/campaigns/{draft['id']}/clone").get_json()
    assert clone["subject"] == "[CLONE] Launch"

    resp = admin_client.post(f"/admin/campaigns/{draft['id']}/test-send")
    assert resp.status_code == 200
    assert resp.get_json()["campaign"]["recipients"] == [app_tenant["subscribers"]["tess"]]

    statuses = [c["status"] for c in admin_client.get("/admin/campaigns").get_json()["campaigns"]]
    assert sorted(statuses) == ["Draft", "Draft", "Sent"]


def test_delete_missing_campaign(admin_client, app_tenant):
    assert admin_client.delete("/admin/campaigns/9999").status_code == 404


def test_composer_helpers(admin_client, app_tenant):
    _save_draft(admin_client, app_tenant, subject="Spring sale")
    _save_draft(admin_client, app_tenant, subject="Spring recap")

    found = admin_client.get("/admin/campaigns/suggestions?q=spring").get_json()["suggestions"]
    assert sorted(found) == ["Spring recap", "Spring sale"]

    warnings = admin_client.post("/admin/campaigns/warnings",
                                 json={"subject": "", "body": "<SCRIPT>x</SCRIPT>"}).get_json()["warnings"]
    assert set(warnings) == {"subject", "body"}

    templates = admin_client.get("/admin/campaigns/templates").get_json()["templates"]
    assert len(templates) == 4
    assert admin_client.get("/admin/campaigns/templates/template-2").status_code == 200


def test_dashboard_stats(admin_client, app_tenant):
    draft = _save_draft(admin_client, app_tenant)
    admin_client.post(f"/admin/campaigns/{draft['id']}/send")

    stats = admin_client.get("/admin/dashboard").get_json()
    assert stats["total_subscribers"] == 3
    assert stats["campaigns_by_status"]["Sent"] == 1
    assert stats["total_recipients"] == 3
    assert len(stats["growth"]) == 30
    assert stats["growth"][-1]["count"] == 3


# ---------------------------------------------------------------------------
# 6. Content assist
# ---------------------------------------------------------------------------

def test_generate_without_key_returns_placeholder(admin_client):
    resp = admin_client.post("/admin/campaigns/generate", json={"prompt": "Summer <offer>"})
    assert resp.status_code == 200
    assert "Mock AI-Generated Content" in resp.get_json()["html"]
    assert "&lt;offer&gt;" in resp.get_json()["html"]


def test_generate_calls_gemini(app, admin_client):
    app.config["GEMINI_API_KEY"] = "fake-key"
    fake = MagicMock()
    fake.json.return_value = {"candidates": [{"content": {"parts": [{"text": "```html\n<h1>Hi</h1>\n```"}]}}]}

    with patch("tagmail.modules.campaigns.assist.requests.post", return_value=fake) as post:
        resp = admin_client.post("/admin/campaigns/generate", json={"prompt": "hello"})

    assert resp.get_json()["html"] == "<h1>Hi</h1>"
    assert post.call_args.kwargs["params"] == {"key": "fake-key"}


def test_generate_transport_error(app, admin_client):
    app.config["GEMINI_API_KEY"] = "fake-key"
    with patch("tagmail.modules.campaigns.assist.requests.post",
               side_effect=requests.ConnectionError("offline")):
        resp = admin_client.post("/admin/campaigns/generate", json={"prompt": "hello"})
    assert resp.status_code == 400


@pytest.mark.parametrize("prompt", ["", "   ", None])
def test_generate_requires_prompt(admin_client, prompt):
    assert admin_client.post("/admin/campaigns/generate", json={"prompt": prompt}).status_code == 400
