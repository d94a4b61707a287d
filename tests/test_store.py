"""
Persistence: store interface, tenants, subscribers, tags and maintenance.
"""

import os
import sqlite3
from datetime import timedelta

import pytest

from tagmail.core.database import Database
from tagmail.core.exceptions import CSVImportError, InvalidTransitionError, NotFoundError
from tagmail.core.timestamps import to_iso
from tagmail.modules.campaigns.models import add_campaign, blank_campaign, get_campaign
from tagmail.modules.databases.models import (
    add_database, delete_database, ensure_active_database, get_active_database_id,
    get_database_contents, set_active_database_id, transfer_subscribers, csv_template
)
from tagmail.modules.subscribers.models import (
    add_subscriber, export_csv, get_subscribers, import_csv, unlink_tag, get_subscriber
)
from tagmail.modules.tags.models import add_tag, delete_tag, get_tag_usage, update_tag_with_relations


# ---------------------------------------------------------------------------
# Store interface
# ---------------------------------------------------------------------------

def test_store_due_campaigns_filtered_and_ordered(store, tenant, now):
    def scheduled(subject, offset):
        campaign = dict(blank_campaign(), subject=subject, status="Scheduled",
                        scheduled_at=to_iso(now + offset))
        return store.add_campaign(tenant["id"], campaign)

    later = scheduled("later", timedelta(minutes=-1))
    earlier = scheduled("earlier", timedelta(hours=-3))
    scheduled("future", timedelta(hours=1))
    store.add_campaign(tenant["id"], dict(blank_campaign(), subject="draft"))

    due = store.get_due_campaigns(tenant["id"], now)
    assert [c["id"] for c in due] == [earlier["id"], later["id"]]


def test_store_update_round_trips_every_field(store, tenant, now):
    campaign = store.add_campaign(tenant["id"], dict(blank_campaign(), subject="Hi"))
    campaign.update(
        status="Sent",
        sent_at=to_iso(now),
        scheduled_at=to_iso(now - timedelta(hours=1)),
        recipient_count=2,
        recipients=[tenant["subscribers"]["ann"], tenant["subscribers"]["ben"]],
        target={"groups": [{"id": "g", "tags": [tenant["tags"]["VIP"]], "logic": "NONE", "at_least": 1}],
                "groups_logic": "OR"},
        body="<p>body</p>",
    )
    store.update_campaign(campaign)
    assert store.get_campaign(campaign["id"]) == campaign


def test_store_update_missing_campaign(store):
    with pytest.raises(NotFoundError):
        store.update_campaign(dict(blank_campaign(), id=999))


def test_store_conditional_update(store, tenant):
    campaign = store.add_campaign(tenant["id"], dict(blank_campaign(), subject="Hi"))

    with pytest.raises(InvalidTransitionError) as exc:
        store.update_campaign(dict(campaign, status="Sending"), expected_status="Scheduled")
    assert exc.value.status == "Draft"

    store.update_campaign(dict(campaign, status="Sending"), expected_status="Draft")
    assert store.get_campaign(campaign["id"])["status"] == "Sending"


def test_database_contents_snapshot(store, tenant):
    contents = store.get_database_contents(tenant["id"])
    assert contents["name"] == "Acme Newsletter"
    assert len(contents["subscribers"]) == 4
    assert {t["name"] for t in contents["tags"]} == {"News", "VIP", "Test"}
    ann = next(s for s in contents["subscribers"] if s["email"] == "ann@example.com")
    assert sorted(ann["tags"]) == sorted([tenant["tags"]["News"], tenant["tags"]["VIP"]])


def test_add_campaign_unknown_tenant(store):
    with pytest.raises(NotFoundError):
        store.add_campaign(12345, blank_campaign())


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------

def test_delete_tenant_cascades(db, tenant):
    campaign = add_campaign(db, tenant["id"], dict(blank_campaign(), subject="x"))
    delete_database(db, tenant["id"])

    with pytest.raises(NotFoundError):
        get_campaign(db, campaign["id"])
    assert get_subscribers(db, tenant["id"]) == []


def test_profile_social_links_cleaned(db):
    database = add_database(db, {
        "name": "Shop",
        "social_links": [{"platform": "Facebook", "url": " https://fb.example "},
                         {"platform": "Myspace", "url": "https://old.example"},
                         {"platform": "Twitter", "url": ""}],
    })
    assert database["social_links"] == [
        {"platform": "Facebook", "url": "https://fb.example"},
        {"platform": "Other", "url": "https://old.example"},
    ]


def test_tenant_name_required(db):
    with pytest.raises(ValueError):
        add_database(db, {"name": "  "})


def test_active_pointer_repairs_itself(db, tmp_db_dir):
    pointer = os.path.join(tmp_db_dir, "active.json")
    assert ensure_active_database(db, pointer) is None

    first = add_database(db, {"name": "First"})
    second = add_database(db, {"name": "Second"})
    assert ensure_active_database(db, pointer) == first["id"]

    set_active_database_id(pointer, second["id"])
    assert get_active_database_id(pointer) == second["id"]

    delete_database(db, second["id"])
    assert ensure_active_database(db, pointer) == first["id"]


def test_transfer_copy_keeps_source_and_maps_tags(db, tenant):
    target = add_database(db, {"name": "Other"})
    add_tag(db, target["id"], "news")
    result = transfer_subscribers(db, tenant["id"], target["id"], [tenant["subscribers"]["ann"]], "copy")

    assert result == {"transferred": 1}
    assert len(get_subscribers(db, tenant["id"])) == 4

    copied = get_database_contents(db, target["id"])
    tag_names = {t["id"]: t["name"] for t in copied["tags"]}
    assert sorted(tag_names[t] for t in copied["subscribers"][0]["tags"]) == ["VIP", "news"]


def test_transfer_move_relinks_subscriber(db, tenant):
    target = add_database(db, {"name": "Other"})
    ben = tenant["subscribers"]["ben"]
    transfer_subscribers(db, tenant["id"], target["id"], [ben], "move")

    moved = get_subscriber(db, ben)
    assert moved["database_id"] == target["id"]
    assert len(get_subscribers(db, tenant["id"])) == 3
    assert len(moved["tags"]) == 1


def test_transfer_rejects_bad_mode(db, tenant):
    with pytest.raises(ValueError):
        transfer_subscribers(db, tenant["id"], tenant["id"] + 1, [1], "swap")


def test_csv_template_headers():
    assert csv_template("tags") == "id,database_id,name\n"
    with pytest.raises(NotFoundError):
        csv_template("nope")


# ---------------------------------------------------------------------------
# Subscribers
# ---------------------------------------------------------------------------

def test_duplicate_email_rejected(db, tenant):
    with pytest.raises(ValueError):
        add_subscriber(db, tenant["id"], {"email": "ANN@example.com"})


@pytest.mark.parametrize("email", ["", "plainaddress", "a..b@example.com", "x@y"])
def test_invalid_email_rejected(db, tenant, email):
    with pytest.raises(ValueError):
        add_subscriber(db, tenant["id"], {"email": email})


def test_foreign_tag_rejected(db, tenant):
    other = add_database(db, {"name": "Other"})
    foreign = add_tag(db, other["id"], "News")
    with pytest.raises(ValueError):
        add_subscriber(db, tenant["id"], {"email": "zed@example.com", "tags": [foreign["id"]]})


def test_unlink_single_tag(db, tenant):
    ann = tenant["subscribers"]["ann"]
    unlink_tag(db, ann, tenant["tags"]["VIP"])
    assert get_subscriber(db, ann)["tags"] == [tenant["tags"]["News"]]


def test_import_csv_upserts_and_creates_tags(db, tenant):
    csv_text = (
        "\ufeffEmail,Name,Tags\n"
        "ann@example.com,Ann Updated,Partners\n"
        "new@example.com,New Person,News;Partners\n"
        "not-an-email,Bad,\n"
        ",,\n"
    )
    result = import_csv(db, tenant["id"], csv_text)
    assert result == {"success": 2, "failed": 1}

    subscribers = {s["email"]: s for s in get_subscribers(db, tenant["id"])}
    assert subscribers["ann@example.com"]["name"] == "Ann Updated"
    assert len(subscribers["ann@example.com"]["tags"]) == 3
    assert len(subscribers["new@example.com"]["tags"]) == 2


def test_import_csv_requires_email_column(db, tenant):
    with pytest.raises(CSVImportError):
        import_csv(db, tenant["id"], "name,tags\nAnn,News\n")
    with pytest.raises(CSVImportError):
        import_csv(db, tenant["id"], "")


def test_export_csv(db, tenant):
    lines = export_csv(db, tenant["id"]).splitlines()
    assert lines[0] == "name,email,external_id,tags"
    assert "Ann,ann@example.com,,News;VIP" in lines


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

def test_deleted_tag_stays_in_targets_but_matches_nobody(db, store, lifecycle, tenant):
    vip = tenant["tags"]["VIP"]
    draft = lifecycle.save_draft(tenant["id"], {"subject": "VIP", "target": {"groups": [{"tags": [vip]}]}})
    delete_tag(db, vip)

    assert get_campaign(db, draft["id"])["target"]["groups"][0]["tags"] == [vip]
    assert lifecycle.estimate(tenant["id"], draft["target"])["count"] == 0


def test_update_tag_with_relations(db, lifecycle, tenant, now):
    news = tenant["tags"]["News"]
    with_tag = lifecycle.save_draft(tenant["id"], {"subject": "A", "target": {"groups": [{"tags": [news]}]}})
    without_tag = lifecycle.save_draft(tenant["id"], {"subject": "B"})
    sent = lifecycle.send_now(lifecycle.save_draft(tenant["id"], {
        "subject": "C", "target": {"groups": [{"tags": [news]}]}})["id"])

    update_tag_with_relations(db, news, "Newsletter", [tenant["subscribers"]["cat"]], [without_tag["id"]])

    usage = {t["name"]: t for t in get_tag_usage(db, tenant["id"])}
    assert usage["Newsletter"]["subscriber_count"] == 1
    assert news not in get_subscriber(db, tenant["subscribers"]["ann"])["tags"]
    assert get_campaign(db, with_tag["id"])["target"]["groups"][0]["tags"] == []
    assert get_campaign(db, without_tag["id"])["target"]["groups"][0]["tags"] == [news]
    # only drafts are rewritten
    assert get_campaign(db, sent["id"])["target"]["groups"][0]["tags"] == [news]
    assert sorted(usage["Newsletter"]["campaign_ids"]) == sorted([without_tag["id"], sent["id"]])


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

def test_fresh_schema_matches_expected(db):
    report = db.compare_schema()
    assert report["extra_tables"] == []
    for table in report["tables"]:
        assert not table["is_missing"]
        assert table["missing_columns"] == []
        assert table["extra_columns"] == []


def test_migrates_legacy_store(tmp_db_dir):
    path = os.path.join(tmp_db_dir, "legacy.db")
    conn = sqlite3.connect(path)
    conn.executescript('''
        CREATE TABLE databases (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL);
        CREATE TABLE campaigns (
            id INTEGER PRIMARY KEY AUTOINCREMENT, database_id INTEGER NOT NULL,
            subject TEXT NOT NULL, body TEXT, sent_at TEXT, recipient_count INTEGER DEFAULT 0,
            status TEXT NOT NULL, target_tags_json TEXT, target_logic TEXT
        );
        INSERT INTO databases (name) VALUES ('Old');
        INSERT INTO campaigns (database_id, subject, status, target_tags_json, target_logic)
        VALUES (1, 'Legacy', 'Draft', '[3, 4]', 'ALL');
    ''')
    conn.commit()
    conn.close()

    db = Database(path)
    db.init_db()

    campaign = get_campaign(db, 1)
    assert campaign["target"]["groups"][0]["tags"] == [3, 4]
    assert campaign["target"]["groups"][0]["logic"] == "ALL"
    assert campaign["scheduled_at"] is None

    report = {t["name"]: t for t in db.compare_schema()["tables"]}
    assert report["databases"]["missing_columns"] == []
    assert report["campaigns"]["extra_columns"] == ["target_tags_json", "target_logic"]


def test_backup_and_restore(db, tenant, tmp_db_dir):
    backup_path = os.path.join(tmp_db_dir, "backup.db")
    db.backup(backup_path)

    delete_database(db, tenant["id"])
    assert db.is_empty()

    db.restore(backup_path)
    assert len(get_subscribers(db, tenant["id"])) == 4


def test_restore_rejects_foreign_file(db, tmp_db_dir):
    path = os.path.join(tmp_db_dir, "other.db")
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE notes (id INTEGER)")
    conn.commit()
    conn.close()

    with pytest.raises(ValueError):
        db.restore(path)


def test_recreate_and_seed(db, tenant):
    db.recreate()
    assert db.is_empty()

    database_id = db.seed_default()
    contents = get_database_contents(db, database_id)
    assert contents["name"] == "Default Newsletter"
    assert len(contents["subscribers"]) == 4
    sent = contents["campaigns"][0]
    assert sent["status"] == "Sent"
    assert sent["recipient_count"] == len(sent["recipients"]) == 4


def test_dump_sql_contains_data(db, tenant):
    sql = db.dump_sql()
    assert "CREATE TABLE" in sql
    assert "ann@example.com" in sql
