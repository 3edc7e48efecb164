"""
test_api.py — HTTP tests for every route through the application factory.

Each test gets an isolated app backed by JSON files in a temp directory and
a recording email transport, so broadcasts can be asserted without SMTP.

Covers:
    • Auth (register, login, me) and the error envelope (400/401/403/404)
    • Users directory
    • Reports (create with fan-out, list, delete by location, map data)
    • Contact groups (ownership rules)
    • Dashboard stats
    • Alert workflow (pending → approve → broadcast summary, delete rules)
    • Support tickets
    • Error envelope for server faults and the request log
    • Health endpoints

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import asyncio
import logging

import pytest
from fastapi.testclient import TestClient

from backend.app.alerts.models import AlertChannel, DeliveryAttempt, DeliveryStatus
from backend.app.core.config import settings
from backend.app.core.errors import StorageError
from backend.app.core.security import create_access_token, hash_password
from backend.app import main as app_main
from backend.app.main import create_app
from backend.app.storage.entities import RecordValidationError, new_id
from backend.app.storage.file_store import FileDatabase


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

PASSWORD = "secret1"
PASSWORD_HASH = hash_password(PASSWORD)


class RecordingSender:
    def __init__(self):
        self.sent = []

    async def __call__(self, alert, address):
        self.sent.append(address)
        return DeliveryAttempt(
            channel=AlertChannel.EMAIL,
            recipient=address,
            status=DeliveryStatus.DELIVERED,
        )


@pytest.fixture
def db(tmp_path):
    return FileDatabase(tmp_path / "data")


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def client(db, sender):
    app = create_app(database=db, email_sender=sender)
    with TestClient(app) as test_client:
        yield test_client


def _make_user(db, role="community", email=None, location="Majuli", name="User"):
    return asyncio.run(db.users.create({
        "name": name,
        "email": email or f"{new_id()[:8]}@example.org",
        "password": PASSWORD_HASH,
        "role": role,
        "location": location,
    }))


def _auth(user):
    return {"Authorization": f"Bearer {create_access_token(user['id'], user['role'])}"}


def _report_body(**overrides):
    body = {"location": "Majuli", "symptoms": ["Diarrhea"], "waterSource": "River"}
    body.update(overrides)
    return body


def _error(response):
    return response.json()["error"]


# ═══════════════════════════════════════════════════════════════════════════
# Auth
# ═══════════════════════════════════════════════════════════════════════════

class TestAuth:

    def test_register_returns_user_and_token(self, client):
        resp = client.post("/api/auth/register", json={
            "name": "Asha Devi", "email": "Asha@Example.org",
            "password": PASSWORD, "role": "health_worker", "location": "Majuli",
        })
        assert resp.status_code == 201
        data = resp.json()
        assert data["token"]
        assert data["user"]["email"] == "asha@example.org"
        assert data["user"]["role"] == "health_worker"
        assert "password" not in data["user"]

    def test_register_cannot_pick_admin(self, client):
        resp = client.post("/api/auth/register", json={
            "name": "Eve", "email": "eve@example.org", "password": PASSWORD, "role": "admin",
        })
        assert resp.status_code == 201
        assert resp.json()["user"]["role"] == "community"

    def test_register_duplicate_email_case_insensitive(self, client):
        body = {"name": "A", "email": "a@example.org", "password": PASSWORD}
        assert client.post("/api/auth/register", json=body).status_code == 201
        body["email"] = "A@EXAMPLE.ORG"
        resp = client.post("/api/auth/register", json=body)
        assert resp.status_code == 400
        assert _error(resp)["code"] == "DUPLICATE"
        assert _error(resp)["message"] == "User with this email already exists"

    def test_register_missing_fields(self, client):
        resp = client.post("/api/auth/register", json={"name": "A"})
        assert resp.status_code == 400
        err = _error(resp)
        assert err["code"] == "VALIDATION_ERROR"
        assert "email" in err["details"]["fields"]
        assert "password" in err["details"]["fields"]

    def test_register_short_password(self, client):
        resp = client.post("/api/auth/register", json={
            "name": "A", "email": "a@example.org", "password": "123",
        })
        assert resp.status_code == 400

    def test_login_and_me(self, client, db):
        user = _make_user(db, "health_worker", "w@example.org")
        resp = client.post("/api/auth/login", json={"email": "W@example.org", "password": PASSWORD})
        assert resp.status_code == 200
        data = resp.json()
        assert data["user"]["id"] == user["id"]
        assert data["user"]["lastLogin"] is not None

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert me.status_code == 200
        assert me.json()["email"] == "w@example.org"

    @pytest.mark.parametrize("email,password", [
        ("w@example.org", "wrong-password"),
        ("nobody@example.org", PASSWORD),
    ])
    def test_login_rejected(self, client, db, email, password):
        _make_user(db, "health_worker", "w@example.org")
        resp = client.post("/api/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 401
        assert _error(resp)["message"] == "Invalid credentials"

    def test_missing_token(self, client):
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        assert _error(resp)["code"] == "UNAUTHORIZED"
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_invalid_token(self, client):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer nonsense"})
        assert resp.status_code == 401
        assert _error(resp)["message"] == "Invalid or expired token"

    def test_token_for_deleted_user(self, client, db):
        user = _make_user(db)
        asyncio.run(db.users.find_by_id_and_delete(user["id"]))
        resp = client.get("/api/auth/me", headers=_auth(user))
        assert resp.status_code == 401


class TestUsers:

    def test_admin_lists_users_without_passwords(self, client, db):
        admin = _make_user(db, "admin")
        _make_user(db, "community")
        resp = client.get("/api/users", headers=_auth(admin))
        assert resp.status_code == 200
        users = resp.json()
        assert len(users) == 2
        assert all("password" not in u for u in users)

    def test_non_admin_forbidden(self, client, db):
        worker = _make_user(db, "health_worker")
        resp = client.get("/api/users", headers=_auth(worker))
        assert resp.status_code == 403
        assert _error(resp)["code"] == "FORBIDDEN"


# ═══════════════════════════════════════════════════════════════════════════
# Reports
# ═══════════════════════════════════════════════════════════════════════════

class TestReports:

    def test_community_cannot_report(self, client, db):
        member = _make_user(db, "community")
        resp = client.post("/api/reports", json=_report_body(), headers=_auth(member))
        assert resp.status_code == 403

    def test_single_report(self, client, db):
        worker = _make_user(db, "health_worker", "w@example.org", name="Worker")
        resp = client.post("/api/reports", json=_report_body(severity="High"), headers=_auth(worker))
        assert resp.status_code == 201
        report = resp.json()
        assert report["userId"] == {"id": worker["id"], "name": "Worker", "email": "w@example.org"}
        assert report["state"] == "Assam"
        assert report["severity"] == "High"
        assert report["status"] == "pending"
        assert report["registeredCases"] == 0

    def test_omitted_severity_stored_as_plain_string(self, client, db):
        worker = _make_user(db, "health_worker")
        client.post("/api/reports", json=_report_body(symptoms=["Fever"]), headers=_auth(worker))
        (stored,) = asyncio.run(db.reports.find().exec())
        assert type(stored["severity"]) is str
        assert stored["severity"] == "Low"

        update = client.get("/api/stats").json()["recentUpdates"][0]
        assert update["desc"] == "Low severity case reported with Fever"

    def test_fan_out(self, client, db):
        worker = _make_user(db, "health_worker")
        resp = client.post("/api/reports", json=_report_body(count=3), headers=_auth(worker))
        assert resp.status_code == 201
        data = resp.json()
        assert data["message"] == "Added 3 cases successfully"
        assert len(data["reports"]) == 3
        assert len({r["id"] for r in data["reports"]}) == 3

    def test_fan_out_bounded(self, client, db):
        worker = _make_user(db, "health_worker")
        resp = client.post("/api/reports", json=_report_body(count=10_000), headers=_auth(worker))
        assert resp.status_code == 400

    def test_symptoms_string_accepted(self, client, db):
        worker = _make_user(db, "health_worker")
        resp = client.post("/api/reports", json=_report_body(symptoms="Fever"), headers=_auth(worker))
        assert resp.status_code == 201
        assert resp.json()["symptoms"] == ["Fever"]

    @pytest.mark.parametrize("overrides,field", [
        ({"waterSource": None}, "waterSource"),
        ({"waterSource": "Lake"}, "waterSource"),
        ({"symptoms": []}, "symptoms"),
        ({"location": ""}, "location"),
        ({"registeredCases": -1}, "registeredCases"),
    ])
    def test_invalid_report(self, client, db, overrides, field):
        worker = _make_user(db, "health_worker")
        body = {k: v for k, v in _report_body(**overrides).items() if v is not None}
        resp = client.post("/api/reports", json=body, headers=_auth(worker))
        assert resp.status_code == 400
        assert field in _error(resp)["message"]

    def test_list_newest_first_staff_only(self, client, db):
        worker = _make_user(db, "health_worker")
        member = _make_user(db, "community")
        first = client.post("/api/reports", json=_report_body(location="A"), headers=_auth(worker))
        second = client.post("/api/reports", json=_report_body(location="B"), headers=_auth(worker))

        resp = client.get("/api/reports", headers=_auth(worker))
        assert [r["id"] for r in resp.json()] == [second.json()["id"], first.json()["id"]]
        assert client.get("/api/reports", headers=_auth(member)).status_code == 403

    def test_map_data_is_public_and_anonymous(self, client, db):
        worker = _make_user(db, "health_worker")
        client.post("/api/reports", json=_report_body(notes="private"), headers=_auth(worker))
        resp = client.get("/api/map-data")
        assert resp.status_code == 200
        (point,) = resp.json()
        assert set(point) == {
            "location", "state", "symptoms", "waterSource",
            "severity", "timestamp", "registeredCases",
        }

    def test_delete_by_location(self, client, db):
        worker = _make_user(db, "health_worker")
        national = _make_user(db, "national_admin")
        for location in ("Majuli", "majuli", "Majuli Island", "Jorhat"):
            client.post("/api/reports", json=_report_body(location=location), headers=_auth(worker))

        assert client.delete("/api/reports/location/MAJULI", headers=_auth(worker)).status_code == 403

        resp = client.delete("/api/reports/location/MAJULI", headers=_auth(national))
        assert resp.status_code == 200
        assert resp.json() == {
            "message": "Successfully removed village and 2 associated reports",
            "deletedCount": 2,
        }
        remaining = sorted(r["location"] for r in client.get("/api/map-data").json())
        assert remaining == ["Jorhat", "Majuli Island"]

        again = client.delete("/api/reports/location/Majuli", headers=_auth(national))
        assert again.status_code == 404
        assert _error(again)["message"] == "No reports found for this location"


# ═══════════════════════════════════════════════════════════════════════════
# Contact groups
# ═══════════════════════════════════════════════════════════════════════════

class TestContacts:

    def _create(self, client, user, **overrides):
        body = {"name": "ASHA", "contacts": [" a@x.org ", "+919000000000"]}
        body.update(overrides)
        return client.post("/api/contacts", json=body, headers=_auth(user))

    def test_create_trims_contacts(self, client, db):
        worker = _make_user(db, "health_worker")
        resp = self._create(client, worker)
        assert resp.status_code == 201
        group = resp.json()
        assert group["contacts"] == ["a@x.org", "+919000000000"]
        assert group["type"] == "mixed"
        assert group["createdBy"] == worker["id"]
        stored = asyncio.run(db.contact_groups.find_by_id(group["id"]).exec())
        assert type(stored["type"]) is str

    def test_blank_contacts_rejected(self, client, db):
        worker = _make_user(db, "health_worker")
        assert self._create(client, worker, contacts=["  ", ""]).status_code == 400

    def test_visibility(self, client, db):
        mine = _make_user(db, "health_worker")
        theirs = _make_user(db, "health_worker")
        admin = _make_user(db, "admin")
        self._create(client, mine, name="Mine")
        self._create(client, theirs, name="Theirs")

        assert [g["name"] for g in client.get("/api/contacts", headers=_auth(mine)).json()] == ["Mine"]
        assert len(client.get("/api/contacts", headers=_auth(admin)).json()) == 2
        member = _make_user(db, "community")
        assert client.get("/api/contacts", headers=_auth(member)).status_code == 403

    def test_delete_rules(self, client, db):
        owner = _make_user(db, "health_worker")
        other = _make_user(db, "health_worker")
        admin = _make_user(db, "admin")
        group_id = self._create(client, owner).json()["id"]

        bad = client.delete("/api/contacts/not-an-id", headers=_auth(owner))
        assert bad.status_code == 400
        assert _error(bad)["code"] == "INVALID_ID"
        assert client.delete(f"/api/contacts/{new_id()}", headers=_auth(owner)).status_code == 404
        assert client.delete(f"/api/contacts/{group_id}", headers=_auth(other)).status_code == 403

        resp = client.delete(f"/api/contacts/{group_id}", headers=_auth(admin))
        assert resp.status_code == 200
        assert resp.json() == {"message": "Group deleted successfully"}


# ═══════════════════════════════════════════════════════════════════════════
# Stats
# ═══════════════════════════════════════════════════════════════════════════

class TestStats:

    def test_empty(self, client):
        resp = client.get("/api/stats")
        assert resp.status_code == 200
        assert resp.json() == {
            "totalReports": 0, "highSeverity": 0, "locations": {}, "recentUpdates": [],
        }

    def test_totals_and_recent_updates(self, client, db):
        worker = _make_user(db, "health_worker")
        admin = _make_user(db, "admin")
        headers = _auth(worker)
        client.post("/api/reports", json=_report_body(severity="High", registeredCases=2), headers=headers)
        client.post("/api/reports", json=_report_body(registeredCases=1), headers=headers)
        client.post("/api/reports", json=_report_body(location="Jorhat", symptoms=["Fever"]), headers=headers)
        client.post("/api/alerts", json={
            "location": "Majuli", "level": "Red", "message": "Boil water",
        }, headers=_auth(admin))

        stats = client.get("/api/stats").json()
        assert stats["totalReports"] == 3
        assert stats["highSeverity"] == 1
        assert stats["locations"] == {
            "Jorhat": {"totalCases": 1, "registeredCases": 0},
            "Majuli": {"totalCases": 2, "registeredCases": 3},
        }
        first, second = stats["recentUpdates"]
        assert first["type"] == "alert"
        assert first["title"] == "Red Alert: Majuli"
        assert second == {
            "type": "report",
            "title": "New Report in Jorhat",
            "desc": "Low severity case reported with Fever",
            "time": second["time"],
            "severity": "Low",
        }


# ═══════════════════════════════════════════════════════════════════════════
# Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestAlerts:

    def _raise(self, client, user, **overrides):
        body = {"location": "Majuli", "level": "high", "message": "Boil drinking water"}
        body.update(overrides)
        return client.post("/api/alerts", json=body, headers=_auth(user))

    def test_requires_authentication(self, client):
        assert client.get("/api/alerts").status_code == 401

    def test_worker_raises_pending(self, client, db, sender):
        worker = _make_user(db, "health_worker", name="Worker")
        resp = self._raise(client, worker, channels=["email"], manualEmails=["x@y.org"])
        assert resp.status_code == 201
        alert = resp.json()
        assert alert["status"] == "pending"
        assert alert["channels"] == []
        assert alert["createdBy"]["name"] == "Worker"
        assert sender.sent == []

    def test_community_cannot_raise(self, client, db):
        member = _make_user(db, "community")
        assert self._raise(client, member).status_code == 403

    def test_invalid_level_rejected(self, client, db):
        worker = _make_user(db, "health_worker")
        resp = self._raise(client, worker, level="apocalyptic")
        assert resp.status_code == 400
        assert "level" in _error(resp)["message"]

    def test_approve_broadcasts(self, client, db, sender):
        worker = _make_user(db, "health_worker", "w@x.org", location="Majuli")
        _make_user(db, "community", "c@x.org", location="majuli town")
        _make_user(db, "community", "far@x.org", location="Jorhat")
        admin = _make_user(db, "admin", "adm@x.org", location="Guwahati", name="Admin")
        group = client.post("/api/contacts", json={
            "name": "ASHA", "contacts": ["c@x.org", "g@x.org"],
        }, headers=_auth(admin)).json()
        alert_id = self._raise(client, worker).json()["id"]

        resp = client.patch(f"/api/alerts/{alert_id}/approve", json={
            "channels": ["email", "sms"],
            "targetAudience": "affected_area",
            "manualEmails": ["m@x.org", "broken"],
            "manualPhoneNumbers": ["+919000000000"],
            "targetGroups": [group["id"]],
        }, headers=_auth(admin))
        assert resp.status_code == 200
        alert = resp.json()
        assert alert["status"] == "approved"
        assert alert["approvedBy"] == {"id": admin["id"], "name": "Admin"}
        assert sorted(sender.sent) == ["c@x.org", "g@x.org", "m@x.org", "w@x.org"]

        summary = alert["broadcastSummary"]
        assert summary["totalSent"] == 6
        assert summary["uniqueRecipients"] == 4
        assert summary["recipientTypeCount"] == {"community": 1, "health_worker": 1, "admin": 0}
        assert summary["manualRecipients"] == {"phones": 1, "emails": 2}
        assert summary["groupRecipients"] == 2
        assert summary["delivery"] == {"sent": 4, "failed": 0}

        again = client.patch(f"/api/alerts/{alert_id}/approve", headers=_auth(admin))
        assert again.status_code == 400

    def test_approve_without_body(self, client, db, sender):
        worker = _make_user(db, "health_worker")
        admin = _make_user(db, "admin")
        alert_id = self._raise(client, worker).json()["id"]
        resp = client.patch(f"/api/alerts/{alert_id}/approve", headers=_auth(admin))
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"
        assert resp.json()["broadcastSummary"] is None
        assert sender.sent == []

    def test_approve_requires_admin(self, client, db):
        worker = _make_user(db, "health_worker")
        alert_id = self._raise(client, worker).json()["id"]
        resp = client.patch(f"/api/alerts/{alert_id}/approve", headers=_auth(worker))
        assert resp.status_code == 403

    def test_approve_bad_ids(self, client, db):
        admin = _make_user(db, "admin")
        assert client.patch("/api/alerts/xyz/approve", headers=_auth(admin)).status_code == 400
        assert client.patch(f"/api/alerts/{new_id()}/approve", headers=_auth(admin)).status_code == 404

    def test_admin_alert_is_live_immediately(self, client, db, sender):
        admin = _make_user(db, "national_admin", location="Guwahati")
        _make_user(db, "community", "c@x.org")
        resp = self._raise(client, admin, channels=["email"])
        alert = resp.json()
        assert alert["status"] == "approved"
        assert alert["broadcastSummary"]["totalSent"] == 1
        assert sender.sent == ["c@x.org"]

    def test_visibility_by_role(self, client, db):
        worker = _make_user(db, "health_worker")
        member = _make_user(db, "community")
        admin = _make_user(db, "admin")
        pending_id = self._raise(client, worker, location="Pending").json()["id"]
        self._raise(client, admin, location="Live")
        for _ in range(3):
            client.post("/api/reports", json=_report_body(location="Hotspot"), headers=_auth(worker))

        community_view = client.get("/api/alerts", headers=_auth(member)).json()
        assert [a["location"] for a in community_view] == ["Live"]

        staff_view = client.get("/api/alerts", headers=_auth(worker)).json()
        ids = [a["id"] for a in staff_view]
        assert pending_id in ids
        assert "auto-alert-Hotspot" in ids
        auto = next(a for a in staff_view if a["id"] == "auto-alert-Hotspot")
        assert auto["level"] == "Yellow"
        assert auto["reportCount"] == 3

    def test_resolve_and_reactivate(self, client, db):
        admin = _make_user(db, "admin")
        member = _make_user(db, "community")
        alert_id = self._raise(client, admin).json()["id"]

        resp = client.patch(f"/api/alerts/{alert_id}", json={"isActive": False}, headers=_auth(admin))
        assert resp.status_code == 200
        assert resp.json()["resolvedAt"] is not None
        assert client.get("/api/alerts", headers=_auth(member)).json() == []

        resp = client.patch(f"/api/alerts/{alert_id}", json={"isActive": True}, headers=_auth(admin))
        assert resp.json()["resolvedAt"] is None
        assert len(client.get("/api/alerts", headers=_auth(member)).json()) == 1

        assert client.patch(f"/api/alerts/{alert_id}", json={}, headers=_auth(admin)).status_code == 400

    def test_delete_rules(self, client, db):
        owner = _make_user(db, "health_worker")
        other = _make_user(db, "health_worker")
        admin = _make_user(db, "admin")
        pending_id = self._raise(client, owner).json()["id"]
        approved_id = self._raise(client, owner).json()["id"]
        client.patch(f"/api/alerts/{approved_id}/approve", headers=_auth(admin))

        assert client.delete(f"/api/alerts/{pending_id}", headers=_auth(other)).status_code == 403
        blocked = client.delete(f"/api/alerts/{approved_id}", headers=_auth(owner))
        assert blocked.status_code == 403
        assert _error(blocked)["message"] == "Cannot cancel an alert that is already approved or active"

        resp = client.delete(f"/api/alerts/{pending_id}", headers=_auth(owner))
        assert resp.json() == {"message": "Alert deleted successfully"}
        assert client.delete(f"/api/alerts/{approved_id}", headers=_auth(admin)).status_code == 200
        assert client.delete(f"/api/alerts/{approved_id}", headers=_auth(admin)).status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Support
# ═══════════════════════════════════════════════════════════════════════════

class TestSupport:

    def test_ticket_lifecycle(self, client, db):
        member = _make_user(db, "community", name="Member")
        admin = _make_user(db, "admin")

        resp = client.post("/api/support", json={
            "message": "Handpump broken", "type": "water",
        }, headers=_auth(member))
        assert resp.status_code == 201
        ticket = resp.json()
        assert ticket["status"] == "open"
        assert ticket["userId"]["name"] == "Member"
        assert [m["text"] for m in ticket["messages"]] == ["Handpump broken"]

        reply = client.post(f"/api/support/{ticket['id']}/messages", json={
            "text": "Team dispatched",
        }, headers=_auth(admin))
        assert reply.status_code == 200
        assert [m["senderId"] for m in reply.json()["messages"]] == [member["id"], admin["id"]]

        resolved = client.patch(f"/api/support/{ticket['id']}", json={
            "status": "resolved",
        }, headers=_auth(admin))
        assert resolved.status_code == 200
        assert resolved.json()["status"] == "resolved"
        assert resolved.json()["resolvedBy"] == admin["id"]

    def test_category_depends_on_role(self, client, db):
        member = _make_user(db, "community")
        worker = _make_user(db, "health_worker")
        body = {"message": "Need ORS", "type": "supplies"}
        assert client.post("/api/support", json=body, headers=_auth(member)).status_code == 400
        assert client.post("/api/support", json=body, headers=_auth(worker)).status_code == 201

    def test_admins_do_not_open_tickets(self, client, db):
        admin = _make_user(db, "admin")
        resp = client.post("/api/support", json={"message": "m", "type": "other"}, headers=_auth(admin))
        assert resp.status_code == 403

    def test_visibility_and_reply_rights(self, client, db):
        owner = _make_user(db, "community")
        stranger = _make_user(db, "community")
        admin = _make_user(db, "admin")
        ticket_id = client.post("/api/support", json={
            "message": "Drain blocked", "type": "sanitation",
        }, headers=_auth(owner)).json()["id"]

        assert len(client.get("/api/support", headers=_auth(owner)).json()) == 1
        assert client.get("/api/support", headers=_auth(stranger)).json() == []
        assert len(client.get("/api/support", headers=_auth(admin)).json()) == 1

        denied = client.post(f"/api/support/{ticket_id}/messages", json={"text": "hi"},
                             headers=_auth(stranger))
        assert denied.status_code == 403
        assert client.patch(f"/api/support/{ticket_id}", json={"status": "in_progress"},
                            headers=_auth(owner)).status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# Server errors & request log
# ═══════════════════════════════════════════════════════════════════════════

def _fail_writes(schema, items):
    raise StorageError(schema.name, "disk full", path=f"/srv/data/{schema.name}.json")


class TestServerErrors:

    @pytest.fixture
    def faulty_client(self, db):
        app = create_app(database=db)

        @app.get("/_fault/value")
        async def value_fault():
            raise ValueError("bad arithmetic in handler")

        @app.get("/_fault/record")
        async def record_fault():
            raise RecordValidationError("Report", "waterSource", "must be one of [...]")

        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client

    def test_storage_failure_hides_details(self, client, db, monkeypatch):
        monkeypatch.setattr(settings, "DEBUG", False)
        monkeypatch.setattr(db, "_save", _fail_writes)
        resp = client.post("/api/auth/register", json={
            "name": "Asha", "email": "asha@example.org", "password": PASSWORD,
        })
        assert resp.status_code == 500
        err = _error(resp)
        assert err["code"] == "STORAGE_ERROR"
        assert err["message"] == "Internal server error"
        assert "details" not in err
        assert "/srv/data" not in resp.text

    def test_debug_echoes_message_but_not_details(self, client, db, monkeypatch):
        monkeypatch.setattr(settings, "DEBUG", True)
        monkeypatch.setattr(db, "_save", _fail_writes)
        resp = client.post("/api/auth/register", json={
            "name": "Asha", "email": "asha@example.org", "password": PASSWORD,
        })
        err = _error(resp)
        assert "disk full" in err["message"]
        assert "details" not in err

    def test_stray_value_error_is_internal(self, faulty_client, monkeypatch):
        monkeypatch.setattr(settings, "DEBUG", False)
        resp = faulty_client.get("/_fault/value")
        assert resp.status_code == 500
        err = _error(resp)
        assert err["code"] == "INTERNAL_ERROR"
        assert err["message"] == "Internal server error"
        assert "details" not in err

    def test_record_validation_error_is_client_error(self, faulty_client):
        resp = faulty_client.get("/_fault/record")
        assert resp.status_code == 400
        err = _error(resp)
        assert err["code"] == "VALIDATION_ERROR"
        assert err["details"] == {"field": "waterSource", "entity": "Report"}


class TestRequestLog:

    @staticmethod
    def _entries(caplog, path):
        return [
            r for r in caplog.records
            if r.name == "backend.app.core.middleware" and r.endpoint == path
        ]

    def test_authenticated_request_logs_user_and_backend(self, client, db, caplog):
        user = _make_user(db)
        with caplog.at_level(logging.INFO, logger="backend.app.core.middleware"):
            resp = client.get("/api/auth/me", headers=_auth(user))
        assert resp.status_code == 200
        (entry,) = self._entries(caplog, "/api/auth/me")
        assert entry.user_id == user["id"]
        assert entry.backend == "file"
        assert entry.status_code == 200
        assert user["id"] in entry.getMessage()

    def test_anonymous_request_has_no_user(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="backend.app.core.middleware"):
            resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        (entry,) = self._entries(caplog, "/api/auth/me")
        assert entry.user_id is None
        assert entry.backend == "file"
        assert entry.levelno == logging.WARNING

    def test_generated_request_id(self, client):
        resp = client.get("/")
        assert len(resp.headers["x-request-id"]) == 16
        assert resp.headers["x-process-time"].endswith("ms")


# ═══════════════════════════════════════════════════════════════════════════
# Root & health
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_root(self, client):
        data = client.get("/").json()
        assert "alerts" in data["modules"]

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_deep_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        components = {c["name"]: c for c in resp.json()["components"]}
        assert set(components) == {"storage", "email", "disk_space"}
        assert components["storage"]["details"]["backend"] == "file"

    def test_request_id_header(self, client):
        resp = client.get("/health/live", headers={"X-Request-ID": "abc123"})
        assert resp.headers["x-request-id"] == "abc123"


class TestEntryPoint:

    def test_run_uses_server_settings(self, monkeypatch):
        calls = []
        monkeypatch.setattr(app_main.uvicorn, "run", lambda *a, **kw: calls.append((a, kw)))
        monkeypatch.setattr(settings, "HOST", "127.0.0.1")
        monkeypatch.setattr(settings, "PORT", 8081)
        monkeypatch.setattr(settings, "RELOAD", False)

        app_main.run()

        ((args, kwargs),) = calls
        assert args == ("backend.app.main:app",)
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 8081
        assert kwargs["reload"] is False
