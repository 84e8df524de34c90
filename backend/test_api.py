"""
backend/test_api.py

HTTP adapter tests: status mapping, token handling and the invitation flow
end to end through FastAPI.

Tests:
1. Auth: missing/invalid bearer tokens, email claim binding
2. Core errors map to 400/403/404/409/410
3. Invitation flow: create -> lookup -> accept, plus revoke/resend
4. Tokens never appear in listings
5. Notifier failure still returns 201

Run:
    pytest backend/test_api.py -v
"""

import time
from datetime import timedelta

import jwt
import pytest
from fastapi.testclient import TestClient

from backend.config import ALGORITHM, SECRET_KEY
from backend.invitations import create_invitation
from backend.main import app
from backend.models import utcnow
from backend.notifier import NotificationError, Notifier, get_notifier


def generate_test_token(principal_id: str, email: str) -> str:
    """Generate a valid JWT token for testing."""
    payload = {
        "sub": principal_id,
        "email": email,
        "exp": int(time.time()) + 3600,
        "iat": int(time.time()),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def auth(principal_id: str, email: str) -> dict:
    return {"Authorization": f"Bearer {generate_test_token(principal_id, email)}"}


OWNER = auth("olive", "olive@example.com")
MEMBER = auth("max", "max@example.com")
OUTSIDER = auth("oscar", "oscar@example.com")


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def deliver(self, msg):
        self.sent.append(msg)


class BrokenNotifier(Notifier):
    def deliver(self, msg):
        raise NotificationError("SMTP relay refused connection")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(fresh_db, notifier):
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def project(client):
    resp = client.post("/projects", json={"name": "Apollo", "description": "Moonshot"}, headers=OWNER)
    assert resp.status_code == 201
    return resp.json()


def join_as_member(client, project_id, headers=MEMBER, email="max@example.com", role="member"):
    resp = client.post(f"/projects/{project_id}/invitations", json={"email": email, "role": role}, headers=OWNER)
    assert resp.status_code == 201
    token = resp.json()["token"]
    resp = client.post(f"/invitations/{token}/accept", headers=headers)
    assert resp.status_code == 200
    return token


class TestAuth:
    def test_health_is_public(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_missing_token(self, client):
        assert client.get("/projects").status_code in (401, 403)

    def test_invalid_token(self, client):
        resp = client.get("/projects", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_token_without_email_claim(self, client):
        token = jwt.encode({"sub": "nobody", "exp": int(time.time()) + 60}, SECRET_KEY, algorithm=ALGORITHM)
        resp = client.get("/projects", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_email_linked_to_other_principal(self, client, project):
        resp = client.get("/projects", headers=auth("impostor", "olive@example.com"))
        assert resp.status_code == 409


class TestProjects:
    def test_creator_is_owner(self, client, project):
        assert project["owner_id"] == "olive"
        perms = client.get(f"/projects/{project['id']}/permissions", headers=OWNER).json()
        assert perms["role"] == "owner"
        assert perms["advisory"] is True
        assert all(perms["project"].values())

    def test_listing_only_shows_memberships(self, client, project):
        assert [p["id"] for p in client.get("/projects", headers=OWNER).json()] == [project["id"]]
        assert client.get("/projects", headers=OUTSIDER).json() == []

    def test_outsider_and_unknown_project(self, client, project):
        assert client.get(f"/projects/{project['id']}", headers=OUTSIDER).status_code == 403
        assert client.get("/projects/does-not-exist", headers=OWNER).status_code == 404
        assert client.get(f"/projects/{project['id']}/members", headers=OUTSIDER).status_code == 403

    def test_denials_look_identical(self, client, project):
        join_as_member(client, project["id"])
        no_role = client.post(f"/projects/{project['id']}/archive", headers=OUTSIDER)
        low_role = client.post(f"/projects/{project['id']}/archive", headers=MEMBER)
        assert no_role.status_code == low_role.status_code == 403
        assert no_role.json() == low_role.json()

    def test_archive_and_restore(self, client, project):
        archived = client.post(f"/projects/{project['id']}/archive", headers=OWNER).json()
        assert archived["archived"] is True
        active = client.get("/projects", params={"include_archived": False}, headers=OWNER).json()
        assert active == []
        restored = client.post(f"/projects/{project['id']}/restore", headers=OWNER).json()
        assert restored["archived"] is False

    def test_update_and_delete(self, client, project):
        resp = client.patch(f"/projects/{project['id']}", json={"name": "Apollo 11"}, headers=OWNER)
        assert resp.json()["name"] == "Apollo 11"
        assert client.delete(f"/projects/{project['id']}", headers=OWNER).status_code == 204
        assert client.get(f"/projects/{project['id']}", headers=OWNER).status_code == 404

    def test_blank_name_rejected(self, client):
        assert client.post("/projects", json={"name": "   "}, headers=OWNER).status_code == 422


class TestMembers:
    def test_last_owner_cannot_leave(self, client, project):
        resp = client.delete(f"/projects/{project['id']}/members/olive", headers=OWNER)
        assert resp.status_code == 409
        assert "owner" in resp.json()["detail"]

    def test_member_sees_only_themself(self, client, project):
        join_as_member(client, project["id"])
        members = client.get(f"/projects/{project['id']}/members", headers=MEMBER).json()
        assert [m["user_id"] for m in members] == ["max"]
        everyone = client.get(f"/projects/{project['id']}/members", headers=OWNER).json()
        assert {m["user_id"] for m in everyone} == {"olive", "max"}

    def test_change_role(self, client, project):
        join_as_member(client, project["id"])
        resp = client.patch(f"/projects/{project['id']}/members/max", json={"role": "viewer"}, headers=OWNER)
        assert resp.status_code == 200
        assert resp.json()["role"] == "viewer"

    def test_add_known_principal(self, client, project):
        client.get("/projects", headers=OUTSIDER)  # first request records the principal
        resp = client.post(
            f"/projects/{project['id']}/members", json={"user_id": "oscar", "role": "collaborator"}, headers=OWNER
        )
        assert resp.status_code == 201
        assert resp.json()["email"] == "oscar@example.com"


class TestInvitationFlow:
    def test_create_lookup_accept(self, client, project, notifier):
        resp = client.post(
            f"/projects/{project['id']}/invitations", json={"email": "Max@Example.com", "role": "member"}, headers=OWNER
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["email"] == "max@example.com"
        assert body["status"] == "pending"
        assert len(body["token"]) == 64
        assert body["link"].endswith(f"/invite/{body['token']}")
        assert body["email_sent"] is True
        assert len(notifier.sent) == 1
        assert notifier.sent[0]["To"] == "max@example.com"

        lookup = client.get(f"/invitations/token/{body['token']}")
        assert lookup.status_code == 200
        assert lookup.json()["project_name"] == "Apollo"
        assert "token" not in lookup.json()

        accepted = client.post(f"/invitations/{body['token']}/accept", headers=MEMBER)
        assert accepted.status_code == 200
        assert accepted.json()["membership"]["role"] == "member"
        assert accepted.json()["already_member"] is False

        again = client.post(f"/invitations/{body['token']}/accept", headers=MEMBER)
        assert again.status_code == 200
        assert again.json()["already_member"] is True

        assert client.get(f"/invitations/token/{body['token']}").status_code == 409

    def test_duplicate_and_invalid_invites(self, client, project):
        url = f"/projects/{project['id']}/invitations"
        assert client.post(url, json={"email": "a@x.com", "role": "member"}, headers=OWNER).status_code == 201
        assert client.post(url, json={"email": "A@x.com", "role": "viewer"}, headers=OWNER).status_code == 409
        assert client.post(url, json={"email": "b@x.com", "role": "owner"}, headers=OWNER).status_code == 400
        assert client.post(url, json={"email": "b@x.com", "role": "admin"}, headers=OWNER).status_code == 422
        assert client.post(url, json={"email": "olive@example.com"}, headers=OWNER).status_code == 409

    def test_only_owner_invites(self, client, project):
        join_as_member(client, project["id"])
        resp = client.post(f"/projects/{project['id']}/invitations", json={"email": "a@x.com"}, headers=MEMBER)
        assert resp.status_code == 403
        assert client.get(f"/projects/{project['id']}/invitations", headers=MEMBER).status_code == 403

    def test_wrong_account_cannot_accept(self, client, project):
        resp = client.post(f"/projects/{project['id']}/invitations", json={"email": "max@example.com"}, headers=OWNER)
        token = resp.json()["token"]
        assert client.post(f"/invitations/{token}/accept", headers=OUTSIDER).status_code == 403
        assert client.get(f"/invitations/token/{token}").json()["status"] == "pending"

    def test_unknown_token(self, client):
        assert client.get(f"/invitations/token/{'0' * 64}").status_code == 404
        assert client.post(f"/invitations/{'0' * 64}/accept", headers=MEMBER).status_code == 404

    def test_expired_invitation(self, client, project):
        inv = create_invitation(project["id"], "max@example.com", "member", "olive", now=utcnow() - timedelta(hours=73))
        assert client.get(f"/invitations/token/{inv.token}").status_code == 410
        assert client.post(f"/invitations/{inv.token}/accept", headers=MEMBER).status_code == 410

    def test_listing_hides_tokens(self, client, project):
        client.post(f"/projects/{project['id']}/invitations", json={"email": "max@example.com"}, headers=OWNER)
        listing = client.get(f"/projects/{project['id']}/invitations", headers=OWNER).json()
        assert listing["total"] == 1
        assert "token" not in listing["items"][0]

        mine = client.get("/invitations/mine", headers=MEMBER).json()
        assert mine["total"] == 1
        assert mine["items"][0]["project_name"] == "Apollo"
        assert "token" not in mine["items"][0]

    def test_revoke_then_accept(self, client, project):
        resp = client.post(f"/projects/{project['id']}/invitations", json={"email": "max@example.com"}, headers=OWNER)
        inv = resp.json()
        assert client.delete(f"/invitations/{inv['id']}", headers=OWNER).status_code == 204
        assert client.delete(f"/invitations/{inv['id']}", headers=OWNER).status_code == 409
        assert client.post(f"/invitations/{inv['token']}/accept", headers=MEMBER).status_code == 409

    def test_resend_rotates_token(self, client, project, notifier):
        resp = client.post(f"/projects/{project['id']}/invitations", json={"email": "max@example.com"}, headers=OWNER)
        old = resp.json()
        resent = client.post(f"/invitations/{old['id']}/resend", headers=OWNER)
        assert resent.status_code == 200
        assert resent.json()["token"] != old["token"]
        assert len(notifier.sent) == 2
        assert client.get(f"/invitations/token/{old['token']}").status_code == 404

    def test_notifier_failure_still_creates(self, client, project):
        app.dependency_overrides[get_notifier] = lambda: BrokenNotifier()
        resp = client.post(f"/projects/{project['id']}/invitations", json={"email": "max@example.com"}, headers=OWNER)
        assert resp.status_code == 201
        assert resp.json()["email_sent"] is False
        lookup = client.get(f"/invitations/token/{resp.json()['token']}")
        assert lookup.json()["status"] == "pending"


class TestTasks:
    def test_member_task_permissions(self, client, project):
        join_as_member(client, project["id"])
        resp = client.post(
            f"/projects/{project['id']}/tasks", json={"title": "Fix login", "assignee_id": "max"}, headers=MEMBER
        )
        assert resp.status_code == 201
        task = resp.json()

        patched = client.patch(f"/tasks/{task['id']}", json={"status": "done"}, headers=MEMBER)
        assert patched.json()["status"] == "done"
        assert patched.json()["assignee_id"] == "max"
        assert client.delete(f"/tasks/{task['id']}", headers=MEMBER).status_code == 403
        assert client.delete(f"/tasks/{task['id']}", headers=OWNER).status_code == 204

    def test_member_list_is_filtered(self, client, project):
        join_as_member(client, project["id"])
        client.post(f"/projects/{project['id']}/tasks", json={"title": "Owner only"}, headers=OWNER)
        client.post(f"/projects/{project['id']}/tasks", json={"title": "Mine"}, headers=MEMBER)

        member_view = client.get(f"/projects/{project['id']}/tasks", headers=MEMBER).json()
        assert [t["title"] for t in member_view] == ["Mine"]
        assert len(client.get(f"/projects/{project['id']}/tasks", headers=OWNER).json()) == 2
        assert client.get(f"/projects/{project['id']}/tasks", headers=OUTSIDER).status_code == 403

    def test_unassign_with_explicit_null(self, client, project):
        task = client.post(
            f"/projects/{project['id']}/tasks", json={"title": "Spec", "assignee_id": "olive"}, headers=OWNER
        ).json()
        patched = client.patch(f"/tasks/{task['id']}", json={"assignee_id": None}, headers=OWNER)
        assert patched.json()["assignee_id"] is None

    def test_personal_tasks(self, client):
        created = client.post("/tasks/personal", json={"title": "Buy milk"}, headers=MEMBER)
        assert created.status_code == 201
        assert created.json()["project_id"] is None
        assert [t["title"] for t in client.get("/tasks/personal", headers=MEMBER).json()] == ["Buy milk"]
        assert client.get(f"/tasks/{created.json()['id']}", headers=OUTSIDER).status_code == 403
