"""
backend/test_memberships.py

Membership Mutator tests.

Tests:
1. Project creation writes the owner membership
2. Last-owner invariant for removal and demotion, including concurrent calls
3. Owner pointer follows owner departures
4. Duplicate / unknown / unauthorized membership changes
5. Member list visibility

Run:
    pytest backend/test_memberships.py -v
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from backend import db, store
from backend.errors import Conflict, Forbidden, Invalid, NotFound
from backend.memberships import add_member, change_role, list_members, remove_member
from backend.models import ProjectRole
from backend.projects import create_project, delete_project, get_project
from backend.rbac import resolve_role


def _owner_ids(project_id):
    with db.get_db_connection() as conn:
        return store.list_owner_ids(conn, project_id)


def _membership_count(project_id, user_id):
    with db.get_db_connection() as conn:
        row = db.fetch_one(
            conn,
            "SELECT COUNT(*) AS n FROM memberships WHERE project_id = :p AND user_id = :u",
            {"p": project_id, "u": user_id},
        )
    return row["n"]


class TestProjectCreation:
    def test_creator_becomes_owner(self, register_principal):
        register_principal("olive", "olive@example.com")
        project = create_project("olive", "olive@example.com", "Roadmap")

        with db.get_db_connection() as conn:
            assert resolve_role(conn, "olive", project.id) == ProjectRole.owner
            membership = store.get_membership(conn, "olive", project.id)
        assert membership is not None
        assert membership.role == ProjectRole.owner
        assert project.owner_id == "olive"

    def test_creation_records_principal(self, fresh_db):
        project = create_project("newcomer", "NewComer@Example.com", "Side project")
        with db.get_db_connection() as conn:
            principal = store.get_principal(conn, "newcomer")
        assert principal.email == "newcomer@example.com"
        assert _owner_ids(project.id) == ["newcomer"]


class TestLastOwnerInvariant:
    def test_sole_owner_cannot_leave(self, team):
        with pytest.raises(Conflict):
            remove_member(team.id, "owner", "owner")
        assert _owner_ids(team.id) == ["owner"]

    def test_sole_owner_cannot_be_demoted(self, team):
        with pytest.raises(Conflict):
            change_role(team.id, "owner", ProjectRole.collaborator, "owner")
        assert _owner_ids(team.id) == ["owner"]

    def test_second_owner_allows_departure(self, team):
        change_role(team.id, "collab", ProjectRole.owner, "owner")
        remove_member(team.id, "owner", "owner")

        assert _owner_ids(team.id) == ["collab"]
        # owner_id pointer moved to the remaining owner
        assert get_project(team.id, "collab").owner_id == "collab"

    def test_demoting_pointer_owner_moves_pointer(self, team):
        change_role(team.id, "collab", ProjectRole.owner, "owner")
        change_role(team.id, "owner", ProjectRole.viewer, "collab")

        project = get_project(team.id, "collab")
        assert project.owner_id == "collab"
        with db.get_db_connection() as conn:
            assert resolve_role(conn, "owner", team.id) == ProjectRole.viewer

    def test_concurrent_self_removal_keeps_one_owner(self, team):
        change_role(team.id, "collab", ProjectRole.owner, "owner")
        assert sorted(_owner_ids(team.id)) == ["collab", "owner"]

        barrier = threading.Barrier(2)

        def leave(user_id):
            barrier.wait()
            try:
                remove_member(team.id, user_id, user_id)
                return "removed"
            except Conflict:
                return "conflict"

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(leave, ["owner", "collab"]))

        assert sorted(results) == ["conflict", "removed"]
        assert len(_owner_ids(team.id)) == 1

    def test_concurrent_demotions_keep_one_owner(self, team):
        change_role(team.id, "collab", ProjectRole.owner, "owner")
        barrier = threading.Barrier(2)

        def demote(args):
            caller, target = args
            barrier.wait()
            try:
                change_role(team.id, target, ProjectRole.member, caller)
                return "demoted"
            except (Conflict, Forbidden):
                return "rejected"

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(demote, [("owner", "collab"), ("collab", "owner")]))

        assert sorted(results) == ["demoted", "rejected"]
        assert len(_owner_ids(team.id)) == 1


class TestMembershipChanges:
    def test_add_existing_member_conflicts_without_duplicate(self, team):
        with pytest.raises(Conflict):
            add_member(team.id, "member", ProjectRole.viewer, "owner")
        assert _membership_count(team.id, "member") == 1

    def test_add_unknown_principal(self, team):
        with pytest.raises(NotFound):
            add_member(team.id, "ghost", ProjectRole.member, "owner")

    def test_collaborator_cannot_manage_members(self, team):
        with pytest.raises(Forbidden):
            add_member(team.id, "outsider", ProjectRole.member, "collab")
        with pytest.raises(Forbidden):
            remove_member(team.id, "member", "collab")
        with pytest.raises(Forbidden):
            change_role(team.id, "member", ProjectRole.viewer, "collab")

    def test_member_can_leave(self, team):
        remove_member(team.id, "member", "member")
        with db.get_db_connection() as conn:
            assert resolve_role(conn, "member", team.id) is None

    def test_remove_non_member(self, team):
        with pytest.raises(NotFound):
            remove_member(team.id, "outsider", "owner")

    def test_unknown_project(self, team):
        with pytest.raises(NotFound):
            add_member("missing", "outsider", ProjectRole.member, "owner")

    def test_invalid_role(self, team):
        with pytest.raises(Invalid):
            change_role(team.id, "member", "admin", "owner")

    def test_change_role_is_noop_when_unchanged(self, team):
        membership = change_role(team.id, "viewer", ProjectRole.viewer, "owner")
        assert membership.role == ProjectRole.viewer

    def test_delete_project_purges_memberships(self, team):
        delete_project(team.id, "owner")
        with db.get_db_connection() as conn:
            assert store.list_memberships(conn, team.id) == []
            assert store.get_project(conn, team.id) is None


class TestMemberList:
    def test_owner_sees_everyone(self, team):
        ids = {m.user_id for m in list_members(team.id, "owner")}
        assert ids == {"owner", "collab", "member", "member2", "viewer"}

    def test_member_sees_only_themself(self, team):
        members = list_members(team.id, "member")
        assert [m.user_id for m in members] == ["member"]

    def test_outsider_sees_nothing(self, team):
        assert list_members(team.id, "outsider") == []

    def test_listing_includes_email(self, team):
        emails = {m.user_id: m.email for m in list_members(team.id, "viewer")}
        assert emails["member2"] == "member2@example.com"
