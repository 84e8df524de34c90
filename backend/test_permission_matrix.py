"""
backend/test_permission_matrix.py

Exhaustive tests for the Permission Evaluator.

Tests:
1. Every (role, project action) pair matches the decision table
2. Every (role, task action) pair matches, for involved and uninvolved tasks
3. Member ownership rule (edit follows creator/assignee; delete never)
4. Personal tasks are creator-only
5. Fail-closed behavior (broken loader, unknown action, missing resource)
6. Role resolution fallbacks and strict role parsing
7. Advisory permission snapshot

Run:
    pytest backend/test_permission_matrix.py -v
"""

import pytest

from backend import db
from backend.authz import ResourceRef, can, permission_snapshot, require_permission
from backend.errors import ACCESS_DENIED, Forbidden
from backend.models import ProjectRole, Task
from backend.rbac import ProjectAction, TaskAction, parse_role, resolve_role


# principal id in the `team` fixture -> role it holds
PRINCIPALS = {
    "owner": ProjectRole.owner,
    "collab": ProjectRole.collaborator,
    "member": ProjectRole.member,
    "viewer": ProjectRole.viewer,
    "outsider": None,
}

P = ProjectAction
T = TaskAction

EXPECTED_PROJECT = {
    "owner": {P.VIEW, P.EDIT, P.ARCHIVE, P.DELETE, P.INVITE_USERS, P.MANAGE_MEMBERS},
    "collab": {P.VIEW, P.EDIT},
    "member": {P.VIEW},
    "viewer": {P.VIEW},
    "outsider": set(),
}

# Task created by someone else and not assigned to the principal
EXPECTED_TASK_UNINVOLVED = {
    "owner": set(TaskAction),
    "collab": set(TaskAction),
    "member": set(),
    "viewer": {T.VIEW},
    "outsider": set(),
}

# Task created by the principal
EXPECTED_TASK_INVOLVED = {
    "owner": set(TaskAction),
    "collab": set(TaskAction),
    "member": {T.VIEW, T.CREATE, T.EDIT},
    "viewer": {T.VIEW},
    "outsider": set(),
}


def _task(project_id, creator_id, assignee_id=None, task_id="t-1"):
    return Task(id=task_id, project_id=project_id, creator_id=creator_id, assignee_id=assignee_id, title="Write docs")


class TestDecisionTable:
    """Full role x action enumeration."""

    @pytest.mark.parametrize("principal", list(PRINCIPALS))
    @pytest.mark.parametrize("action", list(ProjectAction))
    def test_project_actions(self, team, principal, action):
        with db.get_db_connection() as conn:
            assert can(conn, principal, action, team) == (action in EXPECTED_PROJECT[principal])

    @pytest.mark.parametrize("principal", list(PRINCIPALS))
    @pytest.mark.parametrize("action", list(TaskAction))
    def test_task_actions_on_someone_elses_task(self, team, principal, action):
        task = _task(team.id, creator_id="somebody-else")
        with db.get_db_connection() as conn:
            assert can(conn, principal, action, task) == (action in EXPECTED_TASK_UNINVOLVED[principal])

    @pytest.mark.parametrize("principal", list(PRINCIPALS))
    @pytest.mark.parametrize("action", list(TaskAction))
    def test_task_actions_on_own_task(self, team, principal, action):
        task = _task(team.id, creator_id=principal)
        with db.get_db_connection() as conn:
            assert can(conn, principal, action, task) == (action in EXPECTED_TASK_INVOLVED[principal])

    def test_table_is_complete(self):
        assert len(ProjectRole) == 4
        assert len(ProjectAction) == 6
        assert len(TaskAction) == 6
        roles_in_table = {r for r in PRINCIPALS.values() if r is not None}
        assert roles_in_table == set(ProjectRole)

    def test_string_actions_resolve_like_enums(self, team):
        with db.get_db_connection() as conn:
            assert can(conn, "collab", "edit", team) is True
            assert can(conn, "collab", "manageMembers", team) is False
            assert can(conn, "owner", "inviteUsers", team) is True
            # task actions evaluated against the project
            assert can(conn, "collab", "viewAll", team) is True
            assert can(conn, "viewer", "viewAll", team) is False
            assert can(conn, "member", "viewAll", team) is False


class TestMemberOwnershipRule:
    def test_edit_follows_creator(self, team):
        with db.get_db_connection() as conn:
            assert can(conn, "member", T.EDIT, _task(team.id, creator_id="member")) is True
            assert can(conn, "member", T.EDIT, _task(team.id, creator_id="member2")) is False

    def test_edit_follows_assignee(self, team):
        assigned = _task(team.id, creator_id="owner", assignee_id="member")
        with db.get_db_connection() as conn:
            assert can(conn, "member", T.VIEW, assigned) is True
            assert can(conn, "member", T.EDIT, assigned) is True

    def test_delete_never_allowed(self, team):
        with db.get_db_connection() as conn:
            for task in (
                _task(team.id, creator_id="member"),
                _task(team.id, creator_id="owner", assignee_id="member"),
                _task(team.id, creator_id="member2"),
            ):
                assert can(conn, "member", T.DELETE, task) is False

    def test_change_assignee_never_allowed(self, team):
        with db.get_db_connection() as conn:
            assert can(conn, "member", T.CHANGE_ASSIGNEE, _task(team.id, creator_id="member")) is False

    def test_create_in_project(self, team):
        with db.get_db_connection() as conn:
            assert can(conn, "member", T.CREATE, team) is True
            assert can(conn, "viewer", T.CREATE, team) is False
            assert can(conn, "outsider", T.CREATE, team) is False


class TestPersonalTasks:
    def test_creator_has_every_task_action(self, fresh_db):
        task = _task(None, creator_id="alice")
        with db.get_db_connection() as conn:
            for action in TaskAction:
                assert can(conn, "alice", action, task) is True

    def test_nobody_else_gets_in(self, team):
        task = _task(None, creator_id="member")
        with db.get_db_connection() as conn:
            for principal in ("owner", "collab", "viewer", "outsider"):
                for action in TaskAction:
                    assert can(conn, principal, action, task) is False


class TestFailClosed:
    def test_loader_that_raises_denies(self, team):
        def broken(_id):
            raise RuntimeError("storage unavailable")

        with db.get_db_connection() as conn:
            assert can(conn, "owner", P.VIEW, ResourceRef("project", team.id), loader=broken) is False

    def test_loader_returning_none_denies(self, team):
        with db.get_db_connection() as conn:
            assert can(conn, "owner", P.VIEW, ResourceRef("project", team.id), loader=lambda _id: None) is False

    def test_loader_returning_wrong_type_denies(self, team):
        task = _task(team.id, creator_id="owner")
        with db.get_db_connection() as conn:
            assert can(conn, "owner", P.VIEW, ResourceRef("project", team.id), loader=lambda _id: task) is False

    def test_default_loader(self, team):
        with db.get_db_connection() as conn:
            assert can(conn, "collab", P.EDIT, ResourceRef("project", team.id)) is True
            assert can(conn, "collab", P.EDIT, ResourceRef("project", "no-such-project")) is False
            assert can(conn, "owner", T.VIEW, ResourceRef("task", "no-such-task")) is False

    def test_unknown_action_denies(self, team):
        with db.get_db_connection() as conn:
            assert can(conn, "owner", "superuser", team) is False
            assert can(conn, "owner", P.VIEW, _task(team.id, creator_id="owner")) is False

    def test_missing_principal_denies(self, team):
        with db.get_db_connection() as conn:
            assert can(conn, "", P.VIEW, team) is False
            assert can(conn, None, P.VIEW, team) is False

    def test_denial_message_is_the_same_for_no_role_and_low_role(self, team):
        messages = []
        with db.get_db_connection() as conn:
            for principal in ("outsider", "member"):
                with pytest.raises(Forbidden) as exc:
                    require_permission(conn, principal, P.MANAGE_MEMBERS, team)
                messages.append(exc.value.detail)
        assert messages == [ACCESS_DENIED, ACCESS_DENIED]


class TestRoleResolution:
    def test_roles_resolve_from_membership(self, team):
        with db.get_db_connection() as conn:
            for principal, role in PRINCIPALS.items():
                assert resolve_role(conn, principal, team.id) == role

    def test_owner_fallback_when_membership_row_missing(self, team):
        with db.transaction() as conn:
            db.execute_query(
                conn,
                "DELETE FROM memberships WHERE user_id = :u AND project_id = :p",
                {"u": "owner", "p": team.id},
            )
        with db.get_db_connection() as conn:
            assert resolve_role(conn, "owner", team.id) == ProjectRole.owner
            assert can(conn, "owner", P.DELETE, team) is True

    def test_unknown_role_strings_are_no_role(self):
        assert parse_role("admin") is None
        assert parse_role("") is None
        assert parse_role(None) is None
        assert parse_role("viewer") == ProjectRole.viewer


class TestPermissionSnapshot:
    def test_member_snapshot(self):
        snap = permission_snapshot(ProjectRole.member)
        assert snap["role"] == "member"
        assert snap["advisory"] is True
        assert snap["project"] == {
            "view": True, "edit": False, "archive": False,
            "delete": False, "inviteUsers": False, "manageMembers": False,
        }
        assert snap["task"] == {
            "view": "own", "create": "own", "edit": "own",
            "delete": "none", "viewAll": "none", "changeAssignee": "none",
        }

    def test_snapshot_agrees_with_evaluator(self, team):
        with db.get_db_connection() as conn:
            for principal, role in PRINCIPALS.items():
                snap = permission_snapshot(role)
                for action in ProjectAction:
                    assert snap["project"][action.value] == can(conn, principal, action, team)

    def test_no_role_snapshot_grants_nothing(self):
        snap = permission_snapshot(None)
        assert snap["role"] is None
        assert not any(snap["project"].values())
        assert set(snap["task"].values()) == {"none"}
