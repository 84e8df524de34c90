"""
Shared pytest fixtures: every test gets its own temp-file SQLite database.

Run:
    pytest backend -v
"""

import pytest

from backend import db
from backend.migrate import run_migrations
from backend.projects import create_project
from backend.store import upsert_principal
from backend.memberships import add_member
from backend.models import utcnow


@pytest.fixture
def fresh_db(tmp_path):
    """Point the storage layer at an empty, migrated SQLite file."""
    db.configure_database(database_path=str(tmp_path / "test.db"), database_url="")
    run_migrations()


def register(principal_id: str, email: str) -> None:
    """Record a principal the way the auth layer does on first request."""
    with db.transaction() as conn:
        upsert_principal(conn, principal_id, email, utcnow())


@pytest.fixture
def register_principal(fresh_db):
    return register


@pytest.fixture
def team(fresh_db):
    """
    One project with a principal in every role, plus an outsider.

    owner, collab, member, viewer hold the role of the same name;
    outsider has no membership.
    """
    people = {
        "owner": "owner@example.com",
        "collab": "collab@example.com",
        "member": "member@example.com",
        "member2": "member2@example.com",
        "viewer": "viewer@example.com",
        "outsider": "outsider@example.com",
    }
    for pid, email in people.items():
        register(pid, email)

    project = create_project("owner", people["owner"], "Apollo")
    add_member(project.id, "collab", "collaborator", "owner")
    add_member(project.id, "member", "member", "owner")
    add_member(project.id, "member2", "member", "owner")
    add_member(project.id, "viewer", "viewer", "owner")
    return project
