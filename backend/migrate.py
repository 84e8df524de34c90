# backend/migrate.py
# Database migration module for PostgreSQL and SQLite
# Run: python -m backend.migrate

import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from backend import db


# Shared DDL: plain TEXT ids/timestamps and INTEGER flags keep the schema
# identical on both backends. Timestamps are ISO-8601 UTC strings.
TABLES = [
    (
        "principals",
        """
        CREATE TABLE IF NOT EXISTS principals (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """,
    ),
    (
        "projects",
        """
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            owner_id TEXT NOT NULL,
            archived INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
    ),
    (
        "memberships",
        """
        CREATE TABLE IF NOT EXISTS memberships (
            user_id TEXT NOT NULL REFERENCES principals (id),
            project_id TEXT NOT NULL REFERENCES projects (id) ON DELETE CASCADE,
            role TEXT NOT NULL CHECK (role IN ('owner', 'collaborator', 'member', 'viewer')),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (user_id, project_id)
        )
        """,
    ),
    (
        "tasks",
        """
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            project_id TEXT REFERENCES projects (id) ON DELETE CASCADE,
            creator_id TEXT NOT NULL,
            assignee_id TEXT,
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'todo'
                CHECK (status IN ('todo', 'in_progress', 'review', 'done')),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
    ),
    (
        "invitations",
        """
        CREATE TABLE IF NOT EXISTS invitations (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects (id) ON DELETE CASCADE,
            email TEXT NOT NULL,
            role TEXT NOT NULL CHECK (role IN ('collaborator', 'member', 'viewer')),
            token TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'accepted', 'expired', 'revoked')),
            expires_at TEXT NOT NULL,
            invited_by_user_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            accepted_at TEXT,
            accepted_by_user_id TEXT
        )
        """,
    ),
]

INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_principals_email_unique ON principals(email)",
    "CREATE INDEX IF NOT EXISTS idx_memberships_project_role ON memberships(project_id, role)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_project_id ON tasks(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_creator_id ON tasks(creator_id)",
    # Second line of defense behind the invitation manager's own checks
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_invitations_token_unique ON invitations(token)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_invitations_one_pending "
    "ON invitations(project_id, email) WHERE status = 'pending'",
    "CREATE INDEX IF NOT EXISTS idx_invitations_email_status ON invitations(email, status)",
]


def run_migrations() -> None:
    """
    Run all database migrations (idempotent).
    Creates tables and indexes if missing. Safe to run multiple times.
    """
    print(f"[MIGRATE] Running {'PostgreSQL' if db.IS_POSTGRES else 'SQLite'} migrations...")

    with db.transaction() as conn:
        for name, ddl in TABLES:
            db.execute_query(conn, ddl)
            print(f"[MIGRATE] Ensured table {name}")

        for ddl in INDEXES:
            db.execute_query(conn, ddl)
        print(f"[MIGRATE] Ensured {len(INDEXES)} indexes")

    print("[MIGRATE] All migrations complete!")


if __name__ == "__main__":
    run_migrations()
