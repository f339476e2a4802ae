"""Integration test fixtures.

Applies the freelancer schema against an ephemeral PostgreSQL database
provided by pytest-postgresql before each integration test.
"""

from __future__ import annotations

from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_freelancer_tables.sql",
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (connection, dsn) with the schema applied.

    Function scope gives every test a fresh schema.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()


class Seeder:
    """Insert fixture rows and commit them so other connections see them."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn

    def freelancer(self, freelancer_id: int, slug: str | None, **columns) -> None:
        values = {"FreelancerID": freelancer_id, "Slug": slug, **columns}
        names = ", ".join(values)
        marks = ", ".join(["%s"] * len(values))
        self.conn.execute(
            f"INSERT INTO tblFreelancerWebsiteData ({names}) VALUES ({marks})",
            list(values.values()),
        )
        self.conn.commit()

    def link(self, freelancer_id: int, link_name: str, url: str | None = None) -> None:
        self.conn.execute(
            "INSERT INTO tblFreelancerWebsiteDataLinks (FreelancerID, LinkName, LinkURL) "
            "VALUES (%s, %s, %s)",
            (freelancer_id, link_name, url),
        )
        self.conn.commit()

    def profile(self, freelancer_id: int) -> dict:
        cur = self.conn.execute(
            "SELECT * FROM tblFreelancerWebsiteData WHERE FreelancerID = %s", (freelancer_id,)
        )
        row = cur.fetchone()
        names = [d.name for d in cur.description]
        self.conn.commit()
        return dict(zip(names, row)) if row else {}

    def links(self, freelancer_id: int) -> dict:
        rows = self.conn.execute(
            "SELECT LinkName, LinkURL FROM tblFreelancerWebsiteDataLinks WHERE FreelancerID = %s",
            (freelancer_id,),
        ).fetchall()
        self.conn.commit()
        return dict(rows)


@pytest.fixture
def seed(db_conn):
    conn, _ = db_conn
    return Seeder(conn)
