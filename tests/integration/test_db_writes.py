"""Integration tests for crew_migrate.db_update against PostgreSQL."""

from __future__ import annotations

from crew_migrate.db_update import ProfileUpdate, update_links, update_profile


class TestUpdateProfile:
    def test_writes_blob_and_status(self, db_conn, seed):
        conn, _ = db_conn
        seed.freelancer(77, "jane-doe", DisplayName="Jane Doe")

        result = update_profile(conn, ProfileUpdate(77, {"PhotoBlobID": "P000077", "PhotoStatusID": 2}))
        conn.commit()

        assert result.success
        row = seed.profile(77)
        assert row["photoblobid"] == "P000077"
        assert row["photostatusid"] == 2
        assert row["cvblobid"] is None
        assert row["displayname"] == "Jane Doe"

    def test_unknown_id_affects_nothing(self, db_conn, seed):
        conn, _ = db_conn
        result = update_profile(conn, ProfileUpdate(404, {"FreelancerBio": "x"}))
        conn.commit()
        assert not result.success
        assert result.error == "No rows affected"
        assert conn.execute("SELECT count(*) FROM tblFreelancerWebsiteData").fetchone()[0] == 0

    def test_failure_leaves_transaction_usable(self, db_conn, seed):
        conn, _ = db_conn
        seed.freelancer(5, "a")
        seed.freelancer(6, "b")

        bad = update_profile(conn, ProfileUpdate(5, {"PhotoStatusID": 9}))
        good = update_profile(conn, ProfileUpdate(6, {"FreelancerBio": "ok"}))
        conn.commit()

        assert not bad.success
        assert good.success
        assert seed.profile(5)["photostatusid"] == 0
        assert seed.profile(6)["freelancerbio"] == "ok"


class TestUpdateLinks:
    def test_existing_link_updated(self, db_conn, seed):
        conn, _ = db_conn
        seed.freelancer(42, "jo")
        seed.link(42, "Website", "https://old.example")

        result = update_links(conn, 42, {"website": "https://new.example"}, "Jo")
        conn.commit()

        assert result.updated == 1
        assert result.missing_links == []
        assert seed.links(42) == {"Website": "https://new.example"}

    def test_absent_link_reported_never_inserted(self, db_conn, seed):
        conn, _ = db_conn
        seed.freelancer(42, "jo")
        seed.link(42, "Website", "https://old.example")

        result = update_links(
            conn, 42, {"website": "https://new.example", "instagram": "https://ig.example/jo"}, "Jo"
        )
        conn.commit()

        assert result.success
        assert [(m.link_name, m.link_url) for m in result.missing_links] == [
            ("Instagram", "https://ig.example/jo")
        ]
        assert seed.links(42) == {"Website": "https://new.example"}

    def test_no_link_rows_at_all(self, db_conn, seed):
        conn, _ = db_conn
        seed.freelancer(42, "jo")
        result = update_links(conn, 42, {"website": "https://a.example"}, "Jo")
        conn.commit()
        assert len(result.missing_links) == 1
        count = conn.execute("SELECT count(*) FROM tblFreelancerWebsiteDataLinks").fetchone()[0]
        assert count == 0
