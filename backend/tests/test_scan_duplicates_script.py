"""
重複スキャンスクリプトのテスト
"""

from backend.listing_dedup.models import GlobalDuplicateGroup, DuplicateDetectionLog
from backend.scripts.scan_duplicates import run_scan


class TestRunScan:

    def test_dry_run_registers_nothing(self, db_session, make_property):
        make_property(title="Bright flat")
        make_property(title="Bright flat")

        result = run_scan(db_session, user_id="user-1", dry_run=True)

        assert result["duplicates_found"] == 1
        assert result["groups_created"] == 0
        assert db_session.query(GlobalDuplicateGroup).count() == 0

    def test_global_scan_registers_groups(self, db_session, make_property):
        make_property(title="Bright flat")
        make_property(user_id="user-2", title="Bright flat")

        result = run_scan(db_session)

        assert result["groups_created"] == 1
        log = db_session.query(DuplicateDetectionLog).one()
        assert log.admin_user_id == "system"
        assert log.details["scan_trigger"] == "cli"
        assert log.details["user_id"] is None
