"""
重複グループのレビュー（統合・却下）のテスト
"""

import pytest
from sqlalchemy.exc import OperationalError

from backend.listing_dedup.exceptions import (
    AuthenticationRequiredError, DuplicateGroupNotFoundError, DuplicatePersistenceError,
    InvalidGroupStateError
)
from backend.listing_dedup.models import (
    Property, PropertyMedia, GlobalDuplicateGroup, GlobalDuplicateProperty,
    MergedPropertyTracking, DuplicateDetectionLog
)
from backend.listing_dedup.utils.duplicate_review import DuplicateReviewService
from backend.listing_dedup.utils.property_fingerprint import PropertyFingerprintHasher


def make_group(db, properties, confidence=90.0):
    """物件をメンバーとするレビュー待ちグループを作成"""
    group = GlobalDuplicateGroup(
        confidence_score=confidence,
        status="pending",
        pair_key=":".join(str(p.id) for p in sorted(properties, key=lambda p: p.id))
    )
    group.members = [
        GlobalDuplicateProperty(property_id=p.id, similarity_reasons=["Title similarity: 100.0%"])
        for p in properties
    ]
    db.add(group)
    db.commit()
    return group


class SpyHasher(PropertyFingerprintHasher):
    """呼び出し時点の物件数を記録するハッシャー"""

    def __init__(self, db):
        self.db = db
        self.property_counts = []

    def fingerprint(self, *args):
        self.property_counts.append(self.db.query(Property).count())
        return super().fingerprint(*args)


class FailingHasher(PropertyFingerprintHasher):

    def fingerprint(self, *args):
        raise OperationalError("SELECT generate_property_fingerprint", {}, Exception("function missing"))


@pytest.fixture
def three_duplicates(db_session, make_property):
    properties = [
        make_property(title="Bright flat", street_number="1",
                      media=[{"url": "https://example.com/a.jpg", "media_type": "image"}]),
        make_property(title="Bright flat", street_number="1"),
        make_property(title="Bright flat", street_number="1", monthly_rent=1250.0),
    ]
    group = make_group(db_session, properties)
    return group, properties


class TestMerge:

    def test_merge_deletes_non_target_members(self, db_session, three_duplicates):
        group, (target, second, third) = three_duplicates
        target_id, delete_ids = target.id, [second.id, third.id]

        result = DuplicateReviewService(db_session).merge(
            group.id, target_id, [target_id] + delete_ids, "admin", reason="same flat"
        )

        assert result["deleted_property_ids"] == delete_ids
        remaining = [p.id for p in db_session.query(Property).all()]
        assert remaining == [target_id]

        trackings = db_session.query(MergedPropertyTracking).order_by(MergedPropertyTracking.id).all()
        assert sorted(t.original_property_id for t in trackings) == delete_ids
        assert all(t.target_property_id == target_id for t in trackings)
        assert all(t.merged_by == "admin" for t in trackings)
        assert trackings[0].merge_reason == "same flat"
        assert trackings[0].fingerprint == result["fingerprints"][trackings[0].original_property_id]

        db_session.expire_all()
        merged = db_session.get(GlobalDuplicateGroup, group.id)
        assert merged.status == "merged"
        assert merged.reviewed_by == "admin"
        assert merged.reviewed_at is not None
        assert merged.merge_target_property_id == target_id

    def test_snapshot_keeps_original_data(self, db_session, three_duplicates):
        group, (target, second, third) = three_duplicates
        second_id = second.id

        DuplicateReviewService(db_session).merge(group.id, third.id, [third.id, second.id], "admin")

        tracking = db_session.query(MergedPropertyTracking).one()
        assert tracking.original_property_id == second_id
        assert tracking.original_data["title"] == "Bright flat"
        assert tracking.original_data["street_number"] == "1"

    def test_media_of_deleted_property_is_removed(self, db_session, three_duplicates):
        group, (first, second, _) = three_duplicates

        DuplicateReviewService(db_session).merge(group.id, second.id, [second.id, first.id], "admin")

        assert db_session.query(PropertyMedia).count() == 0
        tracking = db_session.query(MergedPropertyTracking).one()
        assert tracking.original_data["media"][0]["url"] == "https://example.com/a.jpg"

    def test_merged_properties_are_recognized_on_reimport(self, db_session, three_duplicates):
        group, properties = three_duplicates
        snapshots = [p.to_snapshot() for p in properties]
        service = DuplicateReviewService(db_session)

        # 統合前は未登録
        assert not any(service.is_previously_merged(s) for s in snapshots)

        service.merge(group.id, properties[0].id, [p.id for p in properties], "admin")

        # 統合先と同じ内容の物件も同じフィンガープリントになる
        assert all(service.is_previously_merged(s) for s in snapshots)
        assert service.find_merge_target(snapshots[2]) == snapshots[0]["id"]
        assert not service.is_previously_merged(dict(snapshots[1], title="Completely different"))
        assert service.find_merge_target(dict(snapshots[1], title="Completely different")) is None

    def test_fingerprints_are_taken_before_deletion(self, db_session, three_duplicates):
        group, properties = three_duplicates
        hasher = SpyHasher(db_session)

        DuplicateReviewService(db_session, hasher=hasher).merge(
            group.id, properties[0].id, [p.id for p in properties], "admin"
        )

        assert hasher.property_counts == [3, 3]
        assert db_session.query(Property).count() == 1

    def test_hasher_failure_rolls_back_everything(self, db_session, three_duplicates):
        group, properties = three_duplicates
        group_id = group.id

        with pytest.raises(DuplicatePersistenceError):
            DuplicateReviewService(db_session, hasher=FailingHasher()).merge(
                group_id, properties[0].id, [p.id for p in properties], "admin"
            )

        assert db_session.query(Property).count() == 3
        assert db_session.query(MergedPropertyTracking).count() == 0
        assert db_session.get(GlobalDuplicateGroup, group_id).status == "pending"
        assert db_session.query(DuplicateDetectionLog).count() == 0

    def test_audit_log_is_written(self, db_session, three_duplicates):
        group, properties = three_duplicates
        ids = [p.id for p in properties]

        DuplicateReviewService(db_session).merge(group.id, ids[0], ids, "admin", reason="dup")

        log = db_session.query(DuplicateDetectionLog).one()
        assert log.action_type == "merge"
        assert log.duplicate_group_id == group.id
        assert log.admin_user_id == "admin"
        assert log.affected_properties == ids
        assert log.details == {"target_property_id": ids[0], "merge_reason": "dup"}

    @pytest.mark.parametrize("operator", [None, ""])
    def test_missing_operator_changes_nothing(self, db_session, three_duplicates, operator):
        group, properties = three_duplicates

        with pytest.raises(AuthenticationRequiredError):
            DuplicateReviewService(db_session).merge(
                group.id, properties[0].id, [p.id for p in properties], operator
            )

        assert db_session.query(Property).count() == 3
        assert db_session.query(MergedPropertyTracking).count() == 0

    def test_unknown_group(self, db_session):
        with pytest.raises(DuplicateGroupNotFoundError):
            DuplicateReviewService(db_session).merge(999, 1, [1, 2], "admin")

    def test_target_must_be_among_members(self, db_session, three_duplicates):
        group, properties = three_duplicates

        with pytest.raises(ValueError):
            DuplicateReviewService(db_session).merge(
                group.id, properties[0].id, [properties[1].id, properties[2].id], "admin"
            )

    def test_at_least_two_properties(self, db_session, three_duplicates):
        group, properties = three_duplicates

        with pytest.raises(ValueError):
            DuplicateReviewService(db_session).merge(
                group.id, properties[0].id, [properties[0].id, properties[0].id], "admin"
            )

    def test_properties_outside_group_are_rejected(self, db_session, make_property, three_duplicates):
        group, properties = three_duplicates
        outsider = make_property(user_id="user-9")

        with pytest.raises(ValueError):
            DuplicateReviewService(db_session).merge(
                group.id, properties[0].id, [properties[0].id, outsider.id], "admin"
            )

        assert db_session.query(Property).count() == 4

    def test_merged_group_cannot_be_merged_again(self, db_session, three_duplicates):
        group, properties = three_duplicates
        ids = [p.id for p in properties]
        service = DuplicateReviewService(db_session)
        service.merge(group.id, ids[0], ids[:2], "admin")

        with pytest.raises(InvalidGroupStateError):
            service.merge(group.id, ids[0], [ids[0], ids[2]], "admin")
        with pytest.raises(InvalidGroupStateError):
            service.dismiss(group.id, "admin")


class TestMergeAcrossGroups:
    """複数のグループにまたがる物件の統合"""

    def test_target_of_earlier_merge_can_be_merged_away(self, db_session, make_property):
        """以前の統合先だった物件も、後の統合で削除できる"""
        a, b, c = (make_property(title="Bright flat") for _ in range(3))
        a_id, b_id, c_id = a.id, b.id, c.id
        b_snapshot = b.to_snapshot()
        first = make_group(db_session, [a, b])
        second = make_group(db_session, [a, c])
        service = DuplicateReviewService(db_session)

        service.merge(first.id, a_id, [a_id, b_id], "admin")
        service.merge(second.id, c_id, [a_id, c_id], "admin")

        assert [p.id for p in db_session.query(Property).all()] == [c_id]
        trackings = db_session.query(MergedPropertyTracking).order_by(MergedPropertyTracking.id).all()
        assert [(t.original_property_id, t.target_property_id) for t in trackings] == [
            (b_id, a_id), (a_id, c_id)
        ]
        # 追跡レコードは統合先が削除されても残る
        assert service.is_previously_merged(b_snapshot)

        db_session.expire_all()
        assert db_session.get(GlobalDuplicateGroup, first.id).merge_target_property_id is None
        assert db_session.get(GlobalDuplicateGroup, second.id).merge_target_property_id == c_id

    def test_memberships_in_other_pending_groups_move_to_target(self, db_session, make_property):
        """削除した物件の他グループでの所属は統合先に付け替える"""
        a, b, c = (make_property(title="Bright flat") for _ in range(3))
        a_id, b_id, c_id = a.id, b.id, c.id
        first = make_group(db_session, [a, b])
        second = make_group(db_session, [b, c])

        result = DuplicateReviewService(db_session).merge(first.id, a_id, [a_id, b_id], "admin")

        assert result["updated_group_ids"] == [second.id]
        assert result["resolved_group_ids"] == []

        db_session.expire_all()
        other = db_session.get(GlobalDuplicateGroup, second.id)
        assert other.status == "pending"
        assert sorted(m.property_id for m in other.members) == [a_id, c_id]
        assert other.pair_key == f"{a_id}:{c_id}"
        assert other.members[0].similarity_reasons == ["Title similarity: 100.0%"]

    def test_group_left_with_target_only_is_resolved(self, db_session, make_property):
        """統合先しか残らないグループは同じ統合で解消される"""
        a, b = make_property(title="Bright flat"), make_property(title="Bright flat")
        a_id, b_id = a.id, b.id
        first = make_group(db_session, [a, b])
        second = make_group(db_session, [a, b], confidence=87.0)

        result = DuplicateReviewService(db_session).merge(first.id, a_id, [a_id, b_id], "operator-1")

        assert result["resolved_group_ids"] == [second.id]

        db_session.expire_all()
        resolved = db_session.get(GlobalDuplicateGroup, second.id)
        assert resolved.status == "merged"
        assert resolved.reviewed_by == "operator-1"
        assert resolved.merge_target_property_id == a_id
        assert [m.property_id for m in resolved.members] == [a_id]
        assert DuplicateReviewService(db_session).list_pending() == []

    def test_reviewed_groups_are_left_alone(self, db_session, make_property):
        """却下済みのグループの所属は付け替えない"""
        a, b, c = (make_property(title="Bright flat") for _ in range(3))
        a_id, b_id, c_id = a.id, b.id, c.id
        first = make_group(db_session, [a, b])
        dismissed = make_group(db_session, [b, c])
        service = DuplicateReviewService(db_session)
        service.dismiss(dismissed.id, "admin")

        result = service.merge(first.id, a_id, [a_id, b_id], "admin")

        assert result["updated_group_ids"] == []
        db_session.expire_all()
        other = db_session.get(GlobalDuplicateGroup, dismissed.id)
        assert other.status == "dismissed"
        assert [m.property_id for m in other.members] == [c_id]


class TestDismiss:

    def test_dismiss_keeps_properties(self, db_session, three_duplicates):
        group, _ = three_duplicates

        dismissed = DuplicateReviewService(db_session).dismiss(group.id, "admin", notes="different units")

        assert dismissed.status == "dismissed"
        assert dismissed.reviewed_by == "admin"
        assert dismissed.notes == "different units"
        assert db_session.query(Property).count() == 3
        assert db_session.query(MergedPropertyTracking).count() == 0

        log = db_session.query(DuplicateDetectionLog).one()
        assert log.action_type == "dismiss"
        assert log.affected_properties == []

    def test_dismissed_group_cannot_be_merged(self, db_session, three_duplicates):
        group, properties = three_duplicates
        service = DuplicateReviewService(db_session)
        service.dismiss(group.id, "admin")

        with pytest.raises(InvalidGroupStateError):
            service.merge(group.id, properties[0].id, [p.id for p in properties], "admin")
        with pytest.raises(InvalidGroupStateError):
            service.dismiss(group.id, "admin")

    def test_missing_operator(self, db_session, three_duplicates):
        group, _ = three_duplicates

        with pytest.raises(AuthenticationRequiredError):
            DuplicateReviewService(db_session).dismiss(group.id, None)

        assert db_session.get(GlobalDuplicateGroup, group.id).status == "pending"


class TestListPending:

    def test_ordered_by_confidence(self, db_session, make_property):
        a, b, c, d = (make_property() for _ in range(4))
        low = make_group(db_session, [a, b], confidence=86.0)
        high = make_group(db_session, [c, d], confidence=95.0)
        dismissed = make_group(db_session, [a, c], confidence=99.0)
        DuplicateReviewService(db_session).dismiss(dismissed.id, "admin")

        pending = DuplicateReviewService(db_session).list_pending()

        assert [g.id for g in pending] == [high.id, low.id]
        assert sorted(p.id for p in pending[0].properties) == [c.id, d.id]
