"""
重複候補グループのレビュー（統合・却下）

統合の処理順序：
1. 削除対象の物件ごとにフィンガープリントと元データを記録
2. 削除対象の物件が他のレビュー待ちグループに属している場合、その所属を統合先に付け替え
3. 統合先以外の物件を削除
4. グループを統合済みに更新
5. 監査ログに記録（ベストエフォート）

1〜4は同一トランザクションで実行し、失敗時はすべてロールバックします。
統合先が既に所属しているグループでは付け替えず、削除対象の所属のみ削除されます。
その結果メンバーが1件以下になったグループは、今回の統合で解消されたものとして統合済みにします。
グループの状態遷移は pending → merged / pending → dismissed のみです。
"""

from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..exceptions import (
    AuthenticationRequiredError, DuplicateGroupNotFoundError, DuplicatePersistenceError,
    InvalidGroupStateError
)
from ..models import (
    Property, GlobalDuplicateGroup, GlobalDuplicateProperty, MergedPropertyTracking,
    DuplicateGroupStatus, DetectionActionType
)
from .datetime_utils import get_utc_now
from .detection_log import append_detection_log
from .duplicate_detector import make_pair_key
from .logger import app_logger, LogContext, log_database_operation
from .property_fingerprint import FingerprintHasher, PropertyFingerprintHasher, fingerprint_property


class DuplicateReviewService:
    """重複候補グループのレビュー処理クラス"""

    def __init__(self, db: Session, hasher: Optional[FingerprintHasher] = None):
        self.db = db
        self.hasher = hasher or PropertyFingerprintHasher()

    def _group_query(self):
        return self.db.query(GlobalDuplicateGroup).options(
            selectinload(GlobalDuplicateGroup.members)
            .selectinload(GlobalDuplicateProperty.property)
            .selectinload(Property.media)
        )

    def list_pending(self) -> List[GlobalDuplicateGroup]:
        """レビュー待ちグループを物件詳細付きで信頼度の高い順に取得"""
        return self._group_query().filter(
            GlobalDuplicateGroup.status == DuplicateGroupStatus.PENDING.value
        ).order_by(
            GlobalDuplicateGroup.confidence_score.desc(),
            GlobalDuplicateGroup.id.asc()
        ).all()

    def get_group(self, group_id: int) -> GlobalDuplicateGroup:
        """グループを取得"""
        group = self._group_query().filter(GlobalDuplicateGroup.id == group_id).first()
        if group is None:
            raise DuplicateGroupNotFoundError(group_id)
        return group

    @staticmethod
    def _require_operator(operator_id: Optional[str]) -> str:
        if not operator_id:
            raise AuthenticationRequiredError("Admin user not found")
        return operator_id

    def _get_pending_group(self, group_id: int) -> GlobalDuplicateGroup:
        group = self.get_group(group_id)
        if not group.is_pending:
            raise InvalidGroupStateError(group_id, group.status)
        return group

    @staticmethod
    def _mark_merged(group: GlobalDuplicateGroup, target_property_id: int, operator_id: str, reviewed_at) -> None:
        group.status = DuplicateGroupStatus.MERGED.value
        group.reviewed_by = operator_id
        group.reviewed_at = reviewed_at
        group.merge_target_property_id = target_property_id

    def _repoint_memberships(
        self,
        group: GlobalDuplicateGroup,
        properties: Sequence[Property],
        target_property_id: int
    ) -> List[GlobalDuplicateGroup]:
        """
        削除対象の物件が属する他のレビュー待ちグループの所属を統合先に付け替える

        Returns:
            削除対象の物件が属していた他のレビュー待ちグループ
        """
        target = self.db.get(Property, target_property_id)
        if target is None:
            raise ValueError(f"Properties not found: [{target_property_id}]")

        target_group_ids = {m.duplicate_group_id for m in target.duplicate_memberships}
        affected = {}

        for prop in properties:
            for membership in list(prop.duplicate_memberships):
                other = membership.group
                if other.id == group.id or not other.is_pending:
                    continue
                affected[other.id] = other
                # 統合先が既に所属している場合は、削除対象の所属ごと削除される
                if other.id in target_group_ids:
                    continue
                membership.property = target
                target_group_ids.add(other.id)

        self.db.flush()
        return list(affected.values())

    def _refresh_affected_groups(
        self,
        groups: Sequence[GlobalDuplicateGroup],
        target_property_id: int,
        operator_id: str,
        reviewed_at
    ) -> List[int]:
        """
        付け替え後のグループのペアキーを更新し、
        メンバーが1件以下になったグループは今回の統合で解消されたものとして統合済みにする

        Returns:
            統合済みにしたグループID
        """
        resolved = []
        for other in groups:
            member_ids = [
                row.property_id
                for row in self.db.query(GlobalDuplicateProperty.property_id).filter(
                    GlobalDuplicateProperty.duplicate_group_id == other.id
                )
            ]
            other.pair_key = make_pair_key(member_ids)
            if len(member_ids) < 2:
                self._mark_merged(other, target_property_id, operator_id, reviewed_at)
                resolved.append(other.id)

        if groups:
            app_logger.info(
                "他のレビュー待ちグループの所属を統合先に付け替えました",
                extra={
                    "group_ids": [g.id for g in groups],
                    "resolved_group_ids": resolved,
                    "target_property_id": target_property_id
                }
            )
        return resolved

    def merge(
        self,
        group_id: int,
        target_property_id: int,
        member_property_ids: Sequence[int],
        operator_id: Optional[str],
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        グループ内の物件を統合先の物件にまとめる

        Args:
            group_id: 重複グループID
            target_property_id: 残す物件ID
            member_property_ids: 統合対象の物件ID（統合先を含む）
            operator_id: 操作者ID
            reason: 統合理由

        Returns:
            統合結果（削除した物件IDとフィンガープリント）

        Raises:
            AuthenticationRequiredError: 操作者がいない場合（変更前に送出）
            DuplicateGroupNotFoundError: グループが存在しない場合
            InvalidGroupStateError: レビュー済みのグループの場合
            ValueError: 統合先や統合対象が不正な場合
            DuplicatePersistenceError: 書き込みに失敗した場合（ロールバック済み）
        """
        operator_id = self._require_operator(operator_id)
        group = self._get_pending_group(group_id)

        # 重複を除いて順序を保持
        member_ids = list(dict.fromkeys(member_property_ids))
        if target_property_id not in member_ids:
            raise ValueError(f"Merge target {target_property_id} is not among the merged properties")
        if len(member_ids) < 2:
            raise ValueError("At least two properties are required for a merge")

        group_property_ids = {member.property_id for member in group.members}
        outside = [pid for pid in member_ids if pid not in group_property_ids]
        if outside:
            raise ValueError(f"Properties {outside} do not belong to duplicate group {group_id}")

        delete_ids = [pid for pid in member_ids if pid != target_property_id]

        with LogContext(app_logger, "duplicate_merge", group_id=group_id,
                        target_property_id=target_property_id, operator_id=operator_id):
            try:
                properties = self.db.query(Property).filter(Property.id.in_(delete_ids)).all()
                missing = set(delete_ids) - {p.id for p in properties}
                if missing:
                    raise ValueError(f"Properties not found: {sorted(missing)}")

                # 1. 削除前にフィンガープリントを記録
                fingerprints = {}
                for prop in properties:
                    fingerprint = fingerprint_property(self.hasher, prop)
                    fingerprints[prop.id] = fingerprint
                    self.db.add(MergedPropertyTracking(
                        original_property_id=prop.id,
                        target_property_id=target_property_id,
                        merged_by=operator_id,
                        original_data=prop.to_snapshot(),
                        merge_reason=reason,
                        fingerprint=fingerprint
                    ))
                self.db.flush()

                # 2. 他のレビュー待ちグループの所属を統合先に付け替え
                affected_groups = self._repoint_memberships(group, properties, target_property_id)

                # 3. 統合先以外の物件を削除
                for prop in properties:
                    self.db.delete(prop)
                self.db.flush()

                # 4. グループを統合済みに更新
                reviewed_at = get_utc_now()
                self._mark_merged(group, target_property_id, operator_id, reviewed_at)
                resolved_ids = self._refresh_affected_groups(
                    affected_groups, target_property_id, operator_id, reviewed_at
                )

                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                log_database_operation("merge", Property.__tablename__, error=e)
                raise DuplicatePersistenceError(f"Failed to merge duplicate group {group_id}: {e}") from e
            except ValueError:
                self.db.rollback()
                raise

        log_database_operation("delete", Property.__tablename__, affected_rows=len(delete_ids))
        log_database_operation("insert", MergedPropertyTracking.__tablename__, affected_rows=len(delete_ids))

        # 5. 監査ログ
        append_detection_log(
            self.db,
            DetectionActionType.MERGE,
            operator_id,
            duplicate_group_id=group_id,
            affected_properties=member_ids,
            details={
                "target_property_id": target_property_id,
                "merge_reason": reason
            }
        )

        return {
            "group_id": group_id,
            "target_property_id": target_property_id,
            "deleted_property_ids": delete_ids,
            "fingerprints": fingerprints,
            "updated_group_ids": [g.id for g in affected_groups],
            "resolved_group_ids": resolved_ids
        }

    def dismiss(self, group_id: int, operator_id: Optional[str], notes: Optional[str] = None) -> GlobalDuplicateGroup:
        """誤検出としてグループを却下（物件には変更を加えない）"""
        operator_id = self._require_operator(operator_id)
        group = self._get_pending_group(group_id)

        group.status = DuplicateGroupStatus.DISMISSED.value
        group.reviewed_by = operator_id
        group.reviewed_at = get_utc_now()
        group.notes = notes

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            log_database_operation("update", GlobalDuplicateGroup.__tablename__, error=e)
            raise DuplicatePersistenceError(f"Failed to dismiss duplicate group {group_id}: {e}") from e

        log_database_operation("update", GlobalDuplicateGroup.__tablename__, affected_rows=1)
        app_logger.info("重複グループを却下しました", extra={"group_id": group_id, "operator_id": operator_id})

        append_detection_log(
            self.db,
            DetectionActionType.DISMISS,
            operator_id,
            duplicate_group_id=group_id,
            affected_properties=[],
            details={"notes": notes}
        )
        return group

    def find_merge_target(self, candidate: Any) -> Optional[int]:
        """候補物件が以前に統合された物件と一致する場合、その統合先IDを返す"""
        fingerprint = fingerprint_property(self.hasher, candidate)
        tracking = self.db.query(MergedPropertyTracking).filter(
            MergedPropertyTracking.fingerprint == fingerprint
        ).order_by(MergedPropertyTracking.id.desc()).first()
        return tracking.target_property_id if tracking else None

    def is_previously_merged(self, candidate: Any) -> bool:
        """候補物件が以前に統合で削除された物件か（一括インポートの再登録防止用）"""
        fingerprint = fingerprint_property(self.hasher, candidate)
        exists = self.db.query(
            self.db.query(MergedPropertyTracking).filter(
                MergedPropertyTracking.fingerprint == fingerprint
            ).exists()
        ).scalar()
        return bool(exists)
