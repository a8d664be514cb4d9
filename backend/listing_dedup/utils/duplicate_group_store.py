"""
重複候補グループの永続化
"""

from typing import List, Optional, Sequence, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import DuplicatePersistenceError
from ..models import (
    GlobalDuplicateGroup, GlobalDuplicateProperty, DuplicateGroupStatus, DetectionActionType
)
from .detection_log import append_detection_log
from .duplicate_detector import DuplicateMatch
from .logger import app_logger, log_database_operation


class DuplicateGroupStore:
    """重複候補をレビュー待ちグループとして保存するクラス"""

    def __init__(self, db: Session):
        self.db = db
        self.skipped_count = 0

    def get_pending_pair_keys(self) -> Set[str]:
        """レビュー待ちグループのペアキーを取得"""
        try:
            rows = self.db.query(GlobalDuplicateGroup.pair_key).filter(
                GlobalDuplicateGroup.status == DuplicateGroupStatus.PENDING.value,
                GlobalDuplicateGroup.pair_key.isnot(None)
            ).all()
        except SQLAlchemyError as e:
            raise DuplicatePersistenceError(f"Failed to load pending duplicate groups: {e}") from e
        return {row.pair_key for row in rows}

    def persist(self, matches: Sequence[DuplicateMatch]) -> List[GlobalDuplicateGroup]:
        """
        重複候補ごとにグループとメンバーを作成

        1候補ごとにコミットします（グループとメンバーは同一トランザクション）。
        途中で失敗した場合、それまでにコミットしたグループは残ります。
        同じペアのレビュー待ちグループが既にある候補はスキップします。

        Raises:
            DuplicatePersistenceError: 書き込みに失敗した場合
        """
        self.skipped_count = 0
        pending_keys = self.get_pending_pair_keys()
        created = []

        for match in matches:
            pair_key = match.pair_key
            if pair_key in pending_keys:
                self.skipped_count += 1
                continue

            group = GlobalDuplicateGroup(
                confidence_score=match.confidence_score,
                status=DuplicateGroupStatus.PENDING.value,
                pair_key=pair_key
            )
            group.members = [
                GlobalDuplicateProperty(
                    property_id=property_id,
                    similarity_reasons=list(match.reasons)
                )
                for property_id in match.property_ids
            ]

            try:
                self.db.add(group)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                log_database_operation("insert", GlobalDuplicateGroup.__tablename__, len(created), error=e)
                raise DuplicatePersistenceError(
                    f"Failed to save duplicate group for properties {match.property_ids}: {e}"
                ) from e

            pending_keys.add(pair_key)
            created.append(group)

        log_database_operation("insert", GlobalDuplicateGroup.__tablename__, affected_rows=len(created))
        if self.skipped_count:
            app_logger.info(
                f"レビュー待ちの既存グループと重複する候補を{self.skipped_count}件スキップしました",
                extra={"skipped_count": self.skipped_count}
            )
        return created

    def record_scan(
        self,
        operator_id: str,
        matches: Sequence[DuplicateMatch],
        created_groups: Sequence[GlobalDuplicateGroup],
        scan_trigger: str = "api",
        user_id: Optional[str] = None
    ) -> None:
        """スキャン実行を監査ログに記録"""
        append_detection_log(
            self.db,
            DetectionActionType.SCAN,
            operator_id,
            details={
                "duplicates_found": len(matches),
                "groups_created": len(created_groups),
                "skipped_pending_pairs": self.skipped_count,
                "scan_trigger": scan_trigger,
                "user_id": user_id
            }
        )
