"""
重複検出の監査ログ記録

監査ログは参考情報のため、書き込みに失敗しても主処理はロールバックしません。
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config.duplicate_config import AUDIT_LOG_DEFAULT_LIMIT
from ..models import DuplicateDetectionLog, DetectionActionType
from .logger import error_logger, log_database_operation


def append_detection_log(
    db: Session,
    action_type: DetectionActionType,
    admin_user_id: str,
    duplicate_group_id: Optional[int] = None,
    affected_properties: Optional[List[int]] = None,
    details: Optional[Dict[str, Any]] = None
) -> Optional[DuplicateDetectionLog]:
    """
    監査ログを追記（ベストエフォート）

    Returns:
        作成したログ。書き込みに失敗した場合はNone
    """
    entry = DuplicateDetectionLog(
        action_type=str(action_type),
        duplicate_group_id=duplicate_group_id,
        admin_user_id=admin_user_id,
        affected_properties=list(affected_properties or []),
        details=details or {}
    )

    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log_database_operation("insert", DuplicateDetectionLog.__tablename__, error=e)
        error_logger.error("監査ログの記録に失敗しました", extra={
            "action_type": str(action_type),
            "duplicate_group_id": duplicate_group_id,
            "error_message": str(e)
        })
        return None

    log_database_operation("insert", DuplicateDetectionLog.__tablename__, affected_rows=1)
    return entry


def get_recent_logs(
    db: Session,
    limit: int = AUDIT_LOG_DEFAULT_LIMIT,
    action_type: Optional[str] = None,
    duplicate_group_id: Optional[int] = None
) -> List[DuplicateDetectionLog]:
    """監査ログを新しい順に取得"""
    query = db.query(DuplicateDetectionLog)

    if action_type:
        query = query.filter(DuplicateDetectionLog.action_type == action_type)
    if duplicate_group_id is not None:
        query = query.filter(DuplicateDetectionLog.duplicate_group_id == duplicate_group_id)

    return query.order_by(
        DuplicateDetectionLog.created_at.desc(),
        DuplicateDetectionLog.id.desc()
    ).limit(limit).all()
