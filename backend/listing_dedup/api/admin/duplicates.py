"""
重複物件の検出・レビュー用API
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import verify_admin_credentials
from ...config.duplicate_config import AUDIT_LOG_DEFAULT_LIMIT
from ...database import get_db
from ...exceptions import (
    DuplicateGroupNotFoundError, InvalidGroupStateError, PropertyFetchError,
    DuplicatePersistenceError, AuthenticationRequiredError
)
from ...schemas.duplicate import (
    DuplicateGroupSchema, DuplicateScanRequest, DuplicateScanResponse, DuplicateMatchSchema,
    MergeRequest, MergeResponse, DismissRequest, CandidatePropertySchema, MergedCheckResponse,
    DetectionLogSchema
)
from ...utils.detection_log import get_recent_logs
from ...utils.duplicate_detector import DuplicateScanner
from ...utils.duplicate_group_store import DuplicateGroupStore
from ...utils.duplicate_review import DuplicateReviewService
from ...utils.logger import error_logger

router = APIRouter()


def get_review_service(db: Session = Depends(get_db)) -> DuplicateReviewService:
    """レビューサービス（テストで差し替え可能）"""
    return DuplicateReviewService(db)


@router.post("/duplicates/scan", response_model=DuplicateScanResponse)
def scan_duplicates(
    request: DuplicateScanRequest,
    db: Session = Depends(get_db),
    operator: str = Depends(verify_admin_credentials),
):
    """重複スキャンを実行してレビュー待ちグループを作成"""
    if request.scope == "owner" and not request.user_id:
        raise HTTPException(status_code=400, detail="user_id is required for an owner scan")

    scanner = DuplicateScanner(db)
    store = DuplicateGroupStore(db)

    try:
        if request.scope == "global":
            matches = scanner.scan_global()
        else:
            matches = scanner.scan_owner(request.user_id)

        groups = store.persist(matches)
    except (PropertyFetchError, DuplicatePersistenceError) as e:
        error_logger.error("重複スキャンに失敗しました", extra={"error_message": str(e)})
        raise HTTPException(status_code=500, detail=str(e))

    store.record_scan(
        operator, matches, groups,
        scan_trigger="api",
        user_id=request.user_id
    )

    if not matches:
        message = "No duplicates found"
    else:
        message = f"Found {len(matches)} potential duplicate groups"

    return DuplicateScanResponse(
        success=True,
        message=message,
        duplicates_found=len(matches),
        groups_created=len(groups),
        groups=[
            DuplicateMatchSchema(
                confidence=match.confidence_score,
                reasons=match.reasons,
                properties=match.property_ids
            )
            for match in matches
        ]
    )


@router.get("/duplicates/pending", response_model=List[DuplicateGroupSchema])
def get_pending_duplicate_groups(
    service: DuplicateReviewService = Depends(get_review_service),
    operator: str = Depends(verify_admin_credentials),
):
    """レビュー待ちの重複グループ一覧（信頼度の高い順）"""
    return service.list_pending()


@router.get("/duplicates/groups/{group_id}", response_model=DuplicateGroupSchema)
def get_duplicate_group(
    group_id: int,
    service: DuplicateReviewService = Depends(get_review_service),
    operator: str = Depends(verify_admin_credentials),
):
    """重複グループの詳細を取得"""
    try:
        return service.get_group(group_id)
    except DuplicateGroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/duplicates/groups/{group_id}/merge", response_model=MergeResponse)
def merge_duplicate_group(
    group_id: int,
    request: MergeRequest,
    service: DuplicateReviewService = Depends(get_review_service),
    operator: str = Depends(verify_admin_credentials),
):
    """グループ内の物件を統合"""
    try:
        result = service.merge(
            group_id,
            request.target_property_id,
            request.property_ids,
            operator,
            reason=request.reason
        )
    except DuplicateGroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (InvalidGroupStateError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AuthenticationRequiredError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except DuplicatePersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return MergeResponse(
        success=True,
        group_id=result["group_id"],
        target_property_id=result["target_property_id"],
        deleted_property_ids=result["deleted_property_ids"],
        updated_group_ids=result["updated_group_ids"],
        resolved_group_ids=result["resolved_group_ids"]
    )


@router.post("/duplicates/groups/{group_id}/dismiss", response_model=DuplicateGroupSchema)
def dismiss_duplicate_group(
    group_id: int,
    request: DismissRequest,
    service: DuplicateReviewService = Depends(get_review_service),
    operator: str = Depends(verify_admin_credentials),
):
    """誤検出としてグループを却下"""
    try:
        return service.dismiss(group_id, operator, notes=request.notes)
    except DuplicateGroupNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidGroupStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AuthenticationRequiredError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except DuplicatePersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/duplicates/check-merged", response_model=MergedCheckResponse)
def check_merged_duplicate(
    candidate: CandidatePropertySchema,
    service: DuplicateReviewService = Depends(get_review_service),
    operator: str = Depends(verify_admin_credentials),
):
    """インポート候補が以前に統合で削除された物件か判定"""
    target_id = service.find_merge_target(candidate.model_dump())
    return MergedCheckResponse(
        previously_merged=target_id is not None,
        merge_target_property_id=target_id
    )


@router.get("/duplicates/log", response_model=List[DetectionLogSchema])
def get_duplicate_detection_log(
    limit: int = Query(AUDIT_LOG_DEFAULT_LIMIT, ge=1, le=500),
    action_type: Optional[str] = Query(None, pattern="^(scan|merge|dismiss)$"),
    group_id: Optional[int] = None,
    db: Session = Depends(get_db),
    operator: str = Depends(verify_admin_credentials),
):
    """監査ログを新しい順に取得"""
    return get_recent_logs(db, limit=limit, action_type=action_type, duplicate_group_id=group_id)
