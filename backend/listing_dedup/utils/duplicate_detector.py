"""
物件重複検出ユーティリティ

所有者の物件をすべてのペアで比較し、重複候補を信頼度の高い順に返します。
ペア比較はO(n²)のため、1所有者の物件数（数十〜数百件）を前提としています。
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..exceptions import PropertyFetchError
from ..models import Property
from .logger import app_logger, LogContext
from .similarity_scorer import PropertySimilarityScorer, SimilarityResult, get_field


@dataclass
class DuplicateMatch:
    """重複候補のペア（永続化前の一時データ）"""
    property1: Any
    property2: Any
    confidence_score: float
    reasons: List[str] = field(default_factory=list)
    result: Optional[SimilarityResult] = None

    @property
    def property_ids(self) -> List[int]:
        return [get_field(self.property1, 'id'), get_field(self.property2, 'id')]

    @property
    def pair_key(self) -> str:
        """順序に依存しないペアのキー"""
        return make_pair_key(self.property_ids)


def make_pair_key(property_ids: Sequence[int]) -> str:
    """物件IDの集合から正規化されたキーを作成"""
    return ":".join(str(pid) for pid in sorted(property_ids))


def scan_all(
    properties: Sequence[Any],
    scorer: Optional[PropertySimilarityScorer] = None,
    cross_owner_only: bool = False
) -> List[DuplicateMatch]:
    """
    すべてのペアを比較して重複候補を検出

    Args:
        properties: 比較対象の物件（ORMオブジェクトまたは辞書）
        scorer: 類似度計算クラス（省略時はデフォルト設定）
        cross_owner_only: Trueの場合、同じ所有者同士のペアを比較しない（全体スキャン用）

    Returns:
        信頼度の降順に並んだ重複候補（同点の場合は検出順）
    """
    if len(properties) < 2:
        return []

    scorer = scorer or PropertySimilarityScorer()
    matches = []

    for i, prop1 in enumerate(properties):
        for prop2 in properties[i + 1:]:
            if cross_owner_only and get_field(prop1, 'user_id') == get_field(prop2, 'user_id'):
                continue

            result = scorer.score(prop1, prop2)
            if not result.is_match:
                continue

            matches.append(DuplicateMatch(
                property1=prop1,
                property2=prop2,
                confidence_score=result.total,
                reasons=result.reasons,
                result=result
            ))

    # sortedは安定ソート
    return sorted(matches, key=lambda m: m.confidence_score, reverse=True)


class DuplicateScanner:
    """データベースから物件を取得して重複を検出するクラス"""

    def __init__(self, db: Session, scorer: Optional[PropertySimilarityScorer] = None):
        self.db = db
        self.scorer = scorer or PropertySimilarityScorer()

    def fetch_properties(self, user_id: Optional[str] = None) -> List[Property]:
        """
        物件をメディア付きで取得

        Args:
            user_id: 所有者ID（Noneの場合は全所有者）

        Raises:
            PropertyFetchError: 取得に失敗した場合
        """
        query = self.db.query(Property).options(selectinload(Property.media))
        if user_id is not None:
            query = query.filter(Property.user_id == user_id)

        try:
            return query.order_by(Property.id).all()
        except SQLAlchemyError as e:
            raise PropertyFetchError(f"Failed to fetch properties: {e}") from e

    def scan_owner(self, user_id: str) -> List[DuplicateMatch]:
        """1所有者のポートフォリオ内で重複を検出"""
        with LogContext(app_logger, "duplicate_scan", user_id=user_id):
            properties = self.fetch_properties(user_id)
            matches = scan_all(properties, self.scorer)
            app_logger.info(
                f"重複候補を{len(matches)}件検出しました",
                extra={"user_id": user_id, "property_count": len(properties), "match_count": len(matches)}
            )
            return matches

    def scan_global(self) -> List[DuplicateMatch]:
        """全所有者を対象に、異なる所有者間の重複を検出（管理者用）"""
        with LogContext(app_logger, "global_duplicate_scan"):
            properties = self.fetch_properties()
            matches = scan_all(properties, self.scorer, cross_owner_only=True)
            app_logger.info(
                f"所有者間の重複候補を{len(matches)}件検出しました",
                extra={"property_count": len(properties), "match_count": len(matches)}
            )
            return matches
