"""
物件類似度スコアリングユーティリティ

2つの物件の重複可能性を以下の4要素の加重合計で判定します：
- 住所（重み0.40）
- スペック（寝室数・浴室数・面積・賃料、重み0.35）
- タイトル（トークン一致率、重み0.15）
- 説明文（トークン一致率、重み0.10）

各要素は0-100に正規化され、要素ごとの閾値を超えた場合のみ合計に加算されます。
重複候補となるのは、2要素以上が有効化され、かつ合計が85以上の場合のみです。
（1要素だけが強く一致するケース、例えば同じ市区町村だけのペアを除外するため）
"""

import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Set

from ..config import duplicate_config as cfg


ADDRESS = "address"
SPECS = "specs"
TITLE = "title"
DESCRIPTION = "description"

# 理由文字列に使用する表示名
COMPONENT_LABELS = {
    ADDRESS: "Address similarity",
    SPECS: "Property specs similarity",
    TITLE: "Title similarity",
    DESCRIPTION: "Description similarity",
}

_NON_WORD_PATTERN = re.compile(r"[^\w\s]")


def get_field(record: Any, name: str) -> Any:
    """ORMオブジェクトと辞書の両方からフィールド値を取得"""
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


@dataclass
class ComponentScore:
    """要素ごとのスコア"""
    name: str
    score: float
    weight: float
    threshold: float

    @property
    def activated(self) -> bool:
        return self.score > self.threshold

    @property
    def weighted_score(self) -> float:
        return self.score * self.weight if self.activated else 0.0

    @property
    def reason(self) -> str:
        return f"{COMPONENT_LABELS[self.name]}: {self.score:.1f}%"


@dataclass
class SimilarityResult:
    """類似度計算の結果"""
    total: float
    components: List[ComponentScore] = field(default_factory=list)
    min_components: int = cfg.MIN_ACTIVE_COMPONENTS
    min_total: float = cfg.MIN_CONFIDENCE_SCORE

    @property
    def active_components(self) -> List[ComponentScore]:
        return [c for c in self.components if c.activated]

    @property
    def component_count(self) -> int:
        return len(self.active_components)

    @property
    def reasons(self) -> List[str]:
        return [c.reason for c in self.active_components]

    @property
    def is_match(self) -> bool:
        """要素数と合計スコアの両方の条件を満たすか"""
        return self.component_count >= self.min_components and self.total >= self.min_total

    def component(self, name: str) -> Optional[ComponentScore]:
        for c in self.components:
            if c.name == name:
                return c
        return None


class PropertySimilarityScorer:
    """物件類似度スコア計算クラス"""

    def __init__(self):
        # 重み
        self.weights = {
            ADDRESS: cfg.ADDRESS_WEIGHT,
            SPECS: cfg.SPECS_WEIGHT,
            TITLE: cfg.TITLE_WEIGHT,
            DESCRIPTION: cfg.DESCRIPTION_WEIGHT,
        }

        # 有効化の閾値
        self.thresholds = {
            ADDRESS: cfg.ADDRESS_ACTIVATION_THRESHOLD,
            SPECS: cfg.SPECS_ACTIVATION_THRESHOLD,
            TITLE: cfg.TITLE_ACTIVATION_THRESHOLD,
            DESCRIPTION: cfg.DESCRIPTION_ACTIVATION_THRESHOLD,
        }

        self.min_components = cfg.MIN_ACTIVE_COMPONENTS
        self.min_total = cfg.MIN_CONFIDENCE_SCORE

    @staticmethod
    def normalize_text(value: Optional[str]) -> str:
        """比較用に小文字化・前後の空白除去（Noneは空文字）"""
        if value is None:
            return ""
        return str(value).lower().strip()

    @staticmethod
    def tokenize(text: Optional[str]) -> Set[str]:
        """小文字化・記号除去・空白分割したトークン集合"""
        if not text:
            return set()
        return set(_NON_WORD_PATTERN.sub("", text.lower()).split())

    def calculate_address_similarity(self, prop1: Any, prop2: Any) -> float:
        """
        住所の類似度を計算（0-100）

        通り名が一致した場合のみ番地のボーナスが配点対象になります。
        空の値同士は一致として扱います。
        """
        normalize = self.normalize_text
        score = 0
        max_score = 0

        # 通り名（最重要）
        max_score += cfg.STREET_POINTS
        if normalize(get_field(prop1, 'street_name')) == normalize(get_field(prop2, 'street_name')):
            score += cfg.STREET_POINTS
            # 番地まで一致した場合のボーナス
            if normalize(get_field(prop1, 'street_number')) == normalize(get_field(prop2, 'street_number')):
                score += cfg.STREET_NUMBER_BONUS_POINTS
                max_score += cfg.STREET_NUMBER_BONUS_POINTS

        # 市区町村
        max_score += cfg.CITY_POINTS
        if normalize(get_field(prop1, 'city')) == normalize(get_field(prop2, 'city')):
            score += cfg.CITY_POINTS

        # 郵便番号
        max_score += cfg.ZIP_CODE_POINTS
        if normalize(get_field(prop1, 'zip_code')) == normalize(get_field(prop2, 'zip_code')):
            score += cfg.ZIP_CODE_POINTS

        # 地域・国
        max_score += cfg.REGION_POINTS + cfg.COUNTRY_POINTS
        if normalize(get_field(prop1, 'region')) == normalize(get_field(prop2, 'region')):
            score += cfg.REGION_POINTS
        if normalize(get_field(prop1, 'country')) == normalize(get_field(prop2, 'country')):
            score += cfg.COUNTRY_POINTS

        return score / max_score * 100 if max_score > 0 else 0.0

    @staticmethod
    def _within_tolerance(value1: float, value2: float, tolerance: float) -> bool:
        """大きい方の値に対する比率で許容誤差内か判定"""
        return abs(value1 - value2) <= max(value1, value2) * tolerance

    def calculate_specs_similarity(self, prop1: Any, prop2: Any) -> float:
        """
        スペックの類似度を計算（0-100）

        寝室数・浴室数は常に配点対象（値がない同士は一致扱い）です。
        面積・賃料は両方に値がある場合のみ配点対象になります。
        """
        score = 0
        max_score = 0

        # 寝室数（完全一致）
        max_score += cfg.BEDROOMS_POINTS
        if get_field(prop1, 'bedrooms') == get_field(prop2, 'bedrooms'):
            score += cfg.BEDROOMS_POINTS

        # 浴室数（完全一致）
        max_score += cfg.BATHROOMS_POINTS
        if get_field(prop1, 'bathrooms') == get_field(prop2, 'bathrooms'):
            score += cfg.BATHROOMS_POINTS

        # 面積（5%以内）
        area1 = get_field(prop1, 'square_meters')
        area2 = get_field(prop2, 'square_meters')
        if area1 and area2:
            max_score += cfg.SQUARE_METERS_POINTS
            if self._within_tolerance(area1, area2, cfg.SQUARE_METERS_TOLERANCE):
                score += cfg.SQUARE_METERS_POINTS

        # 賃料（10%以内）
        rent1 = get_field(prop1, 'monthly_rent')
        rent2 = get_field(prop2, 'monthly_rent')
        if rent1 and rent2:
            max_score += cfg.MONTHLY_RENT_POINTS
            if self._within_tolerance(rent1, rent2, cfg.MONTHLY_RENT_TOLERANCE):
                score += cfg.MONTHLY_RENT_POINTS

        return score / max_score * 100

    def calculate_text_similarity(self, text1: Optional[str], text2: Optional[str]) -> float:
        """トークン集合のJaccard係数（0-100）"""
        if not text1 or not text2:
            return 0.0

        tokens1 = self.tokenize(text1)
        tokens2 = self.tokenize(text2)
        union = tokens1 | tokens2
        if not union:
            return 0.0

        return len(tokens1 & tokens2) / len(union) * 100

    def score(self, prop1: Any, prop2: Any) -> SimilarityResult:
        """2つの物件の類似度を計算"""
        raw_scores = {
            ADDRESS: self.calculate_address_similarity(prop1, prop2),
            SPECS: self.calculate_specs_similarity(prop1, prop2),
            TITLE: self.calculate_text_similarity(
                get_field(prop1, 'title'), get_field(prop2, 'title')
            ),
            DESCRIPTION: self.calculate_text_similarity(
                get_field(prop1, 'description'), get_field(prop2, 'description')
            ),
        }

        components = [
            ComponentScore(
                name=name,
                score=value,
                weight=self.weights[name],
                threshold=self.thresholds[name],
            )
            for name, value in raw_scores.items()
        ]

        # 小数点第2位で丸めてから判定（浮動小数点誤差で閾値を割らないように）
        total = round(sum(c.weighted_score for c in components), 2)

        return SimilarityResult(
            total=total,
            components=components,
            min_components=self.min_components,
            min_total=self.min_total,
        )


_default_scorer = PropertySimilarityScorer()


def score_properties(prop1: Any, prop2: Any) -> SimilarityResult:
    """デフォルト設定で類似度を計算"""
    return _default_scorer.score(prop1, prop2)
