"""
物件フィンガープリント生成ユーティリティ

統合で削除した物件を、後の一括インポートで再登録しないためのハッシュ値を生成します。
フィンガープリントには以下の要素をこの順序で使用：
- タイトル
- 通り名
- 番地
- 郵便番号
- 市区町村
- 月額賃料
- 寝室数
- 面積

注意：内容ベースのハッシュのため、統合後に上記の項目が変更された物件は検出できません
"""

import hashlib
from abc import ABC, abstractmethod
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from .similarity_scorer import get_field


FINGERPRINT_FIELDS = (
    'title',
    'street_name',
    'street_number',
    'zip_code',
    'city',
    'monthly_rent',
    'bedrooms',
    'square_meters',
)


class FingerprintHasher(ABC):
    """フィンガープリント生成のインターフェース"""

    @abstractmethod
    def fingerprint(
        self,
        title: Optional[str],
        street_name: Optional[str],
        street_number: Optional[str],
        zip_code: Optional[str],
        city: Optional[str],
        monthly_rent: Optional[float],
        bedrooms: Optional[int],
        square_meters: Optional[float]
    ) -> str:
        """フィンガープリントを計算"""


class PropertyFingerprintHasher(FingerprintHasher):
    """
    Pythonで計算するフィンガープリント

    データベース関数 generate_property_fingerprint と同じ連結規則：
    文字列は小文字化・前後の半角スペース除去（Noneは空文字）、数値は文字列化（Noneは"0"）、
    "|"で連結してMD5の16進数文字列にします。
    PostgreSQLのtrim()と同じく、タブや改行は除去しません。
    """

    @staticmethod
    def _text_part(value: Optional[str]) -> str:
        if value is None:
            return ""
        return str(value).strip(" ").lower()

    @staticmethod
    def _numeric_part(value: Optional[float]) -> str:
        if value is None:
            return "0"
        # 1200.0 と 1200 を同一視する
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)

    def fingerprint(
        self,
        title: Optional[str],
        street_name: Optional[str],
        street_number: Optional[str],
        zip_code: Optional[str],
        city: Optional[str],
        monthly_rent: Optional[float],
        bedrooms: Optional[int],
        square_meters: Optional[float]
    ) -> str:
        parts = [
            self._text_part(title),
            self._text_part(street_name),
            self._text_part(street_number),
            self._text_part(zip_code),
            self._text_part(city),
            self._numeric_part(monthly_rent),
            self._numeric_part(bedrooms),
            self._numeric_part(square_meters),
        ]
        hash_string = "|".join(parts)
        return hashlib.md5(hash_string.encode('utf-8')).hexdigest()


class DatabaseFingerprintHasher(FingerprintHasher):
    """データベースのストアド関数 generate_property_fingerprint に委譲"""

    def __init__(self, db: Session):
        self.db = db

    def fingerprint(
        self,
        title: Optional[str],
        street_name: Optional[str],
        street_number: Optional[str],
        zip_code: Optional[str],
        city: Optional[str],
        monthly_rent: Optional[float],
        bedrooms: Optional[int],
        square_meters: Optional[float]
    ) -> str:
        return self.db.execute(
            text("""
                SELECT generate_property_fingerprint(
                    :p_title, :p_street_name, :p_street_number, :p_zip_code,
                    :p_city, :p_monthly_rent, :p_bedrooms, :p_square_meters
                )
            """),
            {
                "p_title": title,
                "p_street_name": street_name,
                "p_street_number": street_number,
                "p_zip_code": zip_code,
                "p_city": city,
                "p_monthly_rent": monthly_rent,
                "p_bedrooms": bedrooms,
                "p_square_meters": square_meters,
            }
        ).scalar_one()


def fingerprint_property(hasher: FingerprintHasher, record: Any) -> str:
    """物件（ORMオブジェクトまたは辞書）のフィンガープリントを計算"""
    return hasher.fingerprint(*(get_field(record, name) for name in FINGERPRINT_FIELDS))
