"""
SQLAlchemyのモデル定義（重複検出スキーマ）
"""

from enum import Enum

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Text, JSON, UniqueConstraint, Index, func
from sqlalchemy.orm import relationship

from .database import Base


class DuplicateGroupStatus(str, Enum):
    """重複グループのレビュー状態"""
    PENDING = "pending"
    MERGED = "merged"
    DISMISSED = "dismissed"

    def __str__(self) -> str:
        """文字列表現を値で返す（SQLAlchemyのため）"""
        return self.value


class DetectionActionType(str, Enum):
    """監査ログのアクション種別"""
    SCAN = "scan"
    MERGE = "merge"
    DISMISS = "dismiss"

    def __str__(self) -> str:
        return self.value


class Property(Base):
    """物件テーブル（掲載管理機能が所有、本モジュールは読み取りと統合時の削除のみ）"""
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False)             # 所有者（テナント）ID

    # 掲載内容
    title = Column(String(500))
    description = Column(Text)

    # 住所
    street_name = Column(String(200))                         # 通り名
    street_number = Column(String(20))                        # 番地
    city = Column(String(100))
    zip_code = Column(String(20))
    region = Column(String(100))                              # 州・地域
    country = Column(String(100))

    # 物件スペック
    bedrooms = Column(Integer)                                # 寝室数
    bathrooms = Column(Integer)                               # 浴室数
    square_meters = Column(Float)                             # 面積（㎡）
    monthly_rent = Column(Float)                              # 月額賃料

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # リレーションシップ
    media = relationship("PropertyMedia", back_populates="property", cascade="all")
    duplicate_memberships = relationship(
        "GlobalDuplicateProperty", back_populates="property", cascade="all"
    )

    __table_args__ = (
        Index('idx_properties_user_id', 'user_id'),
        Index('idx_properties_zip_code', 'zip_code'),
    )

    def to_snapshot(self) -> dict:
        """統合履歴に保存するためのスナップショット"""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'street_name': self.street_name,
            'street_number': self.street_number,
            'city': self.city,
            'zip_code': self.zip_code,
            'region': self.region,
            'country': self.country,
            'bedrooms': self.bedrooms,
            'bathrooms': self.bathrooms,
            'square_meters': self.square_meters,
            'monthly_rent': self.monthly_rent,
            'media': [m.to_dict() for m in self.media],
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }


class PropertyMedia(Base):
    """物件メディアテーブル"""
    __tablename__ = "property_media"

    id = Column(Integer, primary_key=True, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False)
    url = Column(String(1000), nullable=False)
    media_type = Column(String(50))                           # 'image', 'floorplan', 'video' など
    title = Column(String(200))

    property = relationship("Property", back_populates="media")

    __table_args__ = (
        Index('idx_property_media_property_id', 'property_id'),
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'url': self.url,
            'media_type': self.media_type,
            'title': self.title
        }


class GlobalDuplicateGroup(Base):
    """重複候補グループテーブル"""
    __tablename__ = "global_duplicate_groups"

    id = Column(Integer, primary_key=True, index=True)
    confidence_score = Column(Float, nullable=False)          # 信頼度（0-100）
    status = Column(String(20), nullable=False, default=DuplicateGroupStatus.PENDING.value)
    pair_key = Column(String(200))                            # ソート済みメンバーIDの連結（保留中ペアの重複登録防止用）

    # レビュー情報
    reviewed_by = Column(String(100))                         # レビュー者
    reviewed_at = Column(DateTime)                            # レビュー日時
    merge_target_property_id = Column(Integer, ForeignKey("properties.id", ondelete="SET NULL"))  # 統合先物件
    notes = Column(Text)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # リレーションシップ
    members = relationship(
        "GlobalDuplicateProperty", back_populates="group", cascade="all, delete-orphan"
    )
    merge_target_property = relationship("Property", foreign_keys=[merge_target_property_id])

    __table_args__ = (
        Index('idx_global_duplicate_groups_status', 'status'),
        Index('idx_global_duplicate_groups_confidence', 'confidence_score'),
        Index('idx_global_duplicate_groups_pair_key', 'pair_key'),
    )

    @property
    def properties(self) -> list:
        """グループに属する物件（削除済みのものは含まない）"""
        return [member.property for member in self.members if member.property is not None]

    @property
    def is_pending(self) -> bool:
        return self.status == DuplicateGroupStatus.PENDING.value


class GlobalDuplicateProperty(Base):
    """重複候補グループのメンバーテーブル"""
    __tablename__ = "global_duplicate_properties"

    id = Column(Integer, primary_key=True, index=True)
    duplicate_group_id = Column(
        Integer, ForeignKey("global_duplicate_groups.id", ondelete="CASCADE"), nullable=False
    )
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False)
    similarity_reasons = Column(JSON, nullable=False, default=list)  # 類似と判定された理由
    created_at = Column(DateTime, server_default=func.now())

    # リレーションシップ
    group = relationship("GlobalDuplicateGroup", back_populates="members")
    property = relationship("Property", back_populates="duplicate_memberships")

    __table_args__ = (
        UniqueConstraint('duplicate_group_id', 'property_id', name='unique_duplicate_group_property'),
        Index('idx_global_duplicate_properties_group', 'duplicate_group_id'),
    )


class MergedPropertyTracking(Base):
    """統合済み物件の追跡テーブル（再インポート防止用、作成後は更新・削除しない）"""
    __tablename__ = "merged_properties_tracking"

    id = Column(Integer, primary_key=True, index=True)
    original_property_id = Column(Integer, nullable=False)    # 統合された物件ID（削除済み）
    target_property_id = Column(Integer, nullable=False)      # 統合先物件ID（外部キーなし）
    merged_by = Column(String(100), nullable=False)           # 統合実行者
    merge_date = Column(DateTime, server_default=func.now())
    original_data = Column(JSON, nullable=False)              # 削除前の物件データ
    merge_reason = Column(Text)                               # 統合理由
    fingerprint = Column(String(64), nullable=False)          # 物件フィンガープリント

    __table_args__ = (
        Index('idx_merged_properties_fingerprint', 'fingerprint'),
        Index('idx_merged_properties_original', 'original_property_id'),
        Index('idx_merged_properties_target', 'target_property_id'),
    )


class DuplicateDetectionLog(Base):
    """重複検出の監査ログテーブル（追記のみ）"""
    __tablename__ = "duplicate_detection_log"

    id = Column(Integer, primary_key=True, index=True)
    action_type = Column(String(20), nullable=False)          # scan, merge, dismiss
    duplicate_group_id = Column(Integer, ForeignKey("global_duplicate_groups.id"))
    admin_user_id = Column(String(100), nullable=False)
    affected_properties = Column(JSON, nullable=False, default=list)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index('idx_duplicate_detection_log_admin', 'admin_user_id'),
        Index('idx_duplicate_detection_log_created', 'created_at'),
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'action_type': self.action_type,
            'duplicate_group_id': self.duplicate_group_id,
            'admin_user_id': self.admin_user_id,
            'affected_properties': self.affected_properties or [],
            'details': self.details or {},
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
