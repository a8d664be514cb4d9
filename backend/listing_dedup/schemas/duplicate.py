"""重複検出関連のPydanticスキーマ"""
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime


class PropertyMediaSchema(BaseModel):
    id: int
    url: str
    media_type: Optional[str]
    title: Optional[str]

    class Config:
        from_attributes = True


class PropertySchema(BaseModel):
    id: int
    user_id: str
    title: Optional[str]
    description: Optional[str]
    street_name: Optional[str]
    street_number: Optional[str]
    city: Optional[str]
    zip_code: Optional[str]
    region: Optional[str]
    country: Optional[str]
    bedrooms: Optional[int]
    bathrooms: Optional[int]
    square_meters: Optional[float]
    monthly_rent: Optional[float]
    media: List[PropertyMediaSchema] = []

    class Config:
        from_attributes = True


class DuplicateMemberSchema(BaseModel):
    id: int
    property_id: int
    similarity_reasons: List[str]
    property: Optional[PropertySchema]

    class Config:
        from_attributes = True


class DuplicateGroupSchema(BaseModel):
    id: int
    confidence_score: float
    status: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    reviewed_by: Optional[str]
    reviewed_at: Optional[datetime]
    merge_target_property_id: Optional[int]
    notes: Optional[str]
    members: List[DuplicateMemberSchema]

    class Config:
        from_attributes = True


class DuplicateScanRequest(BaseModel):
    user_id: Optional[str] = None           # 対象所有者（scope=ownerの場合は必須）
    scope: str = Field("owner", pattern="^(owner|global)$")


class DuplicateMatchSchema(BaseModel):
    confidence: float
    reasons: List[str]
    properties: List[int]


class DuplicateScanResponse(BaseModel):
    success: bool
    message: str
    duplicates_found: int
    groups_created: int
    groups: List[DuplicateMatchSchema]


class MergeRequest(BaseModel):
    target_property_id: int
    property_ids: List[int] = Field(..., min_length=2)  # 統合先を含む
    reason: Optional[str] = None


class MergeResponse(BaseModel):
    success: bool
    group_id: int
    target_property_id: int
    deleted_property_ids: List[int]
    updated_group_ids: List[int] = []    # 所属を付け替えた他のグループ
    resolved_group_ids: List[int] = []   # 今回の統合で解消された他のグループ


class DismissRequest(BaseModel):
    notes: Optional[str] = None


class CandidatePropertySchema(BaseModel):
    """再インポート判定の対象物件"""
    title: Optional[str] = None
    street_name: Optional[str] = None
    street_number: Optional[str] = None
    zip_code: Optional[str] = None
    city: Optional[str] = None
    monthly_rent: Optional[float] = None
    bedrooms: Optional[int] = None
    square_meters: Optional[float] = None


class MergedCheckResponse(BaseModel):
    previously_merged: bool
    merge_target_property_id: Optional[int]


class DetectionLogSchema(BaseModel):
    id: int
    action_type: str
    duplicate_group_id: Optional[int]
    admin_user_id: str
    affected_properties: List[int]
    details: Dict[str, Any]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True
