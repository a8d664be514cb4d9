"""
管理者API モジュール
機能別に分割された管理者向けAPIエンドポイント
"""

from fastapi import APIRouter

# 各サブモジュールのルーターをインポート
from .duplicates import router as duplicates_router

# メインルーターを作成
router = APIRouter(prefix="/api/admin", tags=["admin"])

# サブルーターを統合
router.include_router(duplicates_router)
