"""
日付時刻のユーティリティ関数
"""
from datetime import datetime, timezone


def get_utc_now() -> datetime:
    """
    現在のUTC時刻を取得（タイムゾーンなし）

    timestamp without time zone のカラム用にタイムゾーン情報を削除して返す
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
