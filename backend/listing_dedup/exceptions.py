"""
カスタム例外クラスの定義
"""


class DuplicateDetectionError(Exception):
    """重複検出処理の基底例外"""
    pass


class PropertyFetchError(DuplicateDetectionError):
    """物件一覧を取得できなかった場合の例外（スキャンは中断される）"""
    pass


class DuplicatePersistenceError(DuplicateDetectionError):
    """グループ・フィンガープリント・削除・状態更新の書き込みに失敗した場合の例外"""
    pass


class AuthenticationRequiredError(DuplicateDetectionError):
    """操作者が認証されていない場合の例外（変更前に送出される）"""
    pass


class DuplicateGroupNotFoundError(DuplicateDetectionError):
    """重複グループが存在しない場合の例外"""

    def __init__(self, group_id: int):
        super().__init__(f"Duplicate group not found: id={group_id}")
        self.group_id = group_id


class InvalidGroupStateError(DuplicateDetectionError):
    """レビュー済みのグループに対して統合・却下を行おうとした場合の例外"""

    def __init__(self, group_id: int, status: str):
        super().__init__(f"Duplicate group {group_id} is already {status}")
        self.group_id = group_id
        self.status = status
