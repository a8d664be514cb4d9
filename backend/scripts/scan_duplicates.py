#!/usr/bin/env python3
"""
重複物件スキャンスクリプト

定期実行（cronなど）から重複候補を検出し、レビュー待ちグループとして登録します。

使い方:
    python -m backend.scripts.scan_duplicates --user-id user-1
    python -m backend.scripts.scan_duplicates --global --dry-run
"""

import argparse
import sys
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from backend.listing_dedup.database import get_db_context
from backend.listing_dedup.exceptions import DuplicateDetectionError
from backend.listing_dedup.utils.duplicate_detector import DuplicateScanner
from backend.listing_dedup.utils.duplicate_group_store import DuplicateGroupStore
from backend.listing_dedup.utils.logger import app_logger, error_logger

SYSTEM_OPERATOR = "system"


def run_scan(
    db: Session,
    user_id: Optional[str] = None,
    dry_run: bool = False,
    operator_id: str = SYSTEM_OPERATOR
) -> Dict[str, Any]:
    """
    スキャンを実行

    Args:
        user_id: 対象所有者（Noneの場合は所有者間の全体スキャン）
        dry_run: Trueの場合はグループを登録しない
    """
    scanner = DuplicateScanner(db)
    matches = scanner.scan_owner(user_id) if user_id else scanner.scan_global()

    if dry_run:
        return {"duplicates_found": len(matches), "groups_created": 0, "matches": matches}

    store = DuplicateGroupStore(db)
    groups = store.persist(matches)
    store.record_scan(operator_id, matches, groups, scan_trigger="cli", user_id=user_id)

    return {"duplicates_found": len(matches), "groups_created": len(groups), "matches": matches}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='重複物件をスキャンしてレビュー待ちグループを作成')
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument('--user-id', help='スキャン対象の所有者ID')
    target.add_argument('--global', dest='global_scan', action='store_true', help='所有者間の全体スキャン')
    parser.add_argument('--dry-run', action='store_true', help='検出結果の表示のみ（登録しない）')
    args = parser.parse_args(argv)

    try:
        with get_db_context() as db:
            result = run_scan(db, user_id=args.user_id, dry_run=args.dry_run)
    except DuplicateDetectionError as e:
        error_logger.error("重複スキャンに失敗しました", extra={"error_message": str(e)})
        print(f"エラーが発生しました: {e}")
        return 1

    for match in result["matches"]:
        ids = ", ".join(str(pid) for pid in match.property_ids)
        print(f"  物件ID {ids}: 信頼度 {match.confidence_score:.2f}")
        for reason in match.reasons:
            print(f"    - {reason}")

    if args.dry_run:
        print(f"\n[DRY RUN] {result['duplicates_found']}件の重複候補が見つかりました。")
    else:
        print(f"\n{result['duplicates_found']}件の重複候補、{result['groups_created']}件のグループを登録しました。")

    app_logger.info("重複スキャンスクリプト完了", extra={
        "duplicates_found": result["duplicates_found"],
        "groups_created": result["groups_created"],
        "dry_run": args.dry_run
    })
    return 0


if __name__ == "__main__":
    sys.exit(main())
