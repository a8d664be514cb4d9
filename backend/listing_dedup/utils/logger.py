"""
ロギングユーティリティ
アプリケーション全体で使用する統一されたロガーを提供
"""

import json
import logging
import logging.handlers
import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# ログディレクトリの設定
LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)

# ログファイルのパス
GENERAL_LOG_FILE = LOG_DIR / "app.log"
ERROR_LOG_FILE = LOG_DIR / "errors.log"
API_LOG_FILE = LOG_DIR / "api_requests.log"
DB_LOG_FILE = LOG_DIR / "database.log"

# LogRecordの標準属性（extraとして出力しない）
_STANDARD_ATTRIBUTES = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "getMessage",
}


class StructuredFormatter(logging.Formatter):
    """構造化されたログフォーマッター（JSON形式）"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # エラーの場合は追加情報を含める
        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        # カスタム属性があれば追加
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRIBUTES:
                log_data[key] = value

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logger(
    name: str,
    log_file: Path,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    use_json: bool = True
) -> logging.Logger:
    """ロガーをセットアップ"""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # 既存のハンドラーをクリア
    logger.handlers.clear()

    # ファイルハンドラー（ローテーション付き）
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )

    if use_json:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # コンソールハンドラー（開発環境用）
    if os.getenv("DEBUG", "false").lower() == "true":
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


# アプリケーション用ロガー
app_logger = setup_logger("listing_dedup", GENERAL_LOG_FILE, level=logging.DEBUG)
error_logger = setup_logger("listing_dedup.errors", ERROR_LOG_FILE, level=logging.ERROR)
api_logger = setup_logger("listing_dedup.api", API_LOG_FILE)
db_logger = setup_logger("listing_dedup.database", DB_LOG_FILE)


class LogContext:
    """ログコンテキストマネージャー（処理時間と成否を記録）"""

    def __init__(self, logger: logging.Logger, operation: str, **kwargs):
        self.logger = logger
        self.operation = operation
        self.context = kwargs
        self.start_time = None

    def __enter__(self):
        self.start_time = datetime.now(timezone.utc)
        self.logger.info(f"{self.operation} started", extra={
            "operation": self.operation,
            "context": self.context,
            "start_time": self.start_time.isoformat()
        })
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()

        if exc_type is None:
            self.logger.info(f"{self.operation} completed", extra={
                "operation": self.operation,
                "context": self.context,
                "duration_seconds": duration,
                "status": "success"
            })
        else:
            self.logger.error(f"{self.operation} failed", extra={
                "operation": self.operation,
                "context": self.context,
                "duration_seconds": duration,
                "status": "error",
                "error_type": exc_type.__name__,
                "error_message": str(exc_val)
            })
            # エラーログにも記録
            error_logger.error(f"{self.operation} failed", extra={
                "operation": self.operation,
                "context": self.context,
                "error_type": exc_type.__name__,
                "error_message": str(exc_val),
                "traceback": traceback.format_tb(exc_tb)
            })

        return False  # 例外を再発生させる


def log_api_request(request, response=None, error=None):
    """APIリクエストをログに記録"""
    log_data = {
        "method": request.method,
        "path": str(request.url.path),
        "query_params": dict(request.query_params),
        "client_host": request.client.host if request.client else None,
    }

    if response is not None:
        log_data["status_code"] = response.status_code
        api_logger.info("API request", extra=log_data)
    elif error is not None:
        log_data["error"] = str(error)
        api_logger.error("API request failed", extra=log_data, exc_info=True)


def log_database_operation(operation: str, table: str, affected_rows: int = 0, error: Optional[Exception] = None):
    """データベース操作をログに記録"""
    log_data = {
        "operation": operation,
        "table": table,
        "affected_rows": affected_rows
    }

    if error:
        db_logger.error(f"Database operation failed: {operation} on {table}",
                        extra={**log_data, "error_message": str(error)})
    else:
        db_logger.info(f"Database operation: {operation} on {table}", extra=log_data)
