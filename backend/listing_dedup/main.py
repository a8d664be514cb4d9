#!/usr/bin/env python3
"""
物件重複検出API サーバー
重複候補のスキャン・レビュー・統合を管理者向けに提供
"""

import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .database import init_db
from .utils.logger import api_logger, error_logger, log_api_request

# APIルーターのインポート
from .api.admin import router as admin_router

app = FastAPI(title="物件重複検出API", version="1.0.0")

# CORS設定
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ロギングミドルウェア
@app.middleware("http")
async def log_requests(request, call_next):
    """すべてのHTTPリクエストをログに記録"""
    start_time = time.time()

    try:
        response = await call_next(request)
        process_time = time.time() - start_time

        log_api_request(request, response=response)

        response.headers["X-Process-Time"] = str(process_time)
        return response

    except Exception as e:
        process_time = time.time() - start_time
        log_api_request(request, error=e)
        error_logger.error(
            f"Request failed: {str(e)}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "process_time": process_time
            },
            exc_info=True
        )
        raise


# ルーターの登録
app.include_router(admin_router)


# 起動時の初期化
@app.on_event("startup")
async def startup_event():
    """アプリケーション起動時の処理"""
    init_db()
    api_logger.info("データベース初期化完了")


# ヘルスチェック
@app.get("/health")
async def health_check():
    """ヘルスチェックエンドポイント"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import sys
    import uvicorn

    # ポート番号の設定
    port = 8001
    if len(sys.argv) > 1:
        try:
            port = int(sys.argv[1])
        except ValueError:
            print(f"無効なポート番号: {sys.argv[1]}")
            sys.exit(1)

    print(f"APIサーバーを起動中... http://localhost:{port}")
    print(f"対話的APIドキュメント: http://localhost:{port}/docs")

    uvicorn.run(
        "backend.listing_dedup.main:app",
        host="0.0.0.0",
        port=port,
        reload=True,
        log_level="info"
    )
