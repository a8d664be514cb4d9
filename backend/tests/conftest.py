"""
テスト共通のフィクスチャ
"""

import os
import tempfile

# アプリケーションのモジュールを読み込む前に設定する
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "listing_dedup_test_logs"))

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.listing_dedup.database import Base
from backend.listing_dedup.models import Property, PropertyMedia

# テスト用のデータベース設定
TEST_DATABASE_URL = "sqlite:///:memory:"

# アレクサンダー広場の物件（基準データ）
ALEXANDERPLATZ = {
    "user_id": "user-1",
    "title": None,
    "description": None,
    "street_name": "Alexanderplatz",
    "street_number": None,
    "city": "Berlin",
    "zip_code": "10178",
    "region": "Berlin",
    "country": "Germany",
    "bedrooms": 2,
    "bathrooms": None,
    "square_meters": 75.0,
    "monthly_rent": 1200.0,
}


@pytest.fixture
def db_session():
    """テスト用のデータベースセッションを作成"""
    # TestClientのスレッドからも同じ接続を使うためStaticPoolにする
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )

    # PostgreSQLと同様に外部キー制約を有効にする
    @event.listens_for(engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_property(db_session):
    """物件を作成して保存するファクトリ"""
    def _make(media=None, **overrides):
        data = dict(ALEXANDERPLATZ)
        data.update(overrides)
        prop = Property(**data)
        for item in media or []:
            prop.media.append(PropertyMedia(**item))
        db_session.add(prop)
        db_session.commit()
        return prop

    return _make
