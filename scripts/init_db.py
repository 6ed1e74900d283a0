import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text

from tradelogapi.config import settings
from tradelogapi.database.connection import engine
from tradelogapi.models.base import Base
from tradelogapi.models import credit, trade_log  # noqa: F401


def init_db():
    """데이터베이스 초기화"""
    try:
        # 스키마 생성 (PostgreSQL 만)
        if not settings.is_sqlite:
            with engine.connect() as conn:
                conn.execute(
                    text(f"CREATE SCHEMA IF NOT EXISTS {settings.POSTGRES_SCHEMA}")
                )
                conn.commit()

        # 테이블 생성
        Base.metadata.create_all(bind=engine)
        print(
            f"Database initialized successfully ({', '.join(sorted(Base.metadata.tables))})"
        )

    except Exception as e:
        print(f"Database initialization failed: {str(e)}")
        raise


if __name__ == "__main__":
    init_db()
