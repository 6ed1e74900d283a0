from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime, func
from sqlalchemy.orm import Mapped, declarative_base, declared_attr, mapped_column

Base = declarative_base()


class TimestampMixin:
    """생성/수정 시각 컬럼 믹스인"""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), server_default=func.now())

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
        )


class BaseModel(Base, TimestampMixin):
    """모든 테이블 모델의 베이스 클래스"""

    __abstract__ = True

    def to_dict(self) -> Dict[str, Any]:
        """컬럼 값을 딕셔너리로 변환"""
        return {
            column.name: getattr(self, column.name) for column in self.__table__.columns
        }
