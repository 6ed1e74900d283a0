from abc import ABC
from typing import TypeVar, Generic, Optional, List, Dict, Any, Type
from sqlalchemy.orm import Session
from pydantic import BaseModel

T = TypeVar("T")
SchemaType = TypeVar("SchemaType", bound=BaseModel)


class BaseRepository(Generic[T, SchemaType], ABC):
    """모든 리포지토리의 베이스 클래스 - Pydantic 응답 보장

    commit=False 로 호출하면 flush 까지만 수행하고, 트랜잭션 경계는 호출한
    서비스가 결정합니다 (원장 + 리뷰 레코드를 한 트랜잭션으로 묶을 때 사용).
    """

    def __init__(
        self, model_class: Type[T], schema_class: Type[SchemaType], db: Session
    ):
        self.model_class = model_class
        self.schema_class = schema_class
        self.db = db

    def _to_schema(self, model_instance: Any) -> Optional[SchemaType]:
        """SQLAlchemy 모델을 Pydantic 스키마로 변환"""
        if model_instance is None:
            return None
        return self.schema_class.model_validate(model_instance)

    def _to_schemas(self, model_instances: List[Any]) -> List[SchemaType]:
        return [self.schema_class.model_validate(instance) for instance in model_instances]

    def _ensure_clean_session(self) -> None:
        """실패한 트랜잭션이 남아 있으면 롤백하여 세션을 정상화"""
        if not self.db.is_active:
            self.db.rollback()

    def get_by_id(self, id: Any) -> Optional[SchemaType]:
        """ID로 조회 - Pydantic 스키마 반환"""
        self._ensure_clean_session()
        model_instance = (
            self.db.query(self.model_class)
            .filter(getattr(self.model_class, "id") == id)
            .first()
        )
        return self._to_schema(model_instance)

    def find_all(
        self,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[Any] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[SchemaType]:
        """조건에 맞는 모든 레코드 조회 - Pydantic 스키마 리스트 반환"""
        self._ensure_clean_session()
        query = self._filtered_query(filters)

        if order_by is not None:
            query = query.order_by(order_by)

        if offset:
            query = query.offset(offset)

        if limit:
            query = query.limit(limit)

        return self._to_schemas(query.all())

    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        """레코드 수 조회"""
        self._ensure_clean_session()
        return self._filtered_query(filters).count()

    def create(self, commit: bool = True, **kwargs) -> Optional[SchemaType]:
        """새 레코드 생성 - Pydantic 스키마 반환"""
        self._ensure_clean_session()
        instance = self.model_class(**kwargs)
        self.db.add(instance)
        try:
            self.db.flush()
            self.db.refresh(instance)
            if commit:
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return self._to_schema(instance)

    def _filtered_query(self, filters: Optional[Dict[str, Any]] = None):
        query = self.db.query(self.model_class)
        if filters:
            for key, value in filters.items():
                if hasattr(self.model_class, key):
                    query = query.filter(getattr(self.model_class, key) == value)
        return query
