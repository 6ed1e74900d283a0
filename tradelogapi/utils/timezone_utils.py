"""
타임존 유틸리티

저장은 항상 UTC, 일 단위 쿼터(리워드 광고 횟수)는 인도 표준시(IST) 기준으로 계산합니다.
"""

from datetime import date, datetime, timezone, timedelta
from typing import Optional

# 인도 표준시 (IST = UTC+5:30)
IST = timezone(timedelta(hours=5, minutes=30))


def utc_now() -> datetime:
    """현재 UTC 시간을 반환합니다."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """naive datetime은 UTC로 간주하여 tz-aware UTC로 변환합니다.

    SQLite는 타임존 정보 없이 값을 돌려주므로 비교 전에 항상 정규화합니다.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_ist(dt: datetime) -> datetime:
    """UTC 또는 다른 타임존의 datetime을 IST로 변환합니다."""
    return ensure_utc(dt).astimezone(IST)


def get_ist_date(now: Optional[datetime] = None) -> date:
    """IST 기준 날짜를 반환합니다 (일일 쿼터 경계)."""
    return to_ist(now or utc_now()).date()
