import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from tradelogapi.config import settings
from tradelogapi.core.exceptions import AuthenticationError, AuthorizationError
from tradelogapi.schemas.auth import CurrentAccount, TokenPayload

logger = logging.getLogger(__name__)

# JWT Bearer 토큰 스킴
security = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """내부 도구/테스트용 토큰 발급 (사용자 로그인은 별도 서비스 담당)"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> TokenPayload:
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        return TokenPayload.model_validate(payload)
    except (JWTError, PydanticValidationError) as e:
        logger.warning(f"Rejected access token: {type(e).__name__}")
        raise AuthenticationError(message="Invalid authentication credentials")


def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentAccount:
    """필수 인증 - 유효한 Bearer 토큰의 account_id"""
    if not credentials:
        raise AuthenticationError(message="Authentication required")

    token_data = decode_access_token(credentials.credentials)
    return CurrentAccount(account_id=token_data.account_id, is_admin=token_data.is_admin)


def require_admin(
    current_account: CurrentAccount = Depends(get_current_account),
) -> CurrentAccount:
    """관리자 권한 확인"""
    if not current_account.is_admin:
        raise AuthorizationError(message="Admin privileges required")
    return current_account


def verify_engine_token(x_engine_token: Optional[str] = Header(None)) -> None:
    """분석 엔진 콜백 인증 (X-Engine-Token)"""
    expected = settings.ANALYSIS_ENGINE_CALLBACK_TOKEN
    if not expected or not x_engine_token or not hmac.compare_digest(x_engine_token, expected):
        raise AuthenticationError(message="Invalid engine token")
