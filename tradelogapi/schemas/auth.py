from typing import Optional

from pydantic import BaseModel


class TokenPayload(BaseModel):
    account_id: int
    sub: Optional[str] = None
    is_admin: bool = False


class CurrentAccount(BaseModel):
    """인증된 요청의 계정 정보"""

    account_id: int
    is_admin: bool = False
