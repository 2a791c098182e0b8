"""
安全模块

- JWT 访问令牌的签发（解析在 edustore.api.deps 中）
- 密码哈希（bcrypt，通过 passlib）
"""
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from passlib.context import CryptContext

from edustore.core.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


ALGORITHM = "HS256"


def create_access_token(subject: str | Any, expires_delta: timedelta) -> str:
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"exp": expire, "sub": str(subject)}
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def issue_user_token(user_id: int) -> tuple[str, int]:
    """
    按配置的有效期为用户签发令牌

    Returns:
        (token, 有效秒数)
    """
    expires = timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)
    return create_access_token(user_id, expires_delta=expires), int(expires.total_seconds())


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)
