from passlib.context import CryptContext
import jwt
from datetime import datetime, timedelta, timezone
from fastapi import HTTPException
from math import ceil
from typing import Optional, Dict, Any
import os

from request_lifecycle import ErrorKind, LifecycleError, Result

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
SECRET_KEY = os.getenv("SECRET_KEY", "9f1d4c7be2a05863d1e7c4a9b6f02e58a3c91d7406b2e5f8c1a4d7093be6f215")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))  # 7 days

ERROR_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.VALIDATION: 400,
}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode.update({"exp": expire, "iat": now})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and verify JWT access token"""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        return None


def error_to_http(error: LifecycleError) -> HTTPException:
    detail = {"message": error.message}
    if error.code:
        detail["code"] = error.code
    if error.details:
        detail["details"] = error.details
    return HTTPException(status_code=ERROR_STATUS_CODES[error.kind], detail=detail)


def unwrap(result: Result):
    """Return the value of a successful result or raise its HTTP error."""
    if not result.ok:
        raise error_to_http(result.error)
    return result.value


def serialize_user(user: Dict[str, Any], include_email: bool = True) -> Dict[str, Any]:
    data = {k: v for k, v in user.items() if k != "password"}
    if not include_email:
        data.pop("email", None)
    return data


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": ceil(total / limit) if limit else 0,
    }
