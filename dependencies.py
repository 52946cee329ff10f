"""
Shared FastAPI dependencies: store injection, bearer-token authentication
and role checks.
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dataBase import MongoStore, get_store
from models.user_models import Actor, Role
from request_lifecycle import RequestLifecycleManager
from utils import decode_access_token

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_lifecycle(store: MongoStore = Depends(get_store)) -> RequestLifecycleManager:
    return RequestLifecycleManager(store)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(status_code=401, detail=message, headers={"WWW-Authenticate": "Bearer"})


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: MongoStore = Depends(get_store),
) -> Actor:
    if credentials is None:
        raise _unauthorized("Access denied. No token provided.")

    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("id"):
        raise _unauthorized("Token is not valid.")

    user = await store.find_one("users", {"id": payload["id"]})
    if not user:
        raise _unauthorized("Token is not valid.")
    if not user.get("isActive", True):
        raise _unauthorized("Account is deactivated.")

    return Actor(
        id=user["id"],
        role=user.get("role", Role.USER.value),
        name=user.get("name"),
        email=user.get("email"),
    )


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: MongoStore = Depends(get_store),
) -> Optional[Actor]:
    """Like get_current_user, but anonymous callers get None instead of a 401."""
    if credentials is None:
        return None
    try:
        return await get_current_user(credentials, store)
    except HTTPException:
        logger.debug("Ignoring invalid bearer token on public endpoint")
        return None


async def require_admin(actor: Actor = Depends(get_current_user)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Access denied. Admin privileges required.")
    return actor
