import logging
import re
from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo import DESCENDING
from typing import Optional

from dataBase import MongoStore, get_store
from dependencies import get_current_user, get_lifecycle
from models.book_models import GenreEnum
from models.request_models import RequestStatus
from models.user_models import Actor, UpdateProfile
from request_lifecycle import RequestLifecycleManager
from utils import pagination, serialize_user

router = APIRouter(prefix="/users", tags=["users"])

logger = logging.getLogger(__name__)


async def deactivate_user(store: MongoStore, lifecycle: RequestLifecycleManager, user_id: str) -> int:
    """Deactivate a user, withdraw their books and cancel their open requests."""
    await store.update_one("users", user_id, {"isActive": False})
    await store.update_many("books", {"owner": user_id}, {"isActive": False})
    cancelled = await lifecycle.cancel_for_user(user_id)
    logger.info("User %s deactivated, %d open requests cancelled", user_id, cancelled)
    return cancelled


@router.put("/profile")
async def update_profile(
    updated_data: UpdateProfile,
    actor: Actor = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
):
    update_dict = updated_data.model_dump(mode="json", exclude_none=True)
    if not update_dict:
        raise HTTPException(status_code=400, detail="No fields provided for update")

    updated_user = await store.update_one("users", actor.id, update_dict)
    return {
        "status": "success",
        "message": "Profile updated successfully",
        "data": {"user": serialize_user(updated_user)},
    }


@router.delete("/account")
async def deactivate_account(
    actor: Actor = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
):
    await deactivate_user(store, lifecycle, actor.id)
    return {"status": "success", "message": "Account deactivated successfully"}


@router.get("")
async def get_users(
    search: Optional[str] = None,
    genre: Optional[GenreEnum] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
):
    query = {"isActive": True}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"location.city": pattern}, {"location.state": pattern}]
    if genre:
        query["preferences.genres"] = genre.value

    users = await store.find_many("users", query, skip=(page - 1) * limit, limit=limit)
    total = await store.count("users", query)
    return {
        "status": "success",
        "data": {
            "users": [serialize_user(user, include_email=False) for user in users],
            "pagination": pagination(page, limit, total),
        },
    }


@router.get("/dashboard")
async def get_dashboard(actor: Actor = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    involved = {"$or": [{"requester": actor.id}, {"owner": actor.id}]}
    pending = RequestStatus.PENDING.value

    stats = {
        "booksCount": await store.count("books", {"owner": actor.id, "isActive": True}),
        "sentRequests": await store.count("requests", {"requester": actor.id}),
        "receivedRequests": await store.count("requests", {"owner": actor.id}),
        "pendingSentRequests": await store.count("requests", {"requester": actor.id, "status": pending}),
        "pendingReceivedRequests": await store.count("requests", {"owner": actor.id, "status": pending}),
        "completedExchanges": await store.count("requests", {**involved, "status": RequestStatus.COMPLETED.value}),
    }

    recent = await store.find_many("requests", involved, limit=10, sort=("updatedAt", DESCENDING))
    names = {}
    for request in recent:
        book = await store.find_one("books", {"id": request["book"]})
        request["bookInfo"] = {"title": book.get("title"), "author": book.get("author")} if book else None
        for party in ("requester", "owner"):
            if request[party] not in names:
                user = await store.find_one("users", {"id": request[party]})
                names[request[party]] = user.get("name") if user else "Unknown"
            request[f"{party}Name"] = names[request[party]]

    return {"status": "success", "data": {"stats": stats, "recentActivity": recent}}


@router.get("/{user_id}")
async def get_user_profile(user_id: str, store: MongoStore = Depends(get_store)):
    user = await store.find_one("users", {"id": user_id})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not user.get("isActive", True):
        raise HTTPException(status_code=404, detail="User account is deactivated")

    profile = serialize_user(user, include_email=False)
    profile["booksListed"] = await store.count("books", {"owner": user["id"], "isActive": True})
    profile["exchangesCompleted"] = await store.count(
        "requests",
        {"$or": [{"requester": user["id"]}, {"owner": user["id"]}], "status": RequestStatus.COMPLETED.value},
    )
    return {"status": "success", "data": {"user": profile}}
