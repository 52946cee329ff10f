import logging
import re
from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo import DESCENDING
from typing import Optional

from dataBase import MongoStore, get_store
from dependencies import get_current_user, get_lifecycle, get_optional_user
from models.book_models import (
    AgeGroupEnum,
    AvailabilityType,
    BookStatus,
    ConditionEnum,
    GenreEnum,
    PostBookModel,
    RateBookModel,
    UpdateBookModel,
)
from models.request_models import RequestStatus
from models.user_models import Actor
from request_lifecycle import RequestLifecycleManager
from utils import pagination, unwrap

router = APIRouter(prefix="/books", tags=["books"])

logger = logging.getLogger(__name__)


async def ensure_can_release(store: MongoStore, book_id: str, fields: dict):
    """A book held by an accepted request cannot be marked Available again."""
    if fields.get("status") != BookStatus.AVAILABLE.value:
        return
    held = await store.count("requests", {"book": book_id, "status": RequestStatus.ACCEPTED.value})
    if held:
        raise HTTPException(status_code=400, detail="Book is reserved by an accepted request")


@router.get("")
async def get_books(
    search: Optional[str] = None,
    genre: Optional[GenreEnum] = None,
    language: Optional[str] = None,
    condition: Optional[ConditionEnum] = None,
    type: Optional[AvailabilityType] = None,
    ageGroup: Optional[AgeGroupEnum] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    actor: Optional[Actor] = Depends(get_optional_user),
    store: MongoStore = Depends(get_store),
):
    query = {"isActive": True, "status": BookStatus.AVAILABLE.value}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"author": pattern}]
    if genre:
        query["genre"] = genre.value
    if language:
        query["language"] = language
    if condition:
        query["condition"] = condition.value
    if type:
        query["availabilityType"] = type.value
    if ageGroup:
        query["ageGroup"] = ageGroup.value
    if actor:
        query["owner"] = {"$ne": actor.id}

    books = await store.find_many("books", query, skip=(page - 1) * limit, limit=limit)
    total = await store.count("books", query)

    return {
        "status": "success",
        "data": {
            "books": books,
            "pagination": pagination(page, limit, total),
        },
    }


@router.get("/my-books")
async def get_my_books(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    actor: Actor = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
):
    query = {"owner": actor.id, "isActive": True}
    books = await store.find_many("books", query, skip=(page - 1) * limit, limit=limit)
    total = await store.count("books", query)
    return {
        "status": "success",
        "data": {
            "books": books,
            "pagination": pagination(page, limit, total),
        },
    }


@router.get("/recommendations")
async def get_recommendations(
    limit: int = Query(10, ge=1, le=50),
    actor: Actor = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
):
    """Available books from other users, in the caller's preferred genres when set, best rated first."""
    user = await store.find_one("users", {"id": actor.id}) or {}
    preferred_genres = (user.get("preferences") or {}).get("genres") or []

    query = {"isActive": True, "status": BookStatus.AVAILABLE.value, "owner": {"$ne": actor.id}}
    if preferred_genres:
        query["genre"] = {"$in": preferred_genres}

    recommendations = await store.find_many("books", query, limit=limit, sort=("rating.average", DESCENDING))
    return {"status": "success", "data": {"recommendations": recommendations}}


@router.get("/{book_id}")
async def get_book(book_id: str, store: MongoStore = Depends(get_store)):
    book = await store.find_one("books", {"id": book_id, "isActive": True})
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")

    owner = await store.find_one("users", {"id": book["owner"]})
    book["ownerInfo"] = {
        "id": book["owner"],
        "name": owner.get("name") if owner else "Unknown",
        "rating": owner.get("rating") if owner else None,
    }
    return {"status": "success", "data": {"book": book}}


@router.post("", status_code=201)
async def create_book(
    payload: PostBookModel,
    actor: Actor = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
):
    book_data = payload.model_dump(mode="json")
    book_data.update({
        "owner": actor.id,
        "rating": {"average": 0, "count": 0},
        "isActive": True,
    })
    book = await store.insert_one("books", book_data)
    logger.info("Book %s listed by %s", book["id"], actor.id)
    return {
        "status": "success",
        "message": "Book created successfully",
        "data": {"book": book},
    }


@router.put("/{book_id}")
async def update_book(
    book_id: str,
    payload: UpdateBookModel,
    actor: Actor = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
):
    book = await store.find_one("books", {"id": book_id, "isActive": True})
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    if book["owner"] != actor.id:
        raise HTTPException(status_code=403, detail="Not authorized to update this book")

    update_fields = payload.model_dump(mode="json", exclude_none=True)
    if not update_fields:
        raise HTTPException(status_code=400, detail="No fields provided to update")
    await ensure_can_release(store, book["id"], update_fields)

    updated = await store.update_one("books", book["id"], update_fields)
    return {
        "status": "success",
        "message": "Book updated successfully",
        "data": {"book": updated},
    }


@router.delete("/{book_id}")
async def delete_book(
    book_id: str,
    actor: Actor = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
):
    book = await store.find_one("books", {"id": book_id, "isActive": True})
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    if book["owner"] != actor.id:
        raise HTTPException(status_code=403, detail="Not authorized to delete this book")

    open_requests = await store.count(
        "requests",
        {"book": book["id"], "status": {"$in": [RequestStatus.PENDING.value, RequestStatus.ACCEPTED.value]}},
    )
    if open_requests:
        raise HTTPException(status_code=400, detail="Cannot delete book with pending requests")

    await store.update_one("books", book["id"], {"isActive": False})
    logger.info("Book %s withdrawn by %s", book["id"], actor.id)
    return {"status": "success", "message": "Book deleted successfully"}


@router.post("/{book_id}/rate")
async def rate_book(
    book_id: str,
    payload: RateBookModel,
    actor: Actor = Depends(get_current_user),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
):
    book = unwrap(await lifecycle.rate_book(book_id, actor.id, payload.rating))
    return {
        "status": "success",
        "message": "Book rated successfully",
        "data": {"rating": book["rating"]},
    }
