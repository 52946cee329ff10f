import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from dataBase import MongoStore, get_store
from dependencies import get_lifecycle, require_admin
from models.admin_models import AdminUpdateBook, AdminUpdateRequest, AdminUpdateUser, CreateAdmin
from models.book_models import BookStatus
from models.request_models import RequestKind, RequestStatus
from models.user_models import Actor, Role
from request_lifecycle import RequestLifecycleManager
from routes.auth_routes import create_user
from routes.book_routes import ensure_can_release
from routes.user_routes import deactivate_user
from utils import pagination, serialize_user, unwrap

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])

logger = logging.getLogger(__name__)


@router.get("/dashboard")
async def get_admin_dashboard(store: MongoStore = Depends(get_store)):
    overview = {
        "totalUsers": await store.count("users"),
        "activeUsers": await store.count("users", {"isActive": True}),
        "totalBooks": await store.count("books"),
        "availableBooks": await store.count("books", {"status": BookStatus.AVAILABLE.value, "isActive": True}),
        "totalRequests": await store.count("requests"),
        "pendingRequests": await store.count("requests", {"status": RequestStatus.PENDING.value}),
        "completedRequests": await store.count("requests", {"status": RequestStatus.COMPLETED.value}),
    }
    recent_requests = await store.find_many("requests", limit=10)

    return {
        "status": "success",
        "data": {
            "overview": overview,
            "recentActivity": {"requests": recent_requests},
        },
    }


@router.get("/users")
async def get_all_users(
    role: Optional[Role] = None,
    isActive: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    store: MongoStore = Depends(get_store),
):
    query = {}
    if role:
        query["role"] = role.value
    if isActive is not None:
        query["isActive"] = isActive

    users = await store.find_many("users", query, skip=(page - 1) * limit, limit=limit)
    total = await store.count("users", query)
    return {
        "status": "success",
        "data": {
            "users": [serialize_user(user) for user in users],
            "pagination": pagination(page, limit, total),
        },
    }


@router.put("/users/{user_id}")
async def update_user(user_id: str, payload: AdminUpdateUser, store: MongoStore = Depends(get_store)):
    update_fields = payload.model_dump(mode="json", exclude_none=True)
    if not update_fields:
        raise HTTPException(status_code=400, detail="No fields provided to update")

    user = await store.update_one("users", user_id, update_fields)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {
        "status": "success",
        "message": "User updated successfully",
        "data": {"user": serialize_user(user)},
    }


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    admin: Actor = Depends(require_admin),
    store: MongoStore = Depends(get_store),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    user = await store.find_one("users", {"id": user_id})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    await deactivate_user(store, lifecycle, user["id"])
    return {"status": "success", "message": "User deactivated successfully"}


@router.post("/create-admin", status_code=201)
async def create_admin(payload: CreateAdmin, store: MongoStore = Depends(get_store)):
    user = await create_user(store, payload.model_dump(mode="json"), Role.ADMIN)
    logger.info("Admin %s created", user["id"])
    return {
        "status": "success",
        "message": "Admin user created successfully",
        "data": {"user": serialize_user(user)},
    }


@router.get("/books")
async def get_all_books(
    status: Optional[BookStatus] = None,
    isActive: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    store: MongoStore = Depends(get_store),
):
    query = {}
    if status:
        query["status"] = status.value
    if isActive is not None:
        query["isActive"] = isActive

    books = await store.find_many("books", query, skip=(page - 1) * limit, limit=limit)
    total = await store.count("books", query)
    return {
        "status": "success",
        "data": {
            "books": books,
            "pagination": pagination(page, limit, total),
        },
    }


@router.put("/books/{book_id}")
async def update_book(book_id: str, payload: AdminUpdateBook, store: MongoStore = Depends(get_store)):
    update_fields = payload.model_dump(mode="json", exclude_none=True)
    if not update_fields:
        raise HTTPException(status_code=400, detail="No fields provided to update")
    await ensure_can_release(store, book_id, update_fields)

    book = await store.update_one("books", book_id, update_fields)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return {
        "status": "success",
        "message": "Book updated successfully",
        "data": {"book": book},
    }


@router.delete("/books/{book_id}")
async def delete_book(
    book_id: str,
    store: MongoStore = Depends(get_store),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
):
    book = await store.find_one("books", {"id": book_id})
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")

    cancelled = await lifecycle.cancel_for_book(book["id"])
    await store.update_one("books", book["id"], {"isActive": False})
    logger.info("Book %s removed by admin, %d open requests cancelled", book["id"], cancelled)
    return {"status": "success", "message": "Book deleted successfully"}


@router.get("/requests")
async def get_all_requests(
    status: Optional[RequestStatus] = None,
    type: Optional[RequestKind] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    store: MongoStore = Depends(get_store),
):
    query = {}
    if status:
        query["status"] = status.value
    if type:
        query["type"] = type.value

    requests = await store.find_many("requests", query, skip=(page - 1) * limit, limit=limit)
    total = await store.count("requests", query)
    return {
        "status": "success",
        "data": {
            "requests": requests,
            "pagination": pagination(page, limit, total),
        },
    }


@router.put("/requests/{request_id}")
async def update_request(
    request_id: str,
    payload: AdminUpdateRequest,
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
):
    if payload.status != RequestStatus.CANCELLED:
        raise HTTPException(status_code=400, detail="Admins can only cancel requests")

    request = unwrap(await lifecycle.admin_cancel(request_id))
    return {
        "status": "success",
        "message": "Request updated successfully",
        "data": {"request": request},
    }
