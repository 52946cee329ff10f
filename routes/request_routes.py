from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Literal, Optional

from dataBase import MongoStore, get_store
from dependencies import get_current_user, get_lifecycle
from models.request_models import CreateRequestModel, RateRequestModel, RequestStatus, UpdateRequestModel
from models.user_models import Actor
from request_lifecycle import RequestLifecycleManager
from utils import pagination, unwrap

router = APIRouter(prefix="/requests", tags=["requests"])


@router.post("", status_code=201)
async def create_request(
    payload: CreateRequestModel,
    actor: Actor = Depends(get_current_user),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
):
    request = unwrap(await lifecycle.request_transfer(
        actor.id, payload.book, payload.type, payload.offeredBooks
    ))
    return {
        "status": "success",
        "message": "Request created successfully",
        "data": {"request": request},
    }


@router.get("")
async def get_requests(
    status: Optional[RequestStatus] = None,
    type: Optional[Literal["sent", "received"]] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
):
    """Requests the caller sent or received, newest first."""
    if type == "sent":
        query = {"requester": actor.id}
    elif type == "received":
        query = {"owner": actor.id}
    else:
        query = {"$or": [{"requester": actor.id}, {"owner": actor.id}]}
    if status:
        query["status"] = status.value

    requests = await store.find_many("requests", query, skip=(page - 1) * limit, limit=limit)
    total = await store.count("requests", query)

    return {
        "status": "success",
        "data": {
            "requests": requests,
            "pagination": pagination(page, limit, total),
        },
    }


@router.get("/{request_id}")
async def get_request(
    request_id: str,
    actor: Actor = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
):
    request = await store.find_one("requests", {"id": request_id})
    if not request:
        raise HTTPException(status_code=404, detail="Request not found")
    if not actor.is_admin and not RequestLifecycleManager.parties(request, actor.id):
        raise HTTPException(status_code=403, detail="Not authorized to view this request")

    request["book"] = await store.find_one("books", {"id": request["book"]}) or request["book"]
    if request.get("offeredBooks"):
        request["offeredBooks"] = await store.find_one("books", {"id": request["offeredBooks"]}) or request["offeredBooks"]

    return {"status": "success", "data": {"request": request}}


@router.put("/{request_id}")
async def update_request(
    request_id: str,
    payload: UpdateRequestModel,
    actor: Actor = Depends(get_current_user),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
):
    request = unwrap(await lifecycle.transition(request_id, actor.id, payload.status))
    return {
        "status": "success",
        "message": f"Request {payload.status.value} successfully",
        "data": {"request": request},
    }


@router.post("/{request_id}/rate")
async def rate_request(
    request_id: str,
    payload: RateRequestModel,
    actor: Actor = Depends(get_current_user),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
):
    request = unwrap(await lifecycle.rate(request_id, actor.id, payload.rating, payload.review))
    return {
        "status": "success",
        "message": "Rating submitted successfully",
        "data": {"rating": request["rating"]},
    }


@router.delete("/{request_id}")
async def delete_request(
    request_id: str,
    actor: Actor = Depends(get_current_user),
    lifecycle: RequestLifecycleManager = Depends(get_lifecycle),
):
    unwrap(await lifecycle.delete(request_id, actor.id))
    return {"status": "success", "message": "Request deleted successfully"}
