import logging
from fastapi import APIRouter, Depends, HTTPException

from dataBase import DuplicateDocumentError, MongoStore, get_store
from dependencies import get_current_user
from models.user_models import Actor, LoginUser, RegisterUser, Role, UpdatePassword
from utils import create_access_token, hash_password, serialize_user, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)


def issue_token(user: dict) -> str:
    return create_access_token({"id": user["id"], "role": user.get("role", Role.USER.value)})


async def create_user(store: MongoStore, user_dict: dict, role: Role) -> dict:
    email = user_dict["email"].lower()
    if await store.find_one("users", {"email": email}):
        raise HTTPException(status_code=400, detail="User already exists with this email")

    user_dict.update({
        "email": email,
        "password": hash_password(user_dict["password"]),
        "role": role.value,
        "rating": {"average": 0, "count": 0},
        "isActive": True,
    })
    try:
        return await store.insert_one("users", user_dict)
    except DuplicateDocumentError:
        raise HTTPException(status_code=400, detail="User already exists with this email")


@router.post("/register", status_code=201)
async def register_user(user: RegisterUser, store: MongoStore = Depends(get_store)):
    created_user = await create_user(store, user.model_dump(mode="json", exclude_none=True), Role.USER)
    logger.info("Registered user %s", created_user["id"])
    return {
        "status": "success",
        "message": "User registered successfully",
        "data": {
            "user": serialize_user(created_user),
            "token": issue_token(created_user),
        },
    }


@router.post("/login")
async def login_user(user: LoginUser, store: MongoStore = Depends(get_store)):
    existing_user = await store.find_one("users", {"email": user.email.lower()})
    if not existing_user or not verify_password(user.password, existing_user["password"]):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not existing_user.get("isActive", True):
        raise HTTPException(status_code=401, detail="Account is deactivated.")

    return {
        "status": "success",
        "message": "Login successful",
        "data": {
            "user": serialize_user(existing_user),
            "token": issue_token(existing_user),
        },
    }


@router.get("/me")
async def get_me(actor: Actor = Depends(get_current_user), store: MongoStore = Depends(get_store)):
    user = await store.find_one("users", {"id": actor.id})
    return {"status": "success", "data": {"user": serialize_user(user)}}


@router.put("/password")
async def update_password(
    payload: UpdatePassword,
    actor: Actor = Depends(get_current_user),
    store: MongoStore = Depends(get_store),
):
    user = await store.find_one("users", {"id": actor.id})
    if not verify_password(payload.currentPassword, user["password"]):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    await store.update_one("users", actor.id, {"password": hash_password(payload.newPassword)})
    logger.info("Password changed for user %s", actor.id)
    return {"status": "success", "message": "Password updated successfully"}
