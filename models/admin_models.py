from pydantic import BaseModel, EmailStr, Field
from typing import Optional

from models.book_models import BookStatus
from models.request_models import RequestStatus
from models.user_models import Role


class AdminUpdateUser(BaseModel):
    role: Optional[Role] = None
    isActive: Optional[bool] = None


class AdminUpdateBook(BaseModel):
    status: Optional[BookStatus] = None
    isActive: Optional[bool] = None


class AdminUpdateRequest(BaseModel):
    status: RequestStatus


class CreateAdmin(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6)
