from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional
from enum import Enum

from models.book_models import GenreEnum


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class Coordinates(BaseModel):
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)


class Location(BaseModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipCode: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class Preferences(BaseModel):
    genres: List[GenreEnum] = []
    languages: List[str] = ["English"]
    exchangeRadius: int = Field(default=10, ge=1, le=100)  # kilometers, unused


class RegisterUser(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6)
    location: Optional[Location] = None
    preferences: Optional[Preferences] = None


class LoginUser(BaseModel):
    email: EmailStr
    password: str


class UpdatePassword(BaseModel):
    currentPassword: str = Field(min_length=1)
    newPassword: str = Field(min_length=6)


class UpdateProfile(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    avatar: Optional[str] = None
    location: Optional[Location] = None
    preferences: Optional[Preferences] = None


class Actor(BaseModel):
    """Authenticated caller of an endpoint."""
    id: str
    role: Role = Role.USER
    name: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
