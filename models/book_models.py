from pydantic import BaseModel, Field, HttpUrl, field_validator
from typing import List, Optional
from enum import Enum


class GenreEnum(str, Enum):
    FICTION = "Fiction"
    NON_FICTION = "Non-Fiction"
    MYSTERY = "Mystery"
    ROMANCE = "Romance"
    SCI_FI = "Sci-Fi"
    FANTASY = "Fantasy"
    BIOGRAPHY = "Biography"
    HISTORY = "History"
    SELF_HELP = "Self-Help"
    TECHNICAL = "Technical"
    OTHER = "Other"


class ConditionEnum(str, Enum):
    NEW = "New"
    LIKE_NEW = "Like New"
    VERY_GOOD = "Very Good"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"


class AgeGroupEnum(str, Enum):
    TODDLER = "0-3"
    EARLY = "4-6"
    CHILD = "7-10"
    PRETEEN = "11-14"
    TEEN = "15-18"
    ADULT = "18+"


class AvailabilityType(str, Enum):
    FREE = "Free"
    EXCHANGE = "Exchange"


class BookStatus(str, Enum):
    AVAILABLE = "Available"
    NOT_AVAILABLE = "Not Available"


ISBN_PATTERN = r"^(?:ISBN(?:-1[03])?:? )?(?:[0-9X]{10}|97[89][0-9]{10}|[- 0-9X]{13}|[- 0-9]{17})$"


def normalize_tags(tags):
    if tags is None:
        return tags
    return [tag.strip().lower() for tag in tags if tag and tag.strip()]


class PostBookModel(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    author: str = Field(min_length=1, max_length=100)
    isbn: Optional[str] = Field(default=None, pattern=ISBN_PATTERN)
    genre: GenreEnum
    language: str = "English"
    condition: ConditionEnum = ConditionEnum.GOOD
    ageGroup: AgeGroupEnum = AgeGroupEnum.ADULT
    description: Optional[str] = Field(default=None, max_length=1000)
    images: List[HttpUrl] = []
    availabilityType: AvailabilityType = AvailabilityType.EXCHANGE
    status: BookStatus = BookStatus.AVAILABLE
    tags: List[str] = []

    @field_validator("tags")
    @classmethod
    def lowercase_tags(cls, tags):
        return normalize_tags(tags)


class UpdateBookModel(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    author: Optional[str] = Field(default=None, min_length=1, max_length=100)
    isbn: Optional[str] = Field(default=None, pattern=ISBN_PATTERN)
    genre: Optional[GenreEnum] = None
    language: Optional[str] = None
    condition: Optional[ConditionEnum] = None
    ageGroup: Optional[AgeGroupEnum] = None
    description: Optional[str] = Field(default=None, max_length=1000)
    images: Optional[List[HttpUrl]] = None
    availabilityType: Optional[AvailabilityType] = None
    status: Optional[BookStatus] = None
    tags: Optional[List[str]] = None

    @field_validator("tags")
    @classmethod
    def lowercase_tags(cls, tags):
        return normalize_tags(tags)


class RateBookModel(BaseModel):
    rating: float = Field(ge=1, le=5)
