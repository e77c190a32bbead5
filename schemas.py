"""
Database Schemas for Digital Life Lessons

Each collection document has a Pydantic model here, alongside the request
bodies the routes accept. Collections: users, lessons, favorites, reports.
"""
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Literal, Optional


class Creator(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: EmailStr
    name: Optional[str] = None
    photo: Optional[str] = None


class User(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    photo: Optional[str] = None
    role: Literal["user", "admin"] = "user"
    isPremium: bool = False
    created_at: str
    last_loggedIn: str


class UserLogin(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    photo: Optional[str] = None


class RoleUpdate(BaseModel):
    role: Literal["user", "admin"]


class LessonCreate(BaseModel):
    """Client lesson payload; unknown fields are stored as sent."""
    model_config = ConfigDict(extra="allow")

    creator: Creator
    title: str
    description: str = ""
    category: Optional[str] = None
    emotionalTone: Optional[str] = None
    image: Optional[str] = None
    privacy: Literal["public", "private"] = "public"
    accessLevel: Literal["free", "premium"] = "free"


class LessonUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    emotionalTone: Optional[str] = None
    image: Optional[str] = None
    privacy: Optional[Literal["public", "private"]] = None
    accessLevel: Optional[Literal["free", "premium"]] = None


class VisibilityUpdate(BaseModel):
    privacy: Literal["public", "private"]


class AccessUpdate(BaseModel):
    accessLevel: Literal["free", "premium"]


class FeaturedUpdate(BaseModel):
    isFeatured: bool


class FavoriteCreate(BaseModel):
    userEmail: EmailStr
    lessonId: str


class ReportCreate(BaseModel):
    # Required fields are checked by the handler so a missing one is a 400
    lessonId: Optional[str] = None
    reporterUserId: Optional[str] = None
    reportedUserEmail: Optional[str] = None
    reason: Optional[str] = None
    description: Optional[str] = None


class CheckoutRequest(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    price: Optional[int] = Field(None, gt=0, description="Price in major currency units")
