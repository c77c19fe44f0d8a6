"""
Database Schemas for the Captions API

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name. Example: class User -> "user" collection.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field


# Account with admin flag and bookmarked posts
class User(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., description="Display name")
    username: Optional[str] = Field(None, description="Public handle")
    email: EmailStr = Field(..., description="Email address (unique)")
    password_hash: str = Field(..., description="bcrypt hash of the password")
    is_admin: bool = Field(False, description="Grants moderation of every post")
    saved_posts: List[ObjectId] = Field(default_factory=list, description="Bookmarked post ids")


class Comment(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: ObjectId = Field(default_factory=ObjectId, description="Comment id")
    user: ObjectId = Field(..., description="Author id")
    text: str = Field(..., min_length=1, description="Comment text")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Post(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId = Field(..., description="Owner id")
    title: str = Field("", description="Optional title")
    description: str = Field("", description="Optional free text")
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list, max_length=3, description="Relative image paths")
    links: List[Any] = Field(default_factory=list, description="Opaque link objects")
    likes: List[ObjectId] = Field(default_factory=list, description="Ids of users who liked the post")
    comments: List[Comment] = Field(default_factory=list)


# ----------------- Request bodies -----------------
class RegisterRequest(BaseModel):
    name: str
    username: Optional[str] = None
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class PostUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    categories: Optional[List[str]] = None
    links: Optional[List[Any]] = None
    tags: Optional[List[str]] = None


class CommentRequest(BaseModel):
    text: Optional[str] = None


class RelatedRequest(BaseModel):
    categories: Optional[Any] = None
