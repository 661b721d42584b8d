from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

Category = Literal["general", "bug", "feature", "improvement", "question"]
Priority = Literal["low", "medium", "high", "urgent"]
Status = Literal["open", "in_progress", "resolved", "closed"]
SortOrder = Literal["newest", "oldest", "priority", "status"]


class CommentIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=10, max_length=2000)
    category: Category = "general"
    priority: Priority = "medium"


class CommentUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    content: Optional[str] = Field(default=None, min_length=10, max_length=2000)
    category: Optional[Category] = None
    priority: Optional[Priority] = None
    status: Optional[Status] = None


class Author(BaseModel):
    email: str = "User"
    name: str = "User"


class Comment(BaseModel):
    id: str
    user_id: str
    title: str
    content: str
    category: str
    priority: str
    status: str = "open"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    users: Author = Author()


class CommentWithStats(Comment):
    likeCount: int = 0
    responseCount: int = 0
    isLikedByUser: bool = False


class ResponseIn(BaseModel):
    content: Optional[str] = None


class CommentResponse(BaseModel):
    id: str
    comment_id: str
    user_id: str
    content: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    users: Author = Author()


class Like(BaseModel):
    id: str
    comment_id: str
    user_id: str
    created_at: Optional[datetime] = None
