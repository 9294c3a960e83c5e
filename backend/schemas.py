from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List, Any
from datetime import datetime

class AuthSignup(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1)
    password: str = Field(min_length=5)

class AuthLogin(BaseModel):
    email: EmailStr
    password: str
    remember: bool = False

class UserOut(BaseModel):
    id: int
    email: EmailStr
    name: str
    class Config:
        from_attributes = True

class StoryIn(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)

# PATCH body; only the fields sent are applied
class StoryUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = Field(default=None, min_length=1)

class StoryOut(BaseModel):
    id: int
    title: str
    content: str
    read_count: int
    read_by: List[int]
    owner_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class StoryBrief(BaseModel):
    id: int
    title: str
    content: str
    read_count: int
    read_by: List[int]
    owner_id: int

class StoryPage(BaseModel):
    docs: List[StoryOut]
    total_docs: int
    limit: int
    page: int
    total_pages: int
    paging_counter: int
    has_prev_page: bool
    has_next_page: bool
    prev_page: Optional[int] = None
    next_page: Optional[int] = None

class MessageOut(BaseModel):
    msg: str

# Websocket frames: {"event": "...", "data": ...}
class WsEvent(BaseModel):
    event: str
    data: Any = None

class JoinRoomIn(BaseModel):
    roomID: str = Field(min_length=1)
