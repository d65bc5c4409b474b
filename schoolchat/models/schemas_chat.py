from pydantic import BaseModel, ConfigDict, constr
from typing import List, Optional
from datetime import datetime

from schoolchat.models.conversation import MessageRole


class ChatCreate(BaseModel):
    title: Optional[str] = None


class MessageIn(BaseModel):
    content: constr(strip_whitespace=True, min_length=1)
    model: Optional[str] = None


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    role: MessageRole
    content: str
    model: Optional[str] = None
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    created_at: datetime


class ChatSummary(BaseModel):
    id: int
    user_id: int
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int
    last_message: Optional[MessageOut] = None


class ChatDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    title: str
    created_at: datetime
    updated_at: datetime
    messages: List[MessageOut]


class ChatList(BaseModel):
    chats: List[ChatSummary]
    page: int
    limit: int
    total: int
