from typing import List, Optional, Union
from pydantic import BaseModel

from schoolchat.models.user import Role


class TokenTotals(BaseModel):
    message_count: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class UserUsage(TokenTotals):
    user_id: int
    username: str
    display_name: str
    class_name: Optional[str] = None
    role: Role


class ClassUsage(TokenTotals):
    class_name: str
    user_count: int = 0


class DateUsage(TokenTotals):
    date: str


class UsageReport(BaseModel):
    group_by: str
    usage: List[Union[UserUsage, ClassUsage, DateUsage]]


class Stats(BaseModel):
    total_users: int
    total_chats: int
    total_messages: int
    total_tokens: int
    active_users_today: int
    active_users_this_week: int
    active_users_this_month: int
