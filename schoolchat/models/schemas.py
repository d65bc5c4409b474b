from datetime import date, datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, constr

from schoolchat.models.user import Role


class LoginIn(BaseModel):
    username: constr(min_length=1)
    password: constr(min_length=1)


class ChangePasswordIn(BaseModel):
    old_password: constr(min_length=1)
    new_password: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    display_name: str
    role: Role
    must_change_password: bool


class LoginOut(BaseModel):
    user: UserOut


class UserCreate(BaseModel):
    username: constr(min_length=1)
    display_name: constr(min_length=1)
    role: Role = Role.USER
    class_name: Optional[str] = Field(None, alias="class")
    roll: Optional[str] = None
    dob: Optional[date] = None
    father_name: Optional[str] = None
    mother_name: Optional[str] = None
    class_teacher_name: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    username: str
    display_name: str
    role: Role
    class_name: Optional[str] = Field(None, serialization_alias="class")
    roll: Optional[str] = None
    must_change_password: bool
    created_at: datetime


class UserDetail(UserSummary):
    """Listing row for SUPERADMIN callers, with the re-derivable default password."""
    dob: Optional[date] = None
    father_name: Optional[str] = None
    mother_name: Optional[str] = None
    class_teacher_name: Optional[str] = None
    default_password: Optional[str] = None


class UserCreated(BaseModel):
    user: UserSummary
    default_password: str
    message: str = "User created successfully. Default password provided."


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class UserList(BaseModel):
    # ADMIN callers get plain summaries, SUPERADMIN callers the full detail
    users: List[Union[UserDetail, UserSummary]]
    pagination: Pagination


class ImportedUser(UserSummary):
    default_password: str


class RowError(BaseModel):
    row: dict
    error: str


class ImportReport(BaseModel):
    created: int
    errors: int
    users: List[ImportedUser]
    error_details: List[RowError]


class PasswordReset(BaseModel):
    message: str = "Password reset successfully"
    default_password: str


class AdminCreate(BaseModel):
    username: constr(min_length=1)
    display_name: constr(min_length=1)
    password: constr(min_length=6)


class AdminOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    display_name: str
    created_at: datetime


class SettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    school_name: str
    theme_default: str
    retention_months: int


class SettingsUpdate(BaseModel):
    school_name: Optional[constr(min_length=1)] = None
    theme_default: Optional[constr(min_length=1)] = None
    retention_months: Optional[int] = Field(None, ge=1)


class PurgeOut(BaseModel):
    cutoff: datetime
    retention_months: int
    deleted_messages: int
    deleted_chats: int


class Detail(BaseModel):
    detail: str
