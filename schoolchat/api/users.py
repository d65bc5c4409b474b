import math
from csv import Error as CSVError
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.orm import Session

from schoolchat.core.database import get_db
from schoolchat.core.security import require_admin
from schoolchat.models.schemas import (
    Detail,
    ImportReport,
    Pagination,
    PasswordReset,
    UserCreate,
    UserCreated,
    UserDetail,
    UserList,
    UserSummary,
)
from schoolchat.models.user import Role, User as UserModel
from schoolchat.services import accounts
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


def _get_user_or_404(db: Session, user_id: int) -> UserModel:
    user = db.get(UserModel, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post("", response_model=UserCreated, status_code=201)
def create_user(
    body: UserCreate,
    db: Session = Depends(get_db),
    current_user: UserModel = Depends(require_admin),
):
    if body.role == Role.SUPERADMIN or not current_user.role.outranks(body.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    if accounts.username_taken(db, body.username):
        raise HTTPException(status_code=400, detail="Username already exists")

    user, password = accounts.create_user(db, body)
    return UserCreated(user=UserSummary.model_validate(user), default_password=password)


@router.post("/batch", response_model=ImportReport)
async def batch_create(
    csv: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: UserModel = Depends(require_admin),
):
    if csv is None:
        raise HTTPException(status_code=400, detail="CSV file is required")
    try:
        content = await csv.read()
    finally:
        await csv.close()
    try:
        return accounts.import_users_csv(db, content)
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded")
    except CSVError as e:
        logger.warning("Unreadable CSV upload", extra={"error": str(e), "by": current_user.username})
        raise HTTPException(status_code=400, detail="Malformed CSV file")


@router.get("", response_model=UserList)
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    role: Optional[Role] = None,
    class_name: Optional[str] = Query(None, alias="class"),
    db: Session = Depends(get_db),
    current_user: UserModel = Depends(require_admin),
):
    q = db.query(UserModel)
    if role:
        q = q.filter(UserModel.role == role)
    if class_name:
        q = q.filter(UserModel.class_name == class_name)
    total = q.count()
    rows = (
        q.order_by(UserModel.created_at.desc(), UserModel.id.desc())
         .offset((page - 1) * limit)
         .limit(limit)
         .all()
    )

    if current_user.role == Role.SUPERADMIN:
        users = [
            UserDetail.model_validate(u).model_copy(
                update={"default_password": accounts.default_password_for(u)}
            )
            for u in rows
        ]
    else:
        users = [UserSummary.model_validate(u) for u in rows]

    return UserList(
        users=users,
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit),
        ),
    )


@router.delete("/{user_id}", response_model=Detail)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: UserModel = Depends(require_admin),
):
    user = _get_user_or_404(db, user_id)
    if user.role == Role.SUPERADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot delete super admin")
    if not current_user.role.outranks(user.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    db.delete(user)
    db.commit()
    logger.info("User deleted", extra={"username": user.username, "by": current_user.username})
    return Detail(detail="User deleted successfully")


@router.post("/{user_id}/reset-password", response_model=PasswordReset)
def reset_password(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: UserModel = Depends(require_admin),
):
    user = _get_user_or_404(db, user_id)
    if user.id != current_user.id and not current_user.role.outranks(user.role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    return PasswordReset(default_password=accounts.reset_password(db, user))
