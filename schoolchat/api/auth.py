from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from schoolchat.core.config import Settings
from schoolchat.core.database import get_db
from schoolchat.core.security import (
    clear_session_cookie,
    create_access_token,
    get_current_user,
    get_password_hash,
    get_settings,
    set_session_cookie,
    verify_password,
)
from schoolchat.models.schemas import ChangePasswordIn, Detail, LoginIn, LoginOut, UserOut
from schoolchat.models.user import User as UserModel
import logging
logger = logging.getLogger(__name__)

router = APIRouter()

MIN_PASSWORD_LENGTH = 6

# unknown usernames are checked against this so every failed login costs one bcrypt round
_DUMMY_HASH = get_password_hash("unknown-user-placeholder")


@router.post("/login", response_model=LoginOut)
def login(
    creds: LoginIn,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    logger.info("Login attempt", extra={"username": creds.username})
    user = db.query(UserModel).filter_by(username=creds.username).first()
    password_ok = verify_password(creds.password, user.hashed_password if user else _DUMMY_HASH)
    if not user or not password_ok:
        logger.warning("Failed login", extra={"username": creds.username})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    set_session_cookie(response, create_access_token(user, settings), settings)
    logger.info("Login success", extra={"username": user.username})
    return LoginOut(user=UserOut.model_validate(user))


@router.post("/logout", response_model=Detail)
def logout(response: Response, settings: Settings = Depends(get_settings)):
    # tokens are stateless; a copied token stays valid until it expires
    clear_session_cookie(response, settings)
    return Detail(detail="Logged out successfully")


@router.get("/me", response_model=LoginOut)
def me(current_user: UserModel = Depends(get_current_user)):
    return LoginOut(user=UserOut.model_validate(current_user))


@router.post("/change-password", response_model=Detail)
def change_password(
    body: ChangePasswordIn,
    db: Session = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    if len(body.new_password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"New password must be at least {MIN_PASSWORD_LENGTH} characters long",
        )
    if not verify_password(body.old_password, current_user.hashed_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid old password")

    current_user.hashed_password = get_password_hash(body.new_password)
    current_user.must_change_password = False
    db.commit()
    logger.info("Password changed", extra={"username": current_user.username})
    return Detail(detail="Password changed successfully")
