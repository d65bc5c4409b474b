from passlib.context import CryptContext
from jose import jwt, JWTError, ExpiredSignatureError
from datetime import datetime, timedelta, timezone
from fastapi import Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session
from schoolchat.core.config import Settings
from schoolchat.core.database import get_db
from schoolchat.models.user import Role, User as UserModel
import uuid
from fastapi import status

import logging

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def create_access_token(user: UserModel, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(user.id),
        "username": user.username,
        "iat": now,
        "exp": now + timedelta(days=settings.access_token_expire_days),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.cookie_name,
        value=token,
        max_age=settings.access_token_expire_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.cookie_name,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
    )


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> UserModel:
    token = request.cookies.get(settings.cookie_name)
    if not token:
        raise HTTPException(status_code=401, detail="Access token required")
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        user_id = int(payload.get("sub"))
    except ExpiredSignatureError:
        logger.info("Expired token presented")
        raise HTTPException(status_code=403, detail="Invalid token")
    except (JWTError, TypeError, ValueError) as e:
        logger.warning("Token decode error", extra={"error": str(e)})
        raise HTTPException(status_code=403, detail="Invalid token")

    user = db.get(UserModel, user_id)
    if user is None:
        logger.warning("User not found for token", extra={"user_id": user_id})
        raise HTTPException(status_code=401, detail="User not found")
    logger.debug("Authenticated user", extra={"username": user.username})
    return user


def require_role(minimum: Role):
    """Dependency admitting any principal whose role is at least ``minimum``."""

    def role_checker(current_user: UserModel = Depends(get_current_user)) -> UserModel:
        if not current_user.role.at_least(minimum):
            logger.info(
                "Permission denied",
                extra={"username": current_user.username, "required": minimum.value},
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user
    return role_checker


require_user = require_role(Role.USER)
require_admin = require_role(Role.ADMIN)
require_superadmin = require_role(Role.SUPERADMIN)
