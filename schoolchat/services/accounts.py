"""Account provisioning: derived credentials, CSV batch import, bootstrap."""
import csv
import io
import logging
import re
from datetime import date
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from schoolchat.core.config import Settings
from schoolchat.core.security import get_password_hash
from schoolchat.models.schemas import ImportedUser, ImportReport, RowError, UserCreate, UserSummary
from schoolchat.models.user import Role, User

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("class", "roll", "dob", "displayName")
DEFAULT_PASSWORD_LENGTH = 12


def generate_username(class_name: str, roll: str) -> str:
    return re.sub(r"[^a-z0-9]", "", f"{class_name}{roll}".lower())


def generate_default_password(
    dob: Union[date, str, None],
    father_name: Optional[str] = None,
    mother_name: Optional[str] = None,
    class_teacher_name: Optional[str] = None,
) -> str:
    """DOB digits followed by the first known guardian name, cut to 12 chars."""
    if isinstance(dob, date):
        dob = dob.isoformat()
    dob_part = re.sub(r"\D", "", dob or "")
    name = father_name or mother_name or class_teacher_name or "default"
    name_part = re.sub(r"\s+", "", name.lower())
    return f"{dob_part}{name_part}"[:DEFAULT_PASSWORD_LENGTH]


def default_password_for(user: User) -> str:
    return generate_default_password(
        user.dob, user.father_name, user.mother_name, user.class_teacher_name
    )


def username_taken(db: Session, username: str) -> bool:
    return db.query(User.id).filter(User.username == username).first() is not None


def create_user(db: Session, data: UserCreate) -> tuple[User, str]:
    """Insert a user with a derived password; the password is returned once."""
    password = generate_default_password(
        data.dob, data.father_name, data.mother_name, data.class_teacher_name
    )
    user = User(
        username=data.username,
        display_name=data.display_name,
        role=data.role,
        class_name=data.class_name,
        roll=data.roll,
        dob=data.dob,
        father_name=data.father_name,
        mother_name=data.mother_name,
        class_teacher_name=data.class_teacher_name,
        hashed_password=get_password_hash(password),
        must_change_password=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("User created", extra={"username": user.username, "role": user.role.value})
    return user, password


def reset_password(db: Session, user: User) -> str:
    password = default_password_for(user)
    user.hashed_password = get_password_hash(password)
    user.must_change_password = True
    db.commit()
    logger.info("Password reset", extra={"username": user.username})
    return password


def _clean_row(raw: dict) -> dict:
    return {
        key.strip(): (value.strip() if isinstance(value, str) else value)
        for key, value in raw.items()
        if key is not None
    }


def import_users_csv(db: Session, content: bytes) -> ImportReport:
    """Create USER accounts row by row; failures are reported, never fatal."""
    text = content.decode("utf-8-sig")
    reader = csv.DictReader(io.StringIO(text))
    created: list[ImportedUser] = []
    errors: list[RowError] = []

    for raw in reader:
        row = _clean_row(raw)
        if any(not row.get(col) for col in REQUIRED_COLUMNS):
            errors.append(RowError(
                row=row,
                error="Missing required fields: " + ", ".join(REQUIRED_COLUMNS),
            ))
            continue

        try:
            dob = date.fromisoformat(row["dob"])
        except ValueError:
            errors.append(RowError(row=row, error=f"Invalid dob {row['dob']!r}, expected YYYY-MM-DD"))
            continue

        username = generate_username(row["class"], row["roll"])
        if not username:
            errors.append(RowError(row=row, error="Cannot derive a username from class and roll"))
            continue
        if username_taken(db, username):
            errors.append(RowError(row=row, error=f"Username {username} already exists"))
            continue

        data = UserCreate(
            username=username,
            display_name=row["displayName"],
            role=Role.USER,
            class_name=row["class"],
            roll=row["roll"],
            dob=dob,
            father_name=row.get("fatherName") or None,
            mother_name=row.get("motherName") or None,
            class_teacher_name=row.get("classTeacherName") or None,
        )
        try:
            user, password = create_user(db, data)
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("CSV row insert failed", extra={"username": username, "error": str(e)})
            errors.append(RowError(row=row, error="Database error while creating user"))
            continue

        created.append(ImportedUser(
            **UserSummary.model_validate(user).model_dump(),
            default_password=password,
        ))

    logger.info("CSV import finished", extra={"created_count": len(created), "error_count": len(errors)})
    return ImportReport(
        created=len(created),
        errors=len(errors),
        users=created,
        error_details=errors,
    )


def ensure_super_admin(db: Session, settings: Settings) -> Optional[User]:
    """Create the configured SUPERADMIN if its username is free."""
    if username_taken(db, settings.superadmin_username):
        logger.info("Super admin already exists", extra={"username": settings.superadmin_username})
        return None
    user = User(
        username=settings.superadmin_username,
        display_name="Super Administrator",
        role=Role.SUPERADMIN,
        hashed_password=get_password_hash(settings.superadmin_password),
        must_change_password=False,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.warning(
        "Super admin created; change the password after first login",
        extra={"username": user.username},
    )
    return user
