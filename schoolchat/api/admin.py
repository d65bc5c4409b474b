# Super-admin console: admin accounts, system settings, retention purge.
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from schoolchat.core.config import Settings
from schoolchat.core.database import get_db
from schoolchat.core.security import get_password_hash, get_settings, require_superadmin
from schoolchat.models.schemas import AdminCreate, AdminOut, Detail, PurgeOut, SettingsOut, SettingsUpdate
from schoolchat.models.user import Role, User as UserModel
from schoolchat.services import accounts, retention, system_settings
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"],
                   dependencies=[Depends(require_superadmin)])


@router.post("", response_model=AdminOut, status_code=201)
def create_admin(body: AdminCreate, db: Session = Depends(get_db)):
    if accounts.username_taken(db, body.username):
        raise HTTPException(status_code=400, detail="Username already exists")
    admin = UserModel(
        username=body.username,
        display_name=body.display_name,
        role=Role.ADMIN,
        hashed_password=get_password_hash(body.password),
        must_change_password=False,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info("Admin created", extra={"username": admin.username})
    return admin


@router.get("", response_model=List[AdminOut])
def list_admins(db: Session = Depends(get_db)):
    return (db.query(UserModel)
              .filter(UserModel.role == Role.ADMIN)
              .order_by(UserModel.created_at.desc())
              .all())


@router.get("/settings", response_model=SettingsOut)
def get_system_settings(db: Session = Depends(get_db), config: Settings = Depends(get_settings)):
    return system_settings.get_or_create(db, config)


@router.put("/settings", response_model=SettingsOut)
def update_system_settings(
    body: SettingsUpdate,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
):
    row = system_settings.update(db, config, body)
    logger.info("Settings updated", extra=body.model_dump(exclude_none=True))
    return row


@router.post("/purge", response_model=PurgeOut)
def purge_now(db: Session = Depends(get_db), config: Settings = Depends(get_settings)):
    report = retention.purge(db, config)
    return PurgeOut(**vars(report))


@router.delete("/{admin_id}", response_model=Detail)
def delete_admin(admin_id: int, db: Session = Depends(get_db)):
    admin = db.get(UserModel, admin_id)
    if admin is None:
        raise HTTPException(status_code=404, detail="Admin not found")
    if admin.role != Role.ADMIN:
        raise HTTPException(status_code=400, detail="User is not an admin")
    db.delete(admin)
    db.commit()
    logger.info("Admin deleted", extra={"username": admin.username})
    return Detail(detail="Admin deleted successfully")
