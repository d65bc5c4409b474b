from sqlalchemy.orm import Session

from schoolchat.core.config import Settings
from schoolchat.models.schemas import SettingsUpdate
from schoolchat.models.settings import SystemSettings


def get_or_create(db: Session, config: Settings) -> SystemSettings:
    row = db.query(SystemSettings).order_by(SystemSettings.id).first()
    if row is None:
        row = SystemSettings(
            school_name=config.school_name,
            theme_default=config.theme,
            retention_months=config.retention_months,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


def update(db: Session, config: Settings, changes: SettingsUpdate) -> SystemSettings:
    row = get_or_create(db, config)
    for field, value in changes.model_dump(exclude_none=True).items():
        setattr(row, field, value)
    db.commit()
    db.refresh(row)
    return row
