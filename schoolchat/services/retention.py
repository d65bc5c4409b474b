"""Retention purge: drop messages past the retention window, then empty chats."""
import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from schoolchat.core.config import Settings
from schoolchat.models.conversation import Chat, Message
from schoolchat.models.settings import SystemSettings

logger = logging.getLogger(__name__)


@dataclass
class PurgeReport:
    cutoff: datetime
    retention_months: int
    deleted_messages: int
    deleted_chats: int


def subtract_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def retention_months(db: Session, config: Settings) -> int:
    row = db.query(SystemSettings).order_by(SystemSettings.id).first()
    if row is not None and row.retention_months:
        return row.retention_months
    return config.retention_months


def purge(
    db: Session,
    config: Settings,
    now: Optional[datetime] = None,
    months: Optional[int] = None,
) -> PurgeReport:
    months = months or retention_months(db, config)
    cutoff = subtract_months(now or datetime.now(timezone.utc), months)
    logger.info("Purging data", extra={"cutoff": cutoff.isoformat(), "retention_months": months})

    deleted_messages = (
        db.query(Message)
          .filter(Message.created_at < cutoff)
          .delete(synchronize_session=False)
    )

    # chats created after the cutoff may be legitimately empty (just opened)
    empty_ids = [
        chat_id for (chat_id,) in
        db.query(Chat.id)
          .filter(Chat.created_at < cutoff, ~Chat.messages.any())
          .all()
    ]
    deleted_chats = 0
    if empty_ids:
        deleted_chats = (
            db.query(Chat)
              .filter(Chat.id.in_(empty_ids))
              .delete(synchronize_session=False)
        )
    db.commit()
    db.expire_all()

    logger.info(
        "Purge completed",
        extra={"deleted_messages": deleted_messages, "deleted_chats": deleted_chats},
    )
    return PurgeReport(
        cutoff=cutoff,
        retention_months=months,
        deleted_messages=deleted_messages,
        deleted_chats=deleted_chats,
    )
