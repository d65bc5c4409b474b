from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from schoolchat.models.conversation import Chat, Message
from schoolchat.models.schemas_reports import ClassUsage, DateUsage, Stats, UserUsage
from schoolchat.models.user import User

GROUPINGS = ("user", "class", "date")


def _totals():
    return (
        func.count(Message.id),
        func.coalesce(func.sum(Message.prompt_tokens), 0),
        func.coalesce(func.sum(Message.completion_tokens), 0),
        func.coalesce(func.sum(Message.total_tokens), 0),
    )


def _filtered(
    q: Query,
    class_name: Optional[str],
    user_id: Optional[int],
    start: Optional[datetime],
    end: Optional[datetime],
) -> Query:
    q = q.select_from(Message).join(Chat, Chat.id == Message.chat_id).join(User, User.id == Chat.user_id)
    if class_name:
        q = q.filter(User.class_name == class_name)
    if user_id is not None:
        q = q.filter(User.id == user_id)
    if start is not None:
        q = q.filter(Message.created_at >= start)
    if end is not None:
        q = q.filter(Message.created_at <= end)
    return q


def usage_by_user(db: Session, class_name=None, user_id=None, start=None, end=None) -> list[UserUsage]:
    q = db.query(User.id, User.username, User.display_name, User.class_name, User.role, *_totals())
    rows = (
        _filtered(q, class_name, user_id, start, end)
        .group_by(User.id, User.username, User.display_name, User.class_name, User.role)
        .order_by(User.username)
        .all()
    )
    return [
        UserUsage(
            user_id=uid, username=uname, display_name=dname, class_name=cls, role=role,
            message_count=n, prompt_tokens=p, completion_tokens=c, total_tokens=t,
        )
        for uid, uname, dname, cls, role, n, p, c, t in rows
    ]


def usage_by_class(db: Session, class_name=None, user_id=None, start=None, end=None) -> list[ClassUsage]:
    buckets: dict[str, ClassUsage] = {}
    for row in usage_by_user(db, class_name, user_id, start, end):
        key = row.class_name or "Unknown"
        bucket = buckets.setdefault(key, ClassUsage(class_name=key))
        bucket.message_count += row.message_count
        bucket.prompt_tokens += row.prompt_tokens
        bucket.completion_tokens += row.completion_tokens
        bucket.total_tokens += row.total_tokens
        bucket.user_count += 1
    return sorted(buckets.values(), key=lambda b: b.class_name)


def usage_by_date(db: Session, class_name=None, user_id=None, start=None, end=None) -> list[DateUsage]:
    day = func.date(Message.created_at)
    rows = (
        _filtered(db.query(day, *_totals()), class_name, user_id, start, end)
        .group_by(day)
        .order_by(day)
        .all()
    )
    return [
        DateUsage(date=str(d), message_count=n, prompt_tokens=p, completion_tokens=c, total_tokens=t)
        for d, n, p, c, t in rows
    ]


def _active_since(db: Session, since: datetime) -> int:
    return (
        db.query(func.count(func.distinct(Chat.user_id)))
          .filter(Chat.updated_at >= since)
          .scalar()
    ) or 0


def stats(db: Session, now: Optional[datetime] = None) -> Stats:
    now = now or datetime.now(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return Stats(
        total_users=db.query(func.count(User.id)).scalar() or 0,
        total_chats=db.query(func.count(Chat.id)).scalar() or 0,
        total_messages=db.query(func.count(Message.id)).scalar() or 0,
        total_tokens=db.query(func.coalesce(func.sum(Message.total_tokens), 0)).scalar() or 0,
        active_users_today=_active_since(db, midnight),
        active_users_this_week=_active_since(db, now - timedelta(days=7)),
        active_users_this_month=_active_since(db, now - timedelta(days=30)),
    )
