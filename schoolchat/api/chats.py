from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from schoolchat.core.config import Settings
from schoolchat.core.database import get_db, get_session_factory
from schoolchat.core.security import get_current_user, get_settings
from schoolchat.models.conversation import Chat, Message, MessageRole
from schoolchat.models.schemas import Detail
from schoolchat.models.schemas_chat import (
    ChatCreate,
    ChatDetail,
    ChatList,
    ChatSummary,
    MessageIn,
    MessageOut,
)
from schoolchat.models.user import Role, User as UserModel
from schoolchat.services.relay import CompletionRelay, history_payload, title_from
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chats", tags=["Chat"])

DEFAULT_TITLE = "New Chat"


def get_llm(request: Request):
    return request.app.state.llm


def _visible_chat(db: Session, chat_id: int, user: UserModel) -> Chat:
    """Chat lookup for reading/deleting: USERs only see their own chats."""
    chat = db.get(Chat, chat_id)
    if chat is None or (user.role == Role.USER and chat.user_id != user.id):
        raise HTTPException(404, "Chat not found")
    return chat


@router.get("", response_model=ChatList)
def list_chats(
    user_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    owner_id = current_user.id
    if user_id is not None and current_user.role.at_least(Role.ADMIN):
        owner_id = user_id

    counts = (
        db.query(Message.chat_id, func.count(Message.id).label("n"))
          .group_by(Message.chat_id)
          .subquery()
    )
    q = db.query(Chat).filter(Chat.user_id == owner_id)
    total = q.count()
    rows = (
        q.add_columns(func.coalesce(counts.c.n, 0))
         .outerjoin(counts, counts.c.chat_id == Chat.id)
         .order_by(Chat.updated_at.desc(), Chat.id.desc())
         .offset((page - 1) * limit)
         .limit(limit)
         .all()
    )

    out = []
    for chat, n in rows:
        last = (
            db.query(Message)
              .filter(Message.chat_id == chat.id)
              .order_by(Message.created_at.desc(), Message.id.desc())
              .first()
        )
        out.append(ChatSummary(
            id=chat.id,
            user_id=chat.user_id,
            title=chat.title,
            created_at=chat.created_at,
            updated_at=chat.updated_at,
            message_count=n,
            last_message=MessageOut.model_validate(last) if last else None,
        ))
    return ChatList(chats=out, page=page, limit=limit, total=total)


@router.post("", response_model=ChatSummary, status_code=201)
def create_chat(
    body: ChatCreate,
    db: Session = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    chat = Chat(user_id=current_user.id, title=(body.title or "").strip() or DEFAULT_TITLE)
    db.add(chat)
    db.commit()
    db.refresh(chat)
    return ChatSummary(
        id=chat.id,
        user_id=chat.user_id,
        title=chat.title,
        created_at=chat.created_at,
        updated_at=chat.updated_at,
        message_count=0,
    )


@router.get("/{chat_id}", response_model=ChatDetail)
def get_chat(
    chat_id: int,
    db: Session = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return _visible_chat(db, chat_id, current_user)


@router.delete("/{chat_id}", response_model=Detail)
def delete_chat(
    chat_id: int,
    db: Session = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    """Delete one chat and all its messages."""
    chat = _visible_chat(db, chat_id, current_user)
    db.delete(chat)
    db.commit()
    logger.info("Chat deleted", extra={"chat_id": chat_id, "by": current_user.username})
    return Detail(detail="Chat deleted successfully")


def _record_turn(db: Session, chat_id: int, user: UserModel, content: str, model: str) -> list:
    """Store the user's message and return the chat history for the upstream call."""
    # only the owner may talk in a chat, whatever their role
    chat = db.get(Chat, chat_id)
    if chat is None or chat.user_id != user.id:
        raise HTTPException(404, "Chat not found")

    db.add(Message(chat_id=chat.id, role=MessageRole.USER, content=content, model=model))
    if chat.title == DEFAULT_TITLE:
        chat.title = title_from(content)
    db.commit()

    history = (
        db.query(Message)
          .filter(Message.chat_id == chat.id)
          .order_by(Message.created_at, Message.id)
          .all()
    )
    logger.info(
        "Relaying chat turn",
        extra={"chat_id": chat.id, "model": model, "history_len": len(history)},
    )
    return history_payload(history)


@router.post("/{chat_id}/message")
async def send_message(
    chat_id: int,
    body: MessageIn,
    db: Session = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    session_factory: sessionmaker = Depends(get_session_factory),
    llm=Depends(get_llm),
):
    model = body.model or settings.default_model
    if model not in settings.allowed_models:
        raise HTTPException(400, "Unsupported model requested")

    try:
        payload = await run_in_threadpool(_record_turn, db, chat_id, current_user, body.content, model)
    finally:
        # the stream can outlive the request; give the pooled connection back now
        await run_in_threadpool(db.close)

    relay = CompletionRelay(llm, session_factory, chat_id, model)
    return StreamingResponse(
        relay.frames(payload),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
