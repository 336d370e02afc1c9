from typing import List

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from recipe_chat.app.db import models
from recipe_chat.app.schemas.chat import CHAT_MESSAGE_MAX_CHARS, HISTORY_MAX_TURNS, ConversationTurn


def append_message(db: Session, user_id: str, role: str, message: str) -> models.ChatMessage:
    entry = models.ChatMessage(user_id=user_id, role=role, message=message)
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def load_recent(db: Session, user_id: str, limit: int = HISTORY_MAX_TURNS) -> List[models.ChatMessage]:
    """Most recent messages, returned oldest first."""
    stmt = (
        select(models.ChatMessage)
        .where(models.ChatMessage.user_id == user_id)
        .order_by(models.ChatMessage.created_at.desc(), models.ChatMessage.id.desc())
        .limit(limit)
    )
    return list(reversed(db.scalars(stmt).all()))


def conversation_context(messages: List[models.ChatMessage], context_length: int = 10) -> List[ConversationTurn]:
    if context_length <= 0:
        return []
    return [
        ConversationTurn(role=m.role, text=m.message[:CHAT_MESSAGE_MAX_CHARS])
        for m in messages[-context_length:]
        if m.role in ("user", "assistant")
    ]


def clear_history(db: Session, user_id: str) -> int:
    result = db.execute(delete(models.ChatMessage).where(models.ChatMessage.user_id == user_id))
    db.commit()
    return result.rowcount or 0
