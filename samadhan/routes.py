# -*- coding: utf-8 -*-
"""
Samadhan chat: one rolling transcript per user, gated by a daily message quota.
"""

# samadhan/routes.py
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from db import get_db, utcnow, ChatSession, PalmProfile, UserMessageLimit
from auth import get_current_user
from palmai_core.errors import ValidationError, QuotaExceeded, UpstreamError, PersistenceError
from palmai_core.schemas import AuthUser, ChatCompletionIn
from samadhan import engine_openai
from samadhan.limits import chat_caps
from samadhan.utils_prompt import build_chat_system_prompt, build_chat_messages

log = logging.getLogger("chat")
router = APIRouter(prefix="/api", tags=["chat"])

SESSION_TITLE = "Chat with Samadhan"


def _today_utc():
    return datetime.now(timezone.utc).date()

def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

def _message(role: str, content: str, offset_ms: int = 0) -> Dict[str, Any]:
    return {
        "id": str(int(time.time() * 1000) + offset_ms),
        "role": role,
        "content": content,
        "timestamp": _iso_now(),
    }

# ------------------------------------------------------------------------------
# Quota helpers
# ------------------------------------------------------------------------------
def get_or_create_limit(db: Session, user_id: str) -> UserMessageLimit:
    """Today's counter row, created lazily with the configured default limit."""
    today = _today_utc()
    row = db.query(UserMessageLimit).filter(
        UserMessageLimit.user_id == user_id, UserMessageLimit.date == today
    ).first()
    if row is not None:
        return row
    row = UserMessageLimit(user_id=user_id, date=today, message_count=0,
                           daily_limit=chat_caps().daily_messages)
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent request created it first
        db.rollback()
        row = db.query(UserMessageLimit).filter(
            UserMessageLimit.user_id == user_id, UserMessageLimit.date == today
        ).one()
    db.refresh(row)
    return row

def reserve_message(db: Session, row_id: int) -> bool:
    """
    Atomically take one message from today's quota.
    Returns False when the quota is already used up.
    """
    updated = db.query(UserMessageLimit).filter(
        UserMessageLimit.id == row_id,
        UserMessageLimit.message_count < UserMessageLimit.daily_limit,
    ).update(
        {UserMessageLimit.message_count: UserMessageLimit.message_count + 1,
         UserMessageLimit.updated_at: utcnow()},
        synchronize_session=False,
    )
    db.commit()
    return updated == 1

def release_message(db: Session, row_id: int) -> None:
    """Give a reserved message back after a failed completion; best effort."""
    try:
        db.query(UserMessageLimit).filter(
            UserMessageLimit.id == row_id, UserMessageLimit.message_count > 0
        ).update(
            {UserMessageLimit.message_count: UserMessageLimit.message_count - 1},
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("could not release reserved message row=%s: %s", row_id, e)

def _limit_exceeded(row: UserMessageLimit) -> QuotaExceeded:
    return QuotaExceeded(
        "Daily message limit reached",
        success=False,
        limitReached=True,
        currentCount=row.message_count,
        dailyLimit=row.daily_limit,
    )

# ------------------------------------------------------------------------------
# Transcript helpers
# ------------------------------------------------------------------------------
def _clear_session(db: Session, user_id: str) -> None:
    try:
        db.query(ChatSession).filter(ChatSession.user_id == user_id).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.warning("new_chat: failed to clear history for user=%s: %s", user_id, e)

def _latest_completed_analysis(db: Session, user_id: str) -> Optional[Dict[str, Any]]:
    row = (
        db.query(PalmProfile)
        .filter(PalmProfile.user_id == user_id, PalmProfile.status == "completed")
        .order_by(PalmProfile.created_at.desc(), PalmProfile.id.desc())
        .first()
    )
    return row.ai_analysis if row is not None and row.ai_analysis else None

def _save_session(db: Session, user_id: str, session: Optional[ChatSession],
                  messages: List[Dict[str, Any]]) -> None:
    """Rewrite the whole transcript; failures are logged and the reply still returned."""
    try:
        if session is None:
            session = ChatSession(user_id=user_id, title=SESSION_TITLE)
            db.add(session)
        session.title = session.title or SESSION_TITLE
        session.messages = list(messages)
        session.updated_at = utcnow()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("failed to save chat session for user=%s: %s", user_id, e)

# ------------------------------------------------------------------------------
# Routes
# ------------------------------------------------------------------------------
@router.post("/chat-completion")
def chat_completion(body: ChatCompletionIn, db: Session = Depends(get_db),
                    user: AuthUser = Depends(get_current_user)):
    """
    Body: { message: str, action?: "new_chat" }
    Returns { ai_message, all_messages, success: true }.
    """
    message = body.message
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("Valid message is required")
    if not engine_openai.is_configured():
        raise UpstreamError("OpenAI API key not configured")

    caps = chat_caps()
    limit = get_or_create_limit(db, user.id)
    if limit.message_count >= limit.daily_limit:
        log.info("quota reached user=%s count=%s limit=%s", user.id, limit.message_count, limit.daily_limit)
        raise _limit_exceeded(limit)

    if body.action == "new_chat":
        _clear_session(db, user.id)

    session = db.query(ChatSession).filter(ChatSession.user_id == user.id).first()
    history: List[Dict[str, Any]] = list(session.messages or []) if session is not None else []
    system = build_chat_system_prompt(_latest_completed_analysis(db, user.id))

    try:
        reserved = reserve_message(db, limit.id)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("Failed to update message count") from e
    if not reserved:
        db.refresh(limit)
        raise _limit_exceeded(limit)

    try:
        reply = engine_openai.generate(
            messages=build_chat_messages(system, history, message, caps.history_turns),
            caps=caps.completion,
        )
    except engine_openai.CompletionError as e:
        release_message(db, limit.id)
        raise UpstreamError("Failed to get AI response") from e
    except Exception:
        db.rollback()
        release_message(db, limit.id)
        raise

    user_msg = _message("user", message)
    ai_msg = _message("assistant", reply, offset_ms=1)
    all_messages = history + [user_msg, ai_msg]
    _save_session(db, user.id, session, all_messages)

    return {"ai_message": ai_msg, "all_messages": all_messages, "success": True}


@router.post("/check-message-limit")
def check_message_limit(db: Session = Depends(get_db), user: AuthUser = Depends(get_current_user)):
    try:
        row = get_or_create_limit(db, user.id)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(
            "Failed to check message limit",
            success=False, canSendMessage=False, currentCount=0, dailyLimit=0, remainingMessages=0,
        ) from e
    return {
        "success": True,
        "canSendMessage": row.message_count < row.daily_limit,
        "currentCount": row.message_count,
        "dailyLimit": row.daily_limit,
        "remainingMessages": max(0, row.daily_limit - row.message_count),
    }


@router.get("/chat-history")
def chat_history(db: Session = Depends(get_db), user: AuthUser = Depends(get_current_user)):
    session = db.query(ChatSession).filter(ChatSession.user_id == user.id).first()
    if session is None:
        return {"success": True, "messages": [], "title": None}
    return {"success": True, "messages": session.messages or [], "title": session.title}
