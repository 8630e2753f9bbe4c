# feedback.py
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db import get_db, Feedback
from auth import get_current_user
from palmai_core.errors import PersistenceError, ValidationError
from palmai_core.schemas import AuthUser, FeedbackIn

log = logging.getLogger("feedback")
router = APIRouter(prefix="/api", tags=["feedback"])

CATEGORIES = ("bug", "feature", "improvement", "general")


def _nonempty(value) -> bool:
    return isinstance(value, str) and bool(value.strip())

def _valid_rating(value) -> bool:
    # bool is an int subclass; a JSON true is not a rating
    return isinstance(value, (int, float)) and not isinstance(value, bool) and 1 <= value <= 5


@router.post("/submit-feedback")
def submit_feedback(body: FeedbackIn, db: Session = Depends(get_db),
                    user: AuthUser = Depends(get_current_user)):
    if not _nonempty(body.title):
        raise ValidationError("Title is required")
    if not _nonempty(body.message):
        raise ValidationError("Message is required")
    if body.category not in CATEGORIES:
        raise ValidationError("Valid category is required (bug, feature, improvement, or general)")
    if body.rating is not None and not _valid_rating(body.rating):
        raise ValidationError("Rating must be between 1 and 5")

    row = Feedback(
        user_id=user.id,
        title=body.title.strip(),
        message=body.message.strip(),
        category=body.category,
        rating=int(round(body.rating)) if body.rating is not None else None,
        status="pending",
    )
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("Failed to submit feedback") from e

    log.info("feedback %s (%s) from user=%s", row.id, row.category, user.id)
    return {
        "success": True,
        "message": "Feedback submitted successfully",
        "feedback": {
            "id": row.id,
            "title": row.title,
            "category": row.category,
            "rating": row.rating,
            "status": row.status,
            "created_at": row.created_at.isoformat() + "Z" if row.created_at else None,
        },
    }
