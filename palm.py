# palm.py
"""
Palm-reading generation and status polling.

State per user (latest palm_profile row wins):
    not_started -> processing -> completed | failed
    failed -> processing (resubmission)
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db import get_db, utcnow, PalmProfile
from auth import get_current_user
from palmai_core.analysis.palm_template import PALM_ANALYSIS_TEMPLATE
from palmai_core.analysis.palm_validator import (
    AnalysisParseError, assemble_analysis, parse_analysis_text, validate_json_structure,
)
from palmai_core.errors import ConflictError, PersistenceError, UpstreamError, ValidationError
from palmai_core.schemas import AuthUser, PalmReadingIn
from samadhan import engine_openai
from samadhan.limits import PALM_READING
from samadhan.utils_prompt import palm_messages

log = logging.getLogger("palm")
router = APIRouter(prefix="/api", tags=["palm"])

IN_PROGRESS_MSG = "Palm analysis is already in progress. Please wait for completion or check results."
COMPLETED_MSG = "Palm analysis already completed. Please check your results."


def _iso(dt) -> Optional[str]:
    return dt.isoformat() + "Z" if dt is not None else None

def latest_palm_profile(db: Session, user_id: str) -> Optional[PalmProfile]:
    return (
        db.query(PalmProfile)
        .filter(PalmProfile.user_id == user_id)
        .order_by(PalmProfile.created_at.desc(), PalmProfile.id.desc())
        .first()
    )

def _mark_failed(db: Session, row_id: int) -> None:
    try:
        db.query(PalmProfile).filter(PalmProfile.id == row_id).update(
            {PalmProfile.status: "failed", PalmProfile.updated_at: utcnow()},
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("failed to mark palm_profile=%s as failed: %s", row_id, e)

def _start_processing(db: Session, user_id: str, profile: Any, image_url: Optional[str]) -> int:
    """
    Move the user into `processing` and return the row id.
    A failed row is re-used through a conditional update, so two concurrent
    resubmissions cannot both win; a lost race surfaces as 409.
    """
    existing = latest_palm_profile(db, user_id)
    if existing is not None:
        if existing.status == "processing":
            raise ConflictError(IN_PROGRESS_MSG)
        if existing.status == "completed":
            raise ConflictError(COMPLETED_MSG)

        won = db.query(PalmProfile).filter(
            PalmProfile.id == existing.id, PalmProfile.status == "failed"
        ).update(
            {
                PalmProfile.status: "processing",
                PalmProfile.processing_started_at: utcnow(),
                PalmProfile.palm_image_url: image_url,
                PalmProfile.questionnaire_data: profile,
                PalmProfile.ai_analysis: {},
                PalmProfile.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
        db.commit()
        if won != 1:
            raise ConflictError(IN_PROGRESS_MSG)
        return existing.id

    row = PalmProfile(
        user_id=user_id,
        status="processing",
        processing_started_at=utcnow(),
        palm_image_url=image_url,
        questionnaire_data=profile,
        ai_analysis={},
    )
    db.add(row)
    db.commit()
    return row.id


def _run_analysis(db: Session, row_id: int, user_id: str, profile: Any) -> Dict[str, Any]:
    try:
        text = engine_openai.generate(messages=palm_messages(profile), caps=PALM_READING)
    except engine_openai.CompletionError as e:
        raise UpstreamError("Failed to analyze palm profile") from e

    try:
        data = parse_analysis_text(text)
    except AnalysisParseError as e:
        log.warning("palm row=%s unparseable output: %s", row_id, e)
        if e.block_found:
            raise UpstreamError("Failed to parse analysis results") from e
        raise UpstreamError("Invalid analysis format received") from e

    validation = validate_json_structure(data, PALM_ANALYSIS_TEMPLATE)
    if not validation.is_valid:
        log.warning("palm row=%s missing %d template fields", row_id, len(validation.missing_fields))
        raise UpstreamError(
            "AI response does not match expected format",
            missingFields=validation.missing_fields,
        )

    analysis = assemble_analysis(data, user_id=user_id, profile=profile, analysis_id=str(row_id))
    try:
        db.query(PalmProfile).filter(PalmProfile.id == row_id).update(
            {PalmProfile.status: "completed", PalmProfile.ai_analysis: analysis,
             PalmProfile.updated_at: utcnow()},
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError as e:
        raise PersistenceError("Failed to save analysis results") from e
    return analysis


@router.post("/generate-palm-reading")
def generate_palm_reading(body: PalmReadingIn, db: Session = Depends(get_db),
                          user: AuthUser = Depends(get_current_user)) -> Dict[str, Any]:
    profile = body.palmProfile
    if not profile:
        raise ValidationError("Palm profile is required")
    if not engine_openai.is_configured():
        raise UpstreamError("OpenAI API key not configured")

    try:
        row_id = _start_processing(db, user.id, profile, body.palmImageUrl)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("Failed to create analysis record") from e
    log.info("palm analysis processing user=%s row=%s", user.id, row_id)

    # any failure past this point must not leave the row in processing
    try:
        analysis = _run_analysis(db, row_id, user.id, profile)
    except Exception:
        db.rollback()
        _mark_failed(db, row_id)
        raise

    log.info("palm analysis completed user=%s row=%s", user.id, row_id)
    return analysis


@router.get("/check-palm-analysis")
def check_palm_analysis(db: Session = Depends(get_db), user: AuthUser = Depends(get_current_user)):
    row = latest_palm_profile(db, user.id)
    if row is None:
        return {"status": "not_started", "analysis": None, "userId": user.id}

    out: Dict[str, Any] = {"status": row.status, "analysis": None, "userId": user.id}
    if row.status == "completed" and row.ai_analysis:
        out["analysis"] = {
            "id": row.id,
            "userId": user.id,
            "createdAt": _iso(row.created_at),
            "profile": row.questionnaire_data,
            **row.ai_analysis,
        }
    elif row.status == "failed":
        out["savedData"] = {
            "palmImageUrl": row.palm_image_url,
            "questionnaire_data": row.questionnaire_data,
        }
    elif row.status == "processing":
        out["processingStartedAt"] = _iso(row.processing_started_at)
    return out
