# health.py
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy import text

from db import get_db
from palmai_core.settings import settings
from palmai_core.schemas import Health
from samadhan import engine_openai

log = logging.getLogger("health")
router = APIRouter(prefix="/api", tags=["health"])

@router.get("/health", response_model=Health)
def health() -> Health:  # app is up
    return Health(ok=True, details={"app": settings.APP_NAME, "version": settings.VERSION})

@router.get("/ready", response_model=Health)
def ready(db: Session = Depends(get_db)) -> Health:  # app + DB are up
    warnings = []
    if not engine_openai.is_configured():
        warnings.append("OPENAI_API_KEY not set")
    if not (settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET):
        warnings.append("Razorpay keys not set")
    if not settings.SUPABASE_JWT_SECRET:
        warnings.append("SUPABASE_JWT_SECRET not set")
    try:
        db.execute(text("SELECT 1"))
        return Health(ok=True, db="up", warnings=warnings)
    except SQLAlchemyError as e:
        log.warning("readiness probe failed: %s", e)
        return Health(ok=False, db="down", warnings=warnings)
