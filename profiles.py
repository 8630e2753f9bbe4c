# profiles.py
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from db import get_db, utcnow, AstroProfile, Profile
from auth import get_current_user
from palmai_core.errors import PersistenceError, ValidationError
from palmai_core.schemas import AuthUser, UpdateProfileIn

log = logging.getLogger("profile")
router = APIRouter(prefix="/api", tags=["profile"])

GENDERS = ("male", "female", "other")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}$")


def _parse_birth_date(value: Any) -> Optional[date]:
    if not isinstance(value, str) or not _DATE_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None

def _iso(dt) -> Optional[str]:
    return dt.isoformat() + "Z" if dt is not None else None

def _is_complete(astro: Optional[AstroProfile]) -> bool:
    return bool(astro is not None and astro.date_of_birth and astro.gender)


@router.post("/update-profile")
def update_profile(body: UpdateProfileIn, db: Session = Depends(get_db),
                   user: AuthUser = Depends(get_current_user)):
    dob = _parse_birth_date(body.dateOfBirth)
    if dob is None:
        raise ValidationError("Valid date of birth is required (YYYY-MM-DD format)")
    if body.gender not in GENDERS:
        raise ValidationError("Valid gender is required (male, female, or other)")
    tob = body.timeOfBirth
    if tob and (not isinstance(tob, str) or not _TIME_RE.match(tob)):
        raise ValidationError("Time of birth must be in HH:MM format")
    if dob > datetime.now(timezone.utc).date():
        raise ValidationError("Date of birth cannot be in the future")
    place = body.placeOfBirth.strip() if isinstance(body.placeOfBirth, str) and body.placeOfBirth.strip() else None

    def _upsert() -> AstroProfile:
        astro = db.query(AstroProfile).filter(AstroProfile.user_id == user.id).first()
        if astro is None:
            astro = AstroProfile(user_id=user.id, preferences={})
            db.add(astro)
        astro.date_of_birth = dob
        astro.time_of_birth = tob or None
        astro.place_of_birth = place
        astro.gender = body.gender
        astro.updated_at = utcnow()
        db.commit()
        return astro

    try:
        try:
            astro = _upsert()
        except IntegrityError:
            # lost an insert race on user_id; the row exists now, update it
            db.rollback()
            astro = _upsert()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("Failed to update profile") from e

    log.info("astro profile saved user=%s", user.id)
    return {
        "success": True,
        "message": "Profile updated successfully",
        "profile": {
            "id": astro.id,
            "dateOfBirth": astro.date_of_birth.isoformat(),
            "timeOfBirth": astro.time_of_birth,
            "placeOfBirth": astro.place_of_birth,
            "gender": astro.gender,
            "updatedAt": _iso(astro.updated_at),
        },
    }


@router.get("/get-profile")
def get_profile(db: Session = Depends(get_db), user: AuthUser = Depends(get_current_user)) -> Dict[str, Any]:
    astro = db.query(AstroProfile).filter(AstroProfile.user_id == user.id).first()
    account = db.get(Profile, user.id)
    return {
        "success": True,
        "profile": {
            "id": user.id,
            "email": user.email or (account.email if account else None),
            "fullName": (account.full_name if account else None) or "",
            "dateOfBirth": astro.date_of_birth.isoformat() if astro and astro.date_of_birth else None,
            "timeOfBirth": astro.time_of_birth if astro else None,
            "placeOfBirth": astro.place_of_birth if astro else None,
            "gender": astro.gender if astro else None,
            "phone": astro.phone if astro else None,
            "preferences": (astro.preferences if astro else None) or {},
            "createdAt": _iso(astro.created_at) if astro else None,
            "updatedAt": _iso(astro.updated_at) if astro else None,
            "isComplete": _is_complete(astro),
        },
    }


@router.get("/get-profile-status")
def get_profile_status(db: Session = Depends(get_db), user: AuthUser = Depends(get_current_user)):
    astro = db.query(AstroProfile).filter(AstroProfile.user_id == user.id).first()
    return {
        "success": True,
        "isComplete": _is_complete(astro),
        "profile": {
            "hasDateOfBirth": bool(astro.date_of_birth),
            "hasGender": bool(astro.gender),
        } if astro is not None else None,
    }
