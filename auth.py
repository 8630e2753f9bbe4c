# auth.py
import logging
from typing import Optional, Set

import jwt
from fastapi import Depends, Header, Cookie
from sqlalchemy.orm import Session

from db import get_db, ensure_profile, AdminUser
from palmai_core.errors import AuthError, ForbiddenError
from palmai_core.schemas import AuthUser
from palmai_core.settings import settings

log = logging.getLogger("auth")

# ------------------------------------------------------------------------------
# Settings
# ------------------------------------------------------------------------------
JWT_SECRET = settings.SUPABASE_JWT_SECRET or ""
JWT_ALGO = settings.JWT_ALGO
JWT_AUDIENCE = settings.JWT_AUDIENCE or None
COOKIE_NAME = settings.AUTH_COOKIE_NAME

# Bootstrap admins from env; copied into admin_users at startup
ADMIN_EMAILS: Set[str] = settings.ADMIN_EMAILS_SET


# ------------------------------------------------------------------------------
# Token extraction (Bearer header OR cookie) and verification
# ------------------------------------------------------------------------------
def _extract_bearer_token(authorization: Optional[str], cookie_token: Optional[str]) -> str:
    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1].strip():
            return parts[1].strip()
    if cookie_token and cookie_token.strip():
        return cookie_token.strip()
    raise AuthError("Missing token")

def _decode_token(token: str) -> dict:
    """
    Verify an identity-service access token. The hosted auth service signs
    its JWTs with a shared HS256 secret and audience "authenticated".
    """
    if not JWT_SECRET:
        log.error("SUPABASE_JWT_SECRET is not configured; rejecting all tokens")
        raise AuthError("Invalid or expired token")
    try:
        return jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGO],
            audience=JWT_AUDIENCE,
            options={"verify_aud": bool(JWT_AUDIENCE)},
        )
    except jwt.PyJWTError as e:
        log.info("token rejected: %s", e)
        raise AuthError("Invalid or expired token")


# ------------------------------------------------------------------------------
# Admin allow-list
# ------------------------------------------------------------------------------
def is_active_admin(db: Session, email: str) -> bool:
    e = (email or "").lower().strip()
    if not e:
        return False
    row = db.query(AdminUser).filter(AdminUser.email == e, AdminUser.is_active.is_(True)).first()
    return row is not None

def sync_admin_allowlist(db: Session) -> int:
    """
    Insert any ADMIN_EMAILS entry missing from admin_users (active).
    Existing rows keep their is_active flag so a deactivation in the table wins.
    """
    added = 0
    try:
        for email in sorted(ADMIN_EMAILS):
            if not db.query(AdminUser).filter(AdminUser.email == email).first():
                db.add(AdminUser(email=email, is_active=True))
                added += 1
        db.commit()
    except Exception as e:
        db.rollback()
        log.warning("admin allow-list sync failed: %s", e)
        return 0
    return added


# ------------------------------------------------------------------------------
# Dependencies
# ------------------------------------------------------------------------------
def get_current_user(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, convert_underscores=False),
    token_cookie: Optional[str] = Cookie(default=None, alias=COOKIE_NAME),
) -> AuthUser:
    """
    Resolve the caller from a JWT presented either as:
      - Authorization: Bearer <token>
      - Cookie: token=<token>    (used by the HTML admin dashboard)
    """
    token = _extract_bearer_token(authorization, token_cookie)
    payload = _decode_token(token)

    sub = str(payload.get("sub") or "").strip()
    if not sub:
        raise AuthError("Invalid token payload")
    email = str(payload.get("email") or "").strip().lower()

    ensure_profile(db, sub, email)
    return AuthUser(id=sub, email=email)


def require_admin(
    user: AuthUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AuthUser:
    if is_active_admin(db, user.email):
        return user
    raise ForbiddenError("Admin access required")
