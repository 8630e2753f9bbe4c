# db.py
import os
from datetime import datetime, timezone
from typing import Generator, Optional

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, DateTime, Date, Float, Text,
    JSON, ForeignKey, UniqueConstraint, text
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, declarative_base, scoped_session, Session
from sqlalchemy.pool import StaticPool

# ------------------------------------------------------------------------------
# Connection (fail-fast in prod; optional SQLite only if you explicitly allow it)
# ------------------------------------------------------------------------------
def _normalize_db_url(url: str) -> str:
    return url.replace("postgres://", "postgresql://", 1) if url.startswith("postgres://") else url

DATABASE_URL = _normalize_db_url((os.getenv("DATABASE_URL") or "").strip())
DB_FALLBACK_TO_SQLITE = (os.getenv("DB_FALLBACK_TO_SQLITE", "0").lower() in ("1", "true", "yes"))
SQLITE_URL = "sqlite:///./palmai.dev.sqlite3"

if not DATABASE_URL:
    if DB_FALLBACK_TO_SQLITE:
        DATABASE_URL = SQLITE_URL
    else:
        # Prevent accidental local DBs in production environments.
        raise RuntimeError("DATABASE_URL not set. Set DB_FALLBACK_TO_SQLITE=1 only for local dev.")

def _make_engine(url: str):
    url = _normalize_db_url(url)
    kwargs = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every session sees an empty DB
            kwargs["poolclass"] = StaticPool
    else:
        connect_args = {"connect_timeout": int(os.getenv("PG_CONNECT_TIMEOUT", "5"))}
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=300,
        future=True,
        connect_args=connect_args,
        **kwargs,
    )

engine = _make_engine(DATABASE_URL)
SessionLocal = scoped_session(sessionmaker(autocommit=False, autoflush=False, bind=engine))
Base = declarative_base()

def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

# ------------------------------------------------------------------------------
# ORM Models
# ------------------------------------------------------------------------------
class Profile(Base):
    __tablename__ = "profiles"
    id = Column(String(64), primary_key=True)                   # identity-service user id
    email = Column(String(255), index=True, nullable=True)
    full_name = Column(String(255), nullable=True)

    # Billing
    has_paid = Column(Boolean, nullable=False, default=False)
    payment_verified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, index=True)

class AstroProfile(Base):
    __tablename__ = "astro_profile"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), unique=True, index=True, nullable=False)
    date_of_birth = Column(Date, nullable=True)
    time_of_birth = Column(String(5), nullable=True)            # "HH:MM"
    place_of_birth = Column(String(255), nullable=True)
    gender = Column(String(16), nullable=True)                  # male | female | other
    phone = Column(String(32), nullable=True)
    preferences = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class PalmProfile(Base):
    __tablename__ = "palm_profile"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), index=True, nullable=False)
    status = Column(String(16), index=True, nullable=False, default="processing")  # processing | completed | failed
    palm_image_url = Column(Text, nullable=True)
    hand_preference = Column(String(16), nullable=True)
    questionnaire_data = Column(JSON, nullable=False, default=dict)
    ai_analysis = Column(JSON, nullable=False, default=dict)
    processing_started_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class HoroscopeProfile(Base):
    __tablename__ = "horoscope_profile"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), index=True, nullable=False)
    zodiac_sign = Column(String(32), nullable=True)
    horoscope = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow)

class KundliProfile(Base):
    __tablename__ = "kundli_profile"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), index=True, nullable=False)
    birth_details = Column(JSON, nullable=False, default=dict)
    kundli_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow)

class ChatSession(Base):
    __tablename__ = "chat_sessions"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), unique=True, index=True, nullable=False)
    title = Column(String(255), nullable=True)
    messages = Column(JSON, nullable=False, default=list)       # [{id, role, content, timestamp}]
    status = Column(String(16), nullable=False, default="active")
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, index=True)

class UserMessageLimit(Base):
    __tablename__ = "user_message_limits"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_user_message_limits_user_date"),)
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), index=True, nullable=False)
    date = Column(Date, index=True, nullable=False)
    message_count = Column(Integer, nullable=False, default=0)
    daily_limit = Column(Integer, nullable=False, default=10)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class Coupon(Base):
    __tablename__ = "coupons"
    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, index=True, nullable=False)
    type = Column(String(16), nullable=False)                   # free | discount
    discount_type = Column(String(16), nullable=True)           # percentage | amount
    discount_value = Column(Float, nullable=True)               # percent, or major units for "amount"
    currency = Column(String(8), nullable=True)
    usage_limit = Column(Integer, nullable=False, default=1)
    current_usage = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    description = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class CouponUsage(Base):
    __tablename__ = "coupon_usages"
    id = Column(Integer, primary_key=True, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = Column(String(64), index=True, nullable=False)
    order_id = Column(String(64), index=True, nullable=True)    # provider order id; null for free waivers
    discount_applied = Column(Integer, nullable=False, default=0)
    original_amount = Column(Integer, nullable=False, default=0)
    final_amount = Column(Integer, nullable=False, default=0)
    currency = Column(String(8), nullable=True)
    used_at = Column(DateTime, default=utcnow, index=True)

class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), index=True, nullable=False)
    provider = Column(String(16), nullable=False, default="razorpay")  # razorpay | stripe
    order_id = Column(String(64), unique=True, index=True, nullable=True)
    stripe_session_id = Column(String(255), unique=True, index=True, nullable=True)
    payment_id = Column(String(64), nullable=True)
    amount = Column(Integer, nullable=False)                    # minor units
    currency = Column(String(8), nullable=False)
    status = Column(String(16), index=True, nullable=False, default="pending")  # pending | paid | failed | expired
    coupon_id = Column(Integer, ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class Feedback(Base):
    __tablename__ = "feedback"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), index=True, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    category = Column(String(16), index=True, nullable=False)   # bug | feature | improvement | general
    rating = Column(Integer, nullable=True)
    status = Column(String(16), index=True, nullable=False, default="pending")
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class AdminUser(Base):
    __tablename__ = "admin_users"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)

# ------------------------------------------------------------------------------
# Init & session helpers
# ------------------------------------------------------------------------------
def init_db() -> None:
    """Probe connectivity, then create tables if missing (no destructive migrations)."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    Base.metadata.create_all(bind=engine)

def get_db() -> Generator[Session, None, None]:
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# ------------------------------------------------------------------------------
# Small utility helpers used by routes
# ------------------------------------------------------------------------------
def ensure_profile(db: Session, user_id: str, email: Optional[str]) -> Profile:
    """Return the caller's Profile, creating it on first sight of a signed-up user."""
    profile = db.get(Profile, user_id)
    if profile is not None:
        return profile
    try:
        profile = Profile(id=user_id, email=(email or None))
        db.add(profile)
        db.commit()
    except IntegrityError:
        # a parallel request created it first
        db.rollback()
        profile = db.get(Profile, user_id)
    return profile

def mark_profile_paid(db: Session, user_id: str) -> bool:
    """Flip has_paid; returns False when the profile row is missing. Caller commits."""
    profile = db.get(Profile, user_id)
    if profile is None:
        return False
    profile.has_paid = True
    profile.payment_verified_at = utcnow()
    return True
