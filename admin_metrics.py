# -*- coding: utf-8 -*-
"""
Admin analytics for PalmAI
- Five independent aggregators, each a handful of count/filter queries
- No snapshot isolation: every number reflects the DB at its own query time
- Money leaves the DB in minor units and is reported in major units
"""
from collections import Counter
from datetime import datetime, timedelta, timezone, date as _date
from typing import Dict, Any, Optional, Tuple

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func

from db import (
    get_db, AstroProfile, ChatSession, CouponUsage, Feedback, HoroscopeProfile,
    KundliProfile, Order, PalmProfile, Profile, UserMessageLimit,
)
from auth import require_admin
from palmai_core.schemas import AuthUser

router = APIRouter(prefix="/api", tags=["admin-metrics"])

FEEDBACK_CATEGORIES = ("bug", "feature", "improvement", "general")


# ---- Helpers ------------------------------------------------------------------
def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def _today_utc() -> _date:
    return datetime.now(timezone.utc).date()

def _month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """(start of this month, start of last month), naive UTC."""
    this_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    last_month = (this_month - timedelta(days=1)).replace(day=1)
    return this_month, last_month

def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0

def _ratio(part: float, whole: float) -> float:
    return round(part / whole, 2) if whole else 0.0

def _major(minor: Optional[float]) -> float:
    return round((minor or 0) / 100, 2)

def growth_rate(this_period: float, last_period: float) -> float:
    """Percent change; 0 when there is nothing to compare against."""
    if not last_period:
        return 0.0
    return round((this_period - last_period) / last_period * 100, 2)

def _count(db: Session, col, *criteria) -> int:
    return int(db.query(func.count(col)).filter(*criteria).scalar() or 0)

def _sum(db: Session, col, *criteria) -> int:
    return int(db.query(func.coalesce(func.sum(col), 0)).filter(*criteria).scalar() or 0)


# ---- Aggregators ----------------------------------------------------------------
def user_metrics(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or _now()
    month_start, _ = _month_bounds(now)
    week_ago = now - timedelta(days=7)

    total_users = _count(db, Profile.id)
    paid_users = _count(db, Profile.id, Profile.has_paid.is_(True))

    created = db.query(Profile.created_at).filter(Profile.created_at >= now - timedelta(days=30)).all()
    per_day = Counter(ts.date().isoformat() for (ts,) in created if ts is not None)

    return {
        "totalUsers": total_users,
        "newUsersThisMonth": _count(db, Profile.id, Profile.created_at >= month_start),
        "paidUsers": paid_users,
        "freeUsers": total_users - paid_users,
        "activeUsersThisWeek": _count(db, Profile.id, Profile.updated_at >= week_ago),
        "userGrowthData": [{"date": d, "users": n} for d, n in sorted(per_day.items())],
    }


def service_usage(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or _now()
    week_ago = now - timedelta(days=7)

    palm_total = _count(db, PalmProfile.id)
    palm_completed = _count(db, PalmProfile.id, PalmProfile.status == "completed")

    sessions_total = _count(db, ChatSession.id)
    messages_total = sum(
        len(msgs) for (msgs,) in db.query(ChatSession.messages).all() if isinstance(msgs, list)
    )

    limit_rows = _count(db, UserMessageLimit.id)
    limit_messages = _sum(db, UserMessageLimit.message_count)

    return {
        "palmReadings": {
            "total": palm_total,
            "completed": palm_completed,
            "processing": _count(db, PalmProfile.id, PalmProfile.status == "processing"),
            "failed": _count(db, PalmProfile.id, PalmProfile.status == "failed"),
            "successRate": _pct(palm_completed, palm_total),
        },
        "chatSessions": {
            "total": sessions_total,
            "averageMessagesPerSession": _ratio(messages_total, sessions_total),
            "activeSessionsThisWeek": _count(db, ChatSession.id, ChatSession.updated_at >= week_ago),
        },
        "profiles": {
            "astroProfiles": _count(db, AstroProfile.id),
            "horoscopeProfiles": _count(db, HoroscopeProfile.id),
            "kundliProfiles": _count(db, KundliProfile.id),
        },
        "messageUsage": {
            "totalMessages": limit_messages,
            "averageDailyUsage": _ratio(limit_messages, limit_rows),
            "usersHittingLimits": _count(
                db, UserMessageLimit.id, UserMessageLimit.message_count >= UserMessageLimit.daily_limit
            ),
        },
    }


def revenue_metrics(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or _now()
    month_start, last_month_start = _month_bounds(now)
    paid = Order.status == "paid"

    paid_orders = _count(db, Order.id, paid)
    total_orders = _count(db, Order.id)
    total_revenue = _sum(db, Order.amount, paid)
    this_month = _sum(db, Order.amount, paid, Order.created_at >= month_start)
    last_month = _sum(db, Order.amount, paid, Order.created_at >= last_month_start,
                      Order.created_at < month_start)

    by_currency = {
        cur: _major(amount)
        for cur, amount in db.query(Order.currency, func.sum(Order.amount)).filter(paid)
        .group_by(Order.currency).all()
    }

    usages = _count(db, CouponUsage.id)
    discount_total = _sum(db, CouponUsage.discount_applied)
    with_coupon = _count(db, Order.id, Order.coupon_id.isnot(None))

    return {
        "totalRevenue": _major(total_revenue),
        "revenueThisMonth": _major(this_month),
        "revenueLastMonth": _major(last_month),
        "revenueGrowth": growth_rate(this_month, last_month),
        "averageOrderValue": _major(total_revenue / paid_orders) if paid_orders else 0.0,
        "totalOrders": total_orders,
        "paidOrders": paid_orders,
        "paymentSuccessRate": _pct(paid_orders, total_orders),
        "revenueByCurrency": by_currency,
        "couponImpact": {
            "totalDiscountGiven": _major(discount_total),
            "ordersWithCoupons": with_coupon,
            "averageDiscount": _major(discount_total / usages) if usages else 0.0,
        },
    }


def feedback_metrics(db: Session) -> Dict[str, Any]:
    total = _count(db, Feedback.id)
    rated = _count(db, Feedback.id, Feedback.rating.isnot(None))
    rating_sum = _sum(db, Feedback.rating, Feedback.rating.isnot(None))

    by_rating = dict(
        db.query(Feedback.rating, func.count(Feedback.id))
        .filter(Feedback.rating.isnot(None)).group_by(Feedback.rating).all()
    )
    by_category = dict(
        db.query(Feedback.category, func.count(Feedback.id)).group_by(Feedback.category).all()
    )
    return {
        "totalFeedback": total,
        "averageRating": _ratio(rating_sum, rated),
        "ratingDistribution": [{"rating": r, "count": int(by_rating.get(r, 0))} for r in range(1, 6)],
        "categoryBreakdown": [{"category": c, "count": int(by_category.get(c, 0))} for c in FEEDBACK_CATEGORIES],
        "pendingFeedback": _count(db, Feedback.id, Feedback.status == "pending"),
    }


def system_health(db: Session) -> Dict[str, Any]:
    return {
        "palmReadingFailures": _count(db, PalmProfile.id, PalmProfile.status == "failed"),
        "usersAtMessageLimit": _count(
            db, UserMessageLimit.id,
            UserMessageLimit.date == _today_utc(),
            UserMessageLimit.message_count >= UserMessageLimit.daily_limit,
        ),
        # image bytes live in the object store, which this service cannot list
        "storageUsage": {"palmImages": 0, "totalStorage": 0},
    }


def compile_analytics(db: Session) -> Dict[str, Any]:
    now = _now()
    return {
        "userMetrics": user_metrics(db, now),
        "serviceUsage": service_usage(db, now),
        "revenueMetrics": revenue_metrics(db, now),
        "feedbackMetrics": feedback_metrics(db),
        "systemHealth": system_health(db),
    }


# ---- Core snapshot endpoint ----------------------------------------------------
@router.get("/admin-analytics")
def admin_analytics(
    db: Session = Depends(get_db),
    _admin: AuthUser = Depends(require_admin),
) -> Dict[str, Any]:
    return {"analytics": compile_analytics(db)}
