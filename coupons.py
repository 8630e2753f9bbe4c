# coupons.py
from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db import get_db, utcnow, Coupon, CouponUsage
from auth import get_current_user
from palmai_core.errors import PersistenceError
from palmai_core.pricing import Price, price_for_country
from palmai_core.schemas import AuthUser, ValidateCouponIn

log = logging.getLogger("coupons")
router = APIRouter(prefix="/api", tags=["coupons"])

REGION_MISMATCH = "Coupon not applicable for your region"

# ------------------------- Database-side validation ---------------------------

@dataclass
class CouponCheck:
    is_valid: bool
    error_message: Optional[str] = None
    coupon: Optional[Coupon] = None

def normalize_code(code: str) -> str:
    return (code or "").strip().upper()

def validate_coupon_code(db: Session, code: str, user_id: str,
                         now: Optional[datetime] = None) -> CouponCheck:
    """
    Redeemability of `code` for `user_id`: exists, active, inside its validity
    window, capacity left, and not already redeemed by this user.
    """
    now = now or utcnow()
    coupon = db.query(Coupon).filter(Coupon.code == normalize_code(code)).first()
    if coupon is None:
        return CouponCheck(False, "Invalid coupon code")
    if not coupon.is_active:
        return CouponCheck(False, "This coupon is no longer active")
    if coupon.valid_from and now < coupon.valid_from:
        return CouponCheck(False, "This coupon is not yet valid")
    if coupon.valid_until and now > coupon.valid_until:
        return CouponCheck(False, "This coupon has expired")
    if (coupon.current_usage or 0) >= (coupon.usage_limit or 0):
        return CouponCheck(False, "This coupon has reached its usage limit")
    used = db.query(CouponUsage.id).filter(
        CouponUsage.coupon_id == coupon.id, CouponUsage.user_id == user_id
    ).first()
    if used is not None:
        return CouponCheck(False, "You have already used this coupon")
    return CouponCheck(True, None, coupon)

def coupon_payload(coupon: Coupon) -> Dict[str, Any]:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "type": coupon.type,
        "discount_type": coupon.discount_type,
        "discount_value": coupon.discount_value,
        "currency": coupon.currency,
    }

# ------------------------- Discount arithmetic ---------------------------------

def _round_half_up(x: float) -> int:
    # round() is banker's rounding; 148.5 must become 149
    return int(math.floor(x + 0.5))

def calculate_discount(coupon: Dict[str, Any], price: Price) -> Optional[Dict[str, Any]]:
    """
    Discount in minor units against `price`.

    free       -> whole price waived
    percentage -> round(original * value / 100)
    amount     -> value is in major units and must match the price currency,
                  otherwise None (coupon not usable in this region)
    The discount is capped at the original amount and the final amount never
    drops below zero.
    """
    original = int(price.amount)
    currency = price.currency

    if coupon.get("type") == "free":
        return {
            "type": "free",
            "value": 0,
            "originalAmount": original,
            "discountAmount": original,
            "finalAmount": 0,
            "currency": currency,
        }
    if coupon.get("type") != "discount":
        return None

    value = float(coupon.get("discount_value") or 0)
    kind = coupon.get("discount_type")
    discount = 0
    if kind == "percentage":
        discount = _round_half_up(original * value / 100)
    elif kind == "amount":
        if (coupon.get("currency") or "").upper() != currency:
            return None
        discount = _round_half_up(value * 100)

    discount = max(0, min(int(discount), original))
    return {
        "type": kind or "amount",
        "value": coupon.get("discount_value") or 0,
        "originalAmount": original,
        "discountAmount": discount,
        "finalAmount": max(0, original - discount),
        "currency": currency,
    }

# ------------------------- Usage bookkeeping ----------------------------------

def record_usage(db: Session, coupon: Coupon, user_id: str, discount: Dict[str, Any],
                 order_id: Optional[str]) -> CouponUsage:
    """Adds the usage row; the caller commits."""
    usage = CouponUsage(
        coupon_id=coupon.id,
        user_id=user_id,
        order_id=order_id,
        discount_applied=int(discount["discountAmount"]),
        original_amount=int(discount["originalAmount"]),
        final_amount=int(discount["finalAmount"]),
        currency=discount["currency"],
    )
    db.add(usage)
    return usage

def increment_usage(db: Session, coupon_id: int) -> bool:
    """Atomic current_usage + 1; failure is logged and never undoes the order."""
    try:
        db.query(Coupon).filter(Coupon.id == coupon_id).update(
            {Coupon.current_usage: Coupon.current_usage + 1, Coupon.updated_at: utcnow()},
            synchronize_session=False,
        )
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        log.error("coupon=%s usage increment failed: %s", coupon_id, e)
        return False

def release_usage(db: Session, order_id: str) -> int:
    """
    Undo the redemption tied to a failed order: delete its usage rows and
    decrement the coupon counter, floored at zero. Returns rows released.
    Caller commits.
    """
    usages = db.query(CouponUsage).filter(CouponUsage.order_id == order_id).all()
    for usage in usages:
        db.query(Coupon).filter(Coupon.id == usage.coupon_id, Coupon.current_usage > 0).update(
            {Coupon.current_usage: Coupon.current_usage - 1}, synchronize_session=False
        )
        db.delete(usage)
    return len(usages)

# ------------------------- Routes -------------------------------------------

@router.post("/validate-coupon")
async def validate_coupon(request: Request, db: Session = Depends(get_db),
                          user: AuthUser = Depends(get_current_user)) -> Dict[str, Any]:
    """
    Body: { couponCode, userCountry? }
    Validation outcomes are always HTTP 200 with isValid=false and an error.
    """
    try:
        body = ValidateCouponIn.model_validate(await request.json())
    except ValueError:
        return {"isValid": False, "error": "Invalid request body"}

    code = body.couponCode
    if not isinstance(code, str) or not code.strip():
        return {"isValid": False, "error": "Coupon code is required"}

    try:
        check = validate_coupon_code(db, code, user.id)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("Validation failed", isValid=False) from e
    if not check.is_valid:
        return {"isValid": False, "error": check.error_message or "Coupon validation failed"}

    coupon = coupon_payload(check.coupon)
    discount = calculate_discount(coupon, price_for_country(body.userCountry))
    if discount is None:
        return {"isValid": False, "error": REGION_MISMATCH}
    return {"isValid": True, "coupon": coupon, "discount": discount}
