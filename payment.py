from __future__ import annotations
import asyncio, json, hmac, hashlib, logging, time
from typing import Dict, Any, Optional, Set

import razorpay
import stripe
from fastapi import APIRouter, HTTPException, Request, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db import get_db, mark_profile_paid, Coupon, Order, Profile
from auth import get_current_user
from coupons import (
    REGION_MISMATCH, calculate_discount, coupon_payload, increment_usage, record_usage,
    release_usage, validate_coupon_code,
)
from palmai_core.errors import PersistenceError, UpstreamError, ValidationError
from palmai_core.pricing import Price, format_minor, normalize_country, price_for_country
from palmai_core.schemas import AuthUser, CreatePaymentIn
from palmai_core.settings import settings

log = logging.getLogger("payments")
router = APIRouter(prefix="/api", tags=["payments"])

# ------------------------- Environment / Config ------------------------------

RZP_KEY_ID = (settings.RAZORPAY_KEY_ID or "").strip()
RZP_SECRET = (settings.RAZORPAY_KEY_SECRET or "").strip()
RZP_WEBHOOK_SECRET = (settings.RAZORPAY_WEBHOOK_SECRET or "").strip()
STRIPE_SECRET_KEY = (settings.STRIPE_SECRET_KEY or "").strip()
STRIPE_WEBHOOK_SECRET = (settings.STRIPE_WEBHOOK_SIGNING_SECRET or "").strip()
PAYMENT_TIMEOUT = settings.PAYMENT_TIMEOUT_SECONDS

_rzp: Optional[razorpay.Client] = None
if RZP_KEY_ID and RZP_SECRET:
    _rzp = razorpay.Client(auth=(RZP_KEY_ID, RZP_SECRET))
else:
    log.warning("Razorpay client not initialized (missing keys).")

# Webhook event ids seen by this process. Not durable: a restart or a second
# instance will re-apply a redelivered event.
_processed_razorpay_events: Set[str] = set()
_processed_stripe_events: Set[str] = set()

# ------------------------- Helpers ------------------------------------------

def _receipt(user_id: str) -> str:
    # Razorpay caps receipts at 40 chars
    return f"ord_{user_id[:8]}_{str(int(time.time() * 1000))[-8:]}"

def _pricing(price: Price, discount: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if discount:
        return {k: discount[k] for k in ("originalAmount", "discountAmount", "finalAmount", "currency")}
    return {"originalAmount": price.amount, "discountAmount": 0,
            "finalAmount": price.amount, "currency": price.currency}

async def _provider_call(fn, *args):
    """Run a blocking SDK call off the event loop, bounded by PAYMENT_TIMEOUT."""
    return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=PAYMENT_TIMEOUT)

async def _reusable_order(db: Session, user_id: str, price: Price) -> Optional[Dict[str, Any]]:
    """A pending, coupon-free order for the same price that Razorpay still holds open."""
    pending = (
        db.query(Order)
        .filter(Order.user_id == user_id, Order.status == "pending", Order.provider == "razorpay",
                Order.coupon_id.is_(None), Order.amount == price.amount,
                Order.currency == price.currency)
        .order_by(Order.created_at.desc())
        .first()
    )
    if pending is None or _rzp is None:
        return None
    try:
        remote = await _provider_call(_rzp.order.fetch, pending.order_id)
    except Exception as e:
        log.warning("could not fetch pending order %s: %s", pending.order_id, e)
        return None
    if remote.get("status") != "created":
        return None
    log.info("reusing pending order %s for user=%s", pending.order_id, user_id)
    return {
        "orderId": remote.get("id", pending.order_id),
        "amount": remote.get("amount", pending.amount),
        "currency": remote.get("currency", pending.currency),
        "keyId": RZP_KEY_ID or None,
        "coupon": None,
        "pricing": _pricing(price, None),
    }

def _redeem_waiver(db: Session, user: AuthUser, coupon: Coupon, discount: Dict[str, Any]) -> Dict[str, Any]:
    """Nothing left to charge: record the usage and unlock access without a provider order."""
    try:
        record_usage(db, coupon, user.id, discount, order_id=None)
        if not mark_profile_paid(db, user.id):
            log.warning("waiver for user=%s but profile row missing", user.id)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("Failed to apply coupon") from e
    increment_usage(db, coupon.id)
    log.info("coupon %s waived payment for user=%s", coupon.code, user.id)
    return {
        "success": True,
        "coupon": {"type": "free", "code": coupon.code},
        "pricing": _pricing(Price(discount["originalAmount"], discount["currency"]), discount),
    }

# ------------------------- Routes -------------------------------------------

@router.post("/create-payment")
async def create_payment(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
):
    """
    Body: { country?: "IN" | ..., couponCode?: str }
    Returns the Razorpay checkout bootstrap, or {success, coupon:{type:"free"}}
    when a coupon covers the whole price.
    """
    try:
        body = CreatePaymentIn.model_validate(await request.json())
    except ValueError:
        body = CreatePaymentIn()   # empty/garbled body -> home-country defaults

    profile = db.get(Profile, user.id)
    if profile is not None and profile.has_paid:
        raise ValidationError("User already has paid access")

    country = normalize_country(body.country)
    price = price_for_country(country)

    coupon: Optional[Coupon] = None
    discount: Optional[Dict[str, Any]] = None
    code = (body.couponCode or "").strip()
    if code:
        check = validate_coupon_code(db, code, user.id)
        if not check.is_valid:
            raise ValidationError(check.error_message or "Coupon validation failed")
        coupon = check.coupon
        discount = calculate_discount(coupon_payload(coupon), price)
        if discount is None:
            raise ValidationError(REGION_MISMATCH)
        if discount["finalAmount"] <= 0:
            return _redeem_waiver(db, user, coupon, discount)
    else:
        reused = await _reusable_order(db, user.id, price)
        if reused:
            return reused

    if _rzp is None:
        raise UpstreamError("Failed to create Razorpay order")

    amount = discount["finalAmount"] if discount else price.amount
    order_data = {
        "amount": amount,
        "currency": price.currency,
        "receipt": _receipt(user.id),
        "notes": {
            "user_id": user.id,
            "user_email": user.email or "",
            "product": settings.PRODUCT_NAME,
            "country": country,
            "price": format_minor(amount, price.currency),
            "coupon": coupon.code if coupon else "",
        },
    }
    try:
        order = await _provider_call(_rzp.order.create, order_data)
    except asyncio.TimeoutError as e:
        log.error("Razorpay order create timed out after %ss", PAYMENT_TIMEOUT)
        raise UpstreamError("Failed to create Razorpay order") from e
    except Exception as e:
        log.error("Razorpay order create failed: %s", e)
        raise UpstreamError("Failed to create Razorpay order") from e

    order_id = order["id"]
    try:
        db.add(Order(
            user_id=user.id, provider="razorpay", order_id=order_id, amount=amount,
            currency=price.currency, status="pending", coupon_id=coupon.id if coupon else None,
        ))
        if coupon is not None:
            record_usage(db, coupon, user.id, discount, order_id=order_id)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("Failed to create order record") from e

    if coupon is not None:
        increment_usage(db, coupon.id)

    log.info("order %s created user=%s amount=%s %s", order_id, user.id, amount, price.currency)
    return {
        "orderId": order_id,
        "amount": order.get("amount", amount),
        "currency": order.get("currency", price.currency),
        "keyId": RZP_KEY_ID or None,
        "coupon": ({"code": coupon.code, "type": coupon.type, "discount": discount}
                   if coupon is not None else None),
        "pricing": _pricing(price, discount),
    }

# -------------------------- Razorpay webhook --------------------------------

def _rzp_mark_paid(db: Session, order: Optional[Order], payment_id: Optional[str]) -> None:
    if order is None:
        return
    order.status = "paid"
    if payment_id:
        order.payment_id = payment_id
    if not mark_profile_paid(db, order.user_id):
        log.warning("paid order %s but no profile for user=%s", order.order_id, order.user_id)

def _handle_razorpay_event(db: Session, event: Dict[str, Any]) -> None:
    etype = event.get("event", "")
    payload = event.get("payload") or {}
    payment = (payload.get("payment") or {}).get("entity") or {}
    rzp_order = (payload.get("order") or {}).get("entity") or {}

    if etype == "payment.captured" and payment:
        order = db.query(Order).filter(Order.order_id == payment.get("order_id")).first()
        if order is None:
            log.warning("payment.captured for unknown order %s", payment.get("order_id"))
        _rzp_mark_paid(db, order, payment.get("id"))
    elif etype == "payment.failed" and payment:
        order = db.query(Order).filter(Order.order_id == payment.get("order_id")).first()
        if order is not None and order.status != "paid":
            order.status = "failed"
            released = release_usage(db, order.order_id)
            if released:
                log.info("released %d coupon usage(s) for failed order %s", released, order.order_id)
    elif etype == "order.paid" and rzp_order:
        order = db.query(Order).filter(Order.order_id == rzp_order.get("id")).first()
        if order is not None and order.status != "paid":
            _rzp_mark_paid(db, order, payment.get("id"))
    else:
        log.info("ignored Razorpay event %s", etype)
        return
    db.commit()

@router.post("/razorpay-webhook")
async def razorpay_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Handles payment.captured, payment.failed and order.paid.
    Signature: hex HMAC-SHA256 of the raw body in X-Razorpay-Signature.
    """
    if not RZP_WEBHOOK_SECRET:
        raise HTTPException(503, "Webhook secret not configured")

    body = await request.body()
    signature = request.headers.get("X-Razorpay-Signature", "") or ""
    if not signature:
        raise HTTPException(400, "Missing signature")
    expected = hmac.new(RZP_WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature):
        raise HTTPException(400, "Invalid signature")

    try:
        event = json.loads(body.decode("utf-8"))
    except ValueError:
        raise HTTPException(400, "Invalid payload")

    event_id = event.get("id") or f"{event.get('event', '')}_{int(time.time() * 1000)}"
    if event_id in _processed_razorpay_events:
        return {"received": True, "duplicate": True}

    try:
        _handle_razorpay_event(db, event)
    except SQLAlchemyError as e:
        db.rollback()
        # not recorded as processed, so the provider's retry can re-apply it
        raise PersistenceError("Failed to process webhook") from e

    _processed_razorpay_events.add(event_id)
    return {"received": True}

# -------------------------- Stripe webhook ----------------------------------

def _stripe_session_ids_for_intent(payment_intent_id: str):
    sessions = stripe.checkout.Session.list(payment_intent=payment_intent_id, limit=1,
                                            api_key=STRIPE_SECRET_KEY or None)
    return [s.id for s in sessions.data]

async def _handle_stripe_event(db: Session, event: Dict[str, Any]) -> None:
    etype = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}

    if etype in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
        user_id = (obj.get("metadata") or {}).get("user_id")
        if not user_id:
            log.warning("%s without metadata.user_id (session=%s)", etype, obj.get("id"))
            return
        db.query(Order).filter(Order.stripe_session_id == obj.get("id")).update(
            {Order.status: "paid"}, synchronize_session=False
        )
        if not mark_profile_paid(db, user_id):
            log.warning("Stripe payment for user=%s without profile", user_id)
    elif etype == "checkout.session.expired":
        db.query(Order).filter(Order.stripe_session_id == obj.get("id")).update(
            {Order.status: "expired"}, synchronize_session=False
        )
    elif etype == "payment_intent.payment_failed":
        try:
            session_ids = await _provider_call(_stripe_session_ids_for_intent, obj.get("id"))
        except (stripe.StripeError, asyncio.TimeoutError) as e:
            log.error("could not look up checkout session for intent %s: %s", obj.get("id"), e)
            return
        if not session_ids:
            log.warning("no checkout session for failed intent %s", obj.get("id"))
            return
        db.query(Order).filter(Order.stripe_session_id == session_ids[0]).update(
            {Order.status: "failed"}, synchronize_session=False
        )
    else:
        log.info("ignored Stripe event %s", etype)
        return
    db.commit()

@router.post("/stripe-webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    if not STRIPE_WEBHOOK_SECRET:
        raise HTTPException(503, "Webhook secret not configured")

    signature = request.headers.get("Stripe-Signature")
    if not signature:
        raise HTTPException(400, "Missing Stripe signature")

    payload = await request.body()
    try:
        stripe.Webhook.construct_event(payload, signature, STRIPE_WEBHOOK_SECRET)
    except ValueError:
        raise HTTPException(400, "Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(400, "Invalid signature")

    # signature verified; work on the plain JSON
    event = json.loads(payload.decode("utf-8"))
    event_id = event.get("id", "")
    if event_id in _processed_stripe_events:
        return {"received": True}

    try:
        await _handle_stripe_event(db, event)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError("Failed to process webhook") from e

    _processed_stripe_events.add(event_id)
    return {"received": True}
