# admin.py
import logging
from datetime import datetime, timezone
from math import ceil
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from db import get_db, utcnow, Coupon, CouponUsage, Order
from auth import get_current_user, is_active_admin, require_admin
from admin_metrics import compile_analytics
from coupons import normalize_code
from dashboard.panels import build_dashboard, coupon_panel
from palmai_core.errors import (
    ConflictError, ForbiddenError, NotFoundError, PersistenceError, ValidationError,
)
from palmai_core.schemas import AuthUser, CouponCreate, CouponUpdate

log = logging.getLogger("admin")
router = APIRouter(prefix="/api", tags=["admin"])

templates = Jinja2Templates(directory=str(Path(__file__).parent / "dashboard" / "templates"))

COUPON_TYPES = ("free", "discount")
DISCOUNT_TYPES = ("percentage", "amount")
MAX_PAGE_SIZE = 100

# ------------------------- helpers ------------------------- #
def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() + "Z" if ts else None

def _parse_dt(value: Optional[str], field: str) -> Optional[datetime]:
    """ISO date or datetime -> naive UTC; empty means unset."""
    if value is None or not str(value).strip():
        return None
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"Invalid {field}") from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed

def _parse_body(model, payload: Dict[str, Any]):
    try:
        return model.model_validate(payload)
    except ValueError:
        raise ValidationError("Invalid request body") from None

def coupon_out(c: Coupon) -> Dict[str, Any]:
    return {
        "id": c.id,
        "code": c.code,
        "type": c.type,
        "discount_type": c.discount_type,
        "discount_value": c.discount_value,
        "currency": c.currency,
        "usage_limit": c.usage_limit,
        "current_usage": c.current_usage or 0,
        "valid_from": _iso(c.valid_from),
        "valid_until": _iso(c.valid_until),
        "is_active": bool(c.is_active),
        "description": c.description,
        "created_by": c.created_by,
        "created_at": _iso(c.created_at),
        "updated_at": _iso(c.updated_at),
    }

def _check_discount_fields(ctype: str, discount_type: Optional[str],
                           discount_value: Optional[float], currency: Optional[str]) -> None:
    if ctype not in COUPON_TYPES:
        raise ValidationError("Coupon type must be free or discount")
    if ctype != "discount":
        return
    if not discount_type or discount_value is None:
        raise ValidationError("Discount coupons require discount_type and discount_value")
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError("discount_type must be percentage or amount")
    if discount_value <= 0:
        raise ValidationError("discount_value must be positive")
    if discount_type == "percentage" and discount_value > 100:
        raise ValidationError("Percentage discount cannot exceed 100")
    if discount_type == "amount" and not currency:
        raise ValidationError("Amount discounts require a currency")

def _get_coupon(db: Session, coupon_id: Optional[int]) -> Coupon:
    if coupon_id is None:
        raise ValidationError("Coupon ID is required")
    coupon = db.get(Coupon, coupon_id)
    if coupon is None:
        raise NotFoundError("Coupon not found")
    return coupon

def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("Coupon code already exists") from e
    except SQLAlchemyError as e:
        db.rollback()
        log.error("coupon %s failed: %s", what, e)
        raise PersistenceError(f"Failed to {what} coupon") from e

# ------------------------- mutations ------------------------- #
def create_coupon(db: Session, body: CouponCreate, admin: AuthUser) -> Coupon:
    if not body.code or not body.type or body.usage_limit is None:
        raise ValidationError("Missing required fields: code, type, usage_limit")
    if body.usage_limit < 1:
        raise ValidationError("usage_limit must be at least 1")
    _check_discount_fields(body.type, body.discount_type, body.discount_value, body.currency)

    code = normalize_code(body.code)
    if db.query(Coupon.id).filter(Coupon.code == code).first() is not None:
        raise ConflictError("Coupon code already exists")

    is_discount = body.type == "discount"
    coupon = Coupon(
        code=code,
        type=body.type,
        discount_type=body.discount_type if is_discount else None,
        discount_value=body.discount_value if is_discount else None,
        currency=((body.currency or "").upper() or None) if is_discount else None,
        usage_limit=body.usage_limit,
        current_usage=0,
        valid_from=_parse_dt(body.valid_from, "valid_from"),
        valid_until=_parse_dt(body.valid_until, "valid_until"),
        is_active=True,
        description=(body.description or "").strip() or None,
        created_by=admin.id,
    )
    if coupon.valid_from and coupon.valid_until and coupon.valid_until <= coupon.valid_from:
        raise ValidationError("valid_until must be after valid_from")
    db.add(coupon)
    _commit(db, "create")
    db.refresh(coupon)
    log.info("coupon %s created by %s", coupon.code, admin.email)
    return coupon

def update_coupon(db: Session, body: CouponUpdate) -> Coupon:
    coupon = _get_coupon(db, body.id)
    changes = body.model_dump(exclude_unset=True, exclude={"id"})

    if "code" in changes and changes["code"]:
        coupon.code = normalize_code(changes["code"])
    if "usage_limit" in changes and changes["usage_limit"] is not None:
        if changes["usage_limit"] < (coupon.current_usage or 0):
            raise ValidationError("usage_limit cannot be below current usage")
        coupon.usage_limit = changes["usage_limit"]
    if "is_active" in changes and changes["is_active"] is not None:
        coupon.is_active = changes["is_active"]
    for field in ("valid_from", "valid_until"):
        if field in changes:
            setattr(coupon, field, _parse_dt(changes[field], field))
    if "description" in changes:
        coupon.description = (changes["description"] or "").strip() or None

    for field in ("type", "discount_type", "discount_value", "currency"):
        if field in changes:
            setattr(coupon, field, changes[field])
    if coupon.currency:
        coupon.currency = coupon.currency.upper()
    _check_discount_fields(coupon.type, coupon.discount_type, coupon.discount_value, coupon.currency)
    if coupon.type == "free":
        coupon.discount_type = coupon.discount_value = coupon.currency = None

    coupon.updated_at = utcnow()
    _commit(db, "update")
    db.refresh(coupon)
    return coupon

def delete_coupon(db: Session, coupon_id: Optional[int]) -> None:
    coupon = _get_coupon(db, coupon_id)
    used = db.query(CouponUsage.id).filter(CouponUsage.coupon_id == coupon.id).first()
    if used is not None:
        raise ConflictError("Coupon has been used; deactivate it instead")
    db.delete(coupon)
    _commit(db, "delete")
    log.info("coupon %s deleted", coupon.code)

# ------------------------- reads ------------------------- #
def list_coupons(db: Session, page: int, limit: int, ctype: Optional[str],
                 is_active: Optional[str], search: Optional[str]) -> Dict[str, Any]:
    query = db.query(Coupon)
    if ctype:
        query = query.filter(Coupon.type == ctype)
    if is_active in ("true", "false"):
        query = query.filter(Coupon.is_active.is_(is_active == "true"))
    term = (search or "").strip()
    if term:
        query = query.filter(or_(Coupon.code.ilike(f"%{term}%"), Coupon.description.ilike(f"%{term}%")))

    total = query.count()
    rows = (
        query.order_by(Coupon.created_at.desc(), Coupon.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "coupons": [coupon_out(c) for c in rows],
        "pagination": {"page": page, "limit": limit, "total": total,
                       "totalPages": ceil(total / limit) if total else 0},
    }

def _verified():
    # waivers have no order; paid orders are the other verified redemptions
    return or_(CouponUsage.order_id.is_(None), Order.status == "paid")

def coupon_stats(db: Session, coupon_id: Optional[int]) -> Dict[str, Any]:
    coupons = db.query(Coupon)
    if coupon_id is not None:
        coupons = coupons.filter(Coupon.id == coupon_id)

    agg = (
        db.query(CouponUsage.coupon_id, func.count(CouponUsage.id),
                 func.coalesce(func.sum(CouponUsage.discount_applied), 0))
        .outerjoin(Order, Order.order_id == CouponUsage.order_id)
        .filter(_verified())
        .group_by(CouponUsage.coupon_id)
        .all()
    )
    by_coupon = {cid: (int(n), int(total)) for cid, n, total in agg}

    stats = []
    for c in coupons.order_by(Coupon.id.asc()).all():
        uses, discount = by_coupon.get(c.id, (0, 0))
        stats.append({
            **coupon_out(c),
            "verified_usage": uses,
            "total_discount_given": discount,
            "avg_discount_per_use": round(discount / uses, 2) if uses else 0,
        })
    return {"stats": stats}

def coupon_usage(db: Session, coupon_id: Optional[int], page: int, limit: int) -> Dict[str, Any]:
    if coupon_id is None:
        raise ValidationError("coupon_id is required")
    query = (
        db.query(CouponUsage, Order.status)
        .outerjoin(Order, Order.order_id == CouponUsage.order_id)
        .filter(CouponUsage.coupon_id == coupon_id)
    )
    total = query.count()
    rows = query.order_by(CouponUsage.used_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "usage": [
            {
                "id": u.id,
                "user_id": u.user_id,
                "order_id": u.order_id,
                "order_status": status if u.order_id else "waived",
                "discount_applied": u.discount_applied,
                "original_amount": u.original_amount,
                "final_amount": u.final_amount,
                "currency": u.currency,
                "used_at": _iso(u.used_at),
            }
            for u, status in rows
        ],
        "pagination": {"page": page, "limit": limit, "total": total,
                       "totalPages": ceil(total / limit) if total else 0},
    }

def coupon_analytics(db: Session) -> Dict[str, Any]:
    total = db.query(func.count(Coupon.id)).scalar() or 0
    active = db.query(func.count(Coupon.id)).filter(Coupon.is_active.is_(True)).scalar() or 0
    discount = db.query(func.count(Coupon.id)).filter(Coupon.type == "discount").scalar() or 0
    usage = db.query(func.coalesce(func.sum(Coupon.current_usage), 0)).scalar() or 0
    capacity = db.query(func.coalesce(func.sum(Coupon.usage_limit), 0)).scalar() or 0
    return {
        "analytics": {
            "totalCoupons": int(total),
            "activeCoupons": int(active),
            "inactiveCoupons": int(total - active),
            "discountCoupons": int(discount),
            "freeCoupons": int(total - discount),
            "totalUsage": int(usage),
            "totalCapacity": int(capacity),
            "utilizationRate": f"{usage / capacity * 100:.2f}" if capacity else "0.00",
        }
    }

# ------------------------- routes ------------------------- #
@router.get("/manage-coupons")
def manage_coupons_get(
    action: str = Query("list"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    type: Optional[str] = Query(None),
    is_active: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    coupon_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
):
    """
    action=check-admin answers {isAdmin} for any signed-in user; every other
    action is admin-only: list | stats | usage | analytics.
    """
    admin = is_active_admin(db, user.email)
    if action == "check-admin":
        return {"isAdmin": admin}
    if not admin:
        raise ForbiddenError("Admin access required")

    limit = min(limit, MAX_PAGE_SIZE)
    if action == "list":
        return list_coupons(db, page, limit, type, is_active, search)
    if action == "stats":
        return coupon_stats(db, coupon_id)
    if action == "usage":
        return coupon_usage(db, coupon_id, page, limit)
    if action == "analytics":
        return coupon_analytics(db)
    raise ValidationError("Invalid action")

@router.post("/manage-coupons")
async def manage_coupons_post(
    request: Request,
    db: Session = Depends(get_db),
    admin: AuthUser = Depends(require_admin),
):
    """
    Body carries an optional `action`: create (default) | update | toggle-status | delete.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("Invalid request body")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid request body")

    action = payload.pop("action", None) or "create"
    if action == "create":
        coupon = create_coupon(db, _parse_body(CouponCreate, payload), admin)
        return JSONResponse(status_code=201, content={"coupon": coupon_out(coupon)})
    if action in ("update", "toggle-status"):
        return {"coupon": coupon_out(update_coupon(db, _parse_body(CouponUpdate, payload)))}
    if action == "delete":
        delete_coupon(db, _parse_body(CouponUpdate, payload).id)
        return {"success": True}
    raise ValidationError("Invalid action")

@router.put("/manage-coupons")
def manage_coupons_put(
    body: CouponUpdate,
    db: Session = Depends(get_db),
    _admin: AuthUser = Depends(require_admin),
):
    return {"coupon": coupon_out(update_coupon(db, body))}

@router.delete("/manage-coupons")
def manage_coupons_delete(
    id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    _admin: AuthUser = Depends(require_admin),
):
    delete_coupon(db, id)
    return {"success": True}

# ------------------------- dashboard ------------------------- #
@router.get("/admin/dashboard", response_class=HTMLResponse)
def admin_dashboard(
    request: Request,
    db: Session = Depends(get_db),
    admin: AuthUser = Depends(require_admin),
):
    view = build_dashboard(compile_analytics(db))
    coupons = coupon_panel(coupon_analytics(db)["analytics"])
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {"view": view, "coupons": coupons, "admin": admin, "generated_at": _iso(utcnow())},
    )
