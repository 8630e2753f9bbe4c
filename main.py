# -*- coding: utf-8 -*-
"""
PalmAI Backend
 - Palm reading (OpenAI, template-validated JSON)
 - Samadhan chat with a daily message quota
 - Payments (Razorpay orders, Razorpay/Stripe webhooks) and coupons
 - Profile, feedback
 - Admin analytics, coupon management, HTML dashboard
 - Health/Ready
"""

import os
import re
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from palmai_core.settings import settings
from palmai_core.errors import AppError, app_error_handler

from db import init_db, SessionLocal
from auth import sync_admin_allowlist

from health import router as health_router
from admin import router as admin_router
from admin_metrics import router as admin_metrics_router
from payment import router as payments_router
from coupons import router as coupons_router
from palm import router as palm_router
from profiles import router as profile_router
from feedback import router as feedback_router
from samadhan.routes import router as chat_router

logging.basicConfig(
    level=getattr(logging, (settings.LOG_LEVEL or "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("main")


# ==============================================================================
# App & CORS
# ==============================================================================
app = FastAPI(title=settings.APP_NAME, version=settings.VERSION)

ALLOWED_ORIGINS = settings.ALLOWED_ORIGINS_LIST
ALLOW_ORIGIN_REGEX = settings.ALLOW_ORIGIN_REGEX

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_origin_regex=ALLOW_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

def _set_cors_headers(resp: JSONResponse, origin: str | None):
    if not origin:
        return
    if origin in ALLOWED_ORIGINS or (ALLOW_ORIGIN_REGEX and re.match(ALLOW_ORIGIN_REGEX, origin)):
        resp.headers["Access-Control-Allow-Origin"] = origin
        resp.headers["Access-Control-Allow-Credentials"] = "true"
        vary = resp.headers.get("Vary", "")
        resp.headers["Vary"] = "Origin" if not vary else f"{vary}, Origin"

@app.middleware("http")
async def _cors_on_all(request, call_next):
    try:
        resp = await call_next(request)
    except Exception:
        # crashes become JSON so the browser sees a body instead of a CORS block
        log.exception("unhandled error on %s %s", request.method, request.url.path)
        resp = JSONResponse(status_code=500, content={"error": "Internal server error"})
    _set_cors_headers(resp, request.headers.get("origin"))
    return resp

@app.options("/{path:path}")
def options_ok(path: str):
    return JSONResponse({"ok": True})


# ==============================================================================
# Error rendering: every failure body is {"error": ...}
# ==============================================================================
app.add_exception_handler(AppError, app_error_handler)

@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail},
                        headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def _invalid_body(request: Request, exc: RequestValidationError):
    log.info("%s %s -> 400: %s", request.method, request.url.path, exc.errors()[:3])
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


# ==============================================================================
# Startup warmup (DB + admin allow-list)
# ==============================================================================
DB_READY = False

async def _warmup_db():
    global DB_READY
    tries = int(os.getenv("DB_WARMUP_TRIES", "20"))
    delay = float(os.getenv("DB_WARMUP_DELAY", "1.5"))
    for attempt in range(1, tries + 1):
        try:
            init_db()
            DB_READY = True
            return
        except Exception as e:
            log.warning("db warmup %d/%d failed: %s", attempt, tries, e)
            await asyncio.sleep(delay)
    log.error("database not reachable after %d attempts", tries)

@app.on_event("startup")
async def _startup():
    await _warmup_db()
    if not DB_READY:
        return
    db = SessionLocal()
    try:
        added = sync_admin_allowlist(db)
        if added:
            log.info("admin allow-list: %d added", added)
    finally:
        db.close()


# ==============================================================================
# Mount routers
# ==============================================================================
app.include_router(health_router)
app.include_router(chat_router)
app.include_router(palm_router)
app.include_router(payments_router)
app.include_router(coupons_router)
app.include_router(profile_router)
app.include_router(feedback_router)
app.include_router(admin_metrics_router)
app.include_router(admin_router)
