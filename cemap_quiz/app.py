"""FastAPI application with all routes."""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Literal

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")

import httpx
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field, model_validator

from cemap_quiz.auth import (
    SESSION_COOKIE,
    LoginRequest,
    RegisterRequest,
    hash_password,
    public_user,
    verify_password,
)
from cemap_quiz.config import Settings, load_settings
from cemap_quiz.db import Database
from cemap_quiz.entitlements import UNLOCKED_BY
from cemap_quiz.errors import EmptyPoolError
from cemap_quiz.interstitials import random_advert
from cemap_quiz.leaderboard import Leaderboard
from cemap_quiz.models import LEADERBOARD_MODES, QUIZ_MODES
from cemap_quiz.parsers.question_bank import parse_question_bank
from cemap_quiz.providers.base import PaymentVerifier
from cemap_quiz.session import draw_questions

MAX_QUESTION_COUNT = 100

# Global state (initialized in lifespan)
_db: Database | None = None
_settings: Settings | None = None

_pay_log = logging.getLogger("cemap_quiz.payments")


def get_db() -> Database:
    assert _db is not None
    return _db


def get_settings() -> Settings:
    assert _settings is not None
    return _settings


def _get_payment_verifier() -> PaymentVerifier:
    s = get_settings()
    if s.payment_provider == "stripe":
        from cemap_quiz.providers.payment_stripe import StripeVerifier
        if not s.stripe_secret_key:
            _pay_log.warning("STRIPE_SECRET_KEY is not set")
        return StripeVerifier(api_key=s.stripe_secret_key, api_base=s.stripe_api_base)
    raise ValueError(f"Unknown payment provider: {s.payment_provider}")


# ── Question bank import ──────────────────────────────────────────────────

def import_question_file(db: Database, path: Path) -> int:
    """Replace everything previously imported from *path* with its current content."""
    questions = parse_question_bank(path)
    db.delete_questions_by_source(path.name)
    n = db.import_questions(questions, path.name)
    db.set_file_mtime(str(path), path.stat().st_mtime_ns)
    return n


def _auto_import_if_changed(db: Database, settings: Settings) -> None:
    """Re-import question banks whose mtime has changed since the last import."""
    log = logging.getLogger("cemap_quiz.import")
    for qf in settings.resolved_question_files():
        if not qf.exists():
            continue
        current_mtime = qf.stat().st_mtime_ns
        if db.get_file_mtime(str(qf)) == current_mtime:
            continue
        log.info("Changed: %s, re-importing", qf.name)
        try:
            n = import_question_file(db, qf)
        except (ValueError, KeyError) as e:
            log.error("  %s rejected: %s", qf.name, e)
            continue
        log.info("  %d questions imported", n)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _db, _settings
    owned = _db is None  # tests inject their own database
    if owned:
        _settings = load_settings()
        _db = Database(_settings.db_full_path)
        if not os.environ.get("CEMAP_QUIZ_NO_AUTO_IMPORT"):
            _auto_import_if_changed(_db, _settings)
    yield
    if owned and _db:
        _db.close()
        _db = None


app = FastAPI(title="CeMAP Quiz", lifespan=lifespan)


# ── Static files ──────────────────────────────────────────────────────────

static_dir = Path(__file__).parent / "static"


@app.get("/")
async def index():
    return FileResponse(static_dir / "index.html")


@app.get("/manifest.json")
async def manifest():
    return FileResponse(static_dir / "manifest.json", media_type="application/manifest+json")


@app.get("/favicon.svg")
async def favicon():
    return FileResponse(static_dir / "favicon.svg", media_type="image/svg+xml")


# ── API: Questions ────────────────────────────────────────────────────────

@app.get("/api/questions")
async def api_questions(mode: str = "practice", topic: str | None = None, count: int | None = None):
    if mode not in QUIZ_MODES:
        raise HTTPException(400, f"Unknown mode: {mode}")
    s = get_settings()
    if count is None:
        count = s.scenario_size if mode == "scenario" else s.practice_default_count
    if not 1 <= count <= MAX_QUESTION_COUNT:
        raise HTTPException(400, f"count must be between 1 and {MAX_QUESTION_COUNT}")

    topic = topic or None
    pool = get_db().get_question_pool(mode, topic)
    try:
        questions, truncated = draw_questions(
            pool, mode, count, topic=topic, rules=s.quiz_rules()
        )
    except EmptyPoolError as e:
        return JSONResponse({"error": str(e)}, status_code=404)

    headers = {"X-Questions-Truncated": "1"} if truncated else {}
    return JSONResponse([q.to_api() for q in questions], headers=headers)


@app.get("/api/topics")
async def api_topics():
    return get_db().get_topics()


@app.get("/api/all-topics")
async def api_all_topics():
    return get_db().get_all_topics()


# ── API: Leaderboard ──────────────────────────────────────────────────────

class HighScoreIn(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    score: int = Field(ge=0)
    total: int = Field(gt=0)
    mode: Literal["exam", "scenario"]

    @model_validator(mode="after")
    def _score_within_total(self):
        if self.score > self.total:
            raise ValueError("score cannot exceed total")
        return self


def _leaderboard_mode(mode: str) -> str:
    if mode not in LEADERBOARD_MODES:
        raise HTTPException(400, f"No leaderboard for mode: {mode}")
    return mode


@app.get("/api/high-scores")
async def api_high_scores(mode: str = "exam", limit: int | None = None):
    mode = _leaderboard_mode(mode)
    if limit is None:
        limit = get_settings().leaderboard_limit
    if limit < 0:
        raise HTTPException(400, "limit must not be negative")
    return [r.to_api() for r in Leaderboard(get_db()).top_n(mode, limit)]


@app.get("/api/all-time-high-score")
async def api_all_time_high_score(mode: str = "exam"):
    mode = _leaderboard_mode(mode)
    best = Leaderboard(get_db()).all_time_best(mode)
    return best.to_api() if best else None


@app.post("/api/high-scores")
async def api_submit_high_score(body: HighScoreIn):
    record = get_db().add_high_score(body.name.strip(), body.score, body.total, body.mode)
    return record.to_api()


# ── API: Payments & access ────────────────────────────────────────────────

class VerifyPaymentIn(BaseModel):
    # Stripe PaymentIntent ids; anything else never reaches the provider
    paymentIntentId: str = Field(pattern=r"^pi_[A-Za-z0-9]+$", max_length=255)


def _grant_response(grant: dict) -> dict:
    return {
        "verified": True,
        "accessToken": grant["token"],
        "purchaseType": grant["product"],
        "expiresAt": grant["expires_at"],
    }


def _grant_expired(grant: dict) -> bool:
    if not grant["expires_at"]:
        return False
    return datetime.fromisoformat(grant["expires_at"]) <= datetime.now(timezone.utc)


@app.post("/api/verify-payment")
async def api_verify_payment(body: VerifyPaymentIn, request: Request):
    reference = body.paymentIntentId

    db = get_db()
    existing = db.get_access_grant_by_reference(reference)
    if existing:
        return _grant_response(existing)

    verifier = _get_payment_verifier()
    try:
        payment = await verifier.retrieve(reference)
    except httpx.HTTPError as e:
        _pay_log.error("%s lookup failed for %s: %s", verifier.name(), reference, e)
        raise HTTPException(502, f"Error verifying payment: {e}")

    s = get_settings()
    if (
        payment is None
        or payment.status != "succeeded"
        or payment.product not in s.prices_pence
        or payment.amount != s.prices_pence[payment.product]
    ):
        _pay_log.info("Payment %s not accepted", reference)
        return {"verified": False}

    expires_at = None
    if payment.product == "bundle":
        expires = datetime.now(timezone.utc) + timedelta(days=s.bundle_access_days)
        expires_at = expires.isoformat()
    user = _current_user(request)
    grant = db.create_access_grant(
        reference, payment.product, expires_at=expires_at,
        user_id=user["id"] if user else None,
    )
    _pay_log.info("Granted %s access for payment %s", payment.product, reference)
    return _grant_response(grant)


@app.get("/api/check-access")
async def api_check_access(request: Request, mode: str = "exam"):
    if mode == "practice":
        return {"hasAccess": True, "purchaseType": None}
    if mode not in UNLOCKED_BY:
        raise HTTPException(400, f"Unknown mode: {mode}")
    token = request.headers.get("x-access-token", "")
    grant = get_db().get_access_grant(token) if token else None
    if grant is None or grant["product"] not in UNLOCKED_BY[mode] or _grant_expired(grant):
        return {"hasAccess": False, "purchaseType": None}
    return {"hasAccess": True, "purchaseType": grant["product"]}


# ── API: Accounts ─────────────────────────────────────────────────────────

def _current_user(request: Request) -> dict | None:
    token = request.cookies.get(SESSION_COOKIE)
    return get_db().get_session_user(token) if token else None


def _start_login(response: Response, user: dict) -> None:
    token = get_db().create_login_session(user["id"])
    response.set_cookie(SESSION_COOKIE, token, httponly=True, samesite="lax")


@app.post("/api/register")
async def api_register(body: RegisterRequest, response: Response):
    db = get_db()
    if db.get_user_by_email(body.email):
        return JSONResponse(
            {"error": "An account with this email already exists", "field": "email"},
            status_code=400,
        )
    user = db.create_user(body.name.strip(), body.email, hash_password(body.password))
    _start_login(response, user)
    return public_user(user)


@app.post("/api/login")
async def api_login(body: LoginRequest, response: Response):
    user = get_db().get_user_by_email(body.email)
    if user is None or not verify_password(body.password, user["password_hash"]):
        raise HTTPException(401, "Invalid email or password")
    _start_login(response, user)
    return public_user(user)


@app.post("/api/logout")
async def api_logout(request: Request, response: Response):
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        get_db().delete_login_session(token)
    response.delete_cookie(SESSION_COOKIE)
    return {"ok": True}


@app.get("/api/me")
async def api_me(request: Request):
    user = _current_user(request)
    if user is None:
        raise HTTPException(401, "Not logged in")
    return public_user(user)


# ── API: Misc ─────────────────────────────────────────────────────────────

@app.get("/api/adverts/random")
async def api_random_advert():
    return random_advert()


@app.get("/api/stats")
async def api_stats():
    return get_db().get_stats()
