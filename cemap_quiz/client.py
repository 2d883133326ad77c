"""Async client for the REST API, used by the quiz controller and the CLI.

All requests go through whatever transport it is given; in the client shell
that is the offline cache layer, which turns a dead network into a 503
``{"offline": true}`` response for API paths. That response, and any transport
error that still gets through, surfaces here as ``OfflineError``.
"""
from __future__ import annotations

import httpx

from cemap_quiz.errors import EmptyPoolError, FieldValidationError, OfflineError, QuizError
from cemap_quiz.models import HighScoreRecord, Question


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(data, dict):
        return str(data.get("error") or data.get("detail") or data)
    return str(data)


def _field_errors(resp: httpx.Response) -> dict[str, str]:
    """Field -> message from a 422 (pydantic) or a 400 carrying ``field``."""
    data = resp.json()
    if isinstance(data, dict) and data.get("field"):
        return {data["field"]: data.get("error", "invalid")}
    fields = {}
    for err in data.get("detail", []) if isinstance(data, dict) else []:
        loc = err.get("loc") or ["body"]
        fields[str(loc[-1])] = err.get("msg", "invalid")
    return fields


class QuizApiClient:
    def __init__(self, base_url: str, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise OfflineError(str(e)) from e
        if resp.status_code == 503 and _is_offline(resp):
            raise OfflineError(_error_message(resp))
        return resp

    @staticmethod
    def _check(resp: httpx.Response) -> None:
        if resp.status_code == 422 or (resp.status_code == 400 and _has_field(resp)):
            raise FieldValidationError(_field_errors(resp))
        if resp.status_code >= 400:
            raise QuizError(f"{resp.status_code}: {_error_message(resp)}")

    # ── Questions ─────────────────────────────────────────────────────────

    async def fetch_questions(
        self, mode: str, count: int | None = None, topic: str | None = None
    ) -> tuple[list[Question], bool]:
        """Returns (questions, truncated)."""
        params: dict[str, str | int] = {"mode": mode}
        if count is not None:
            params["count"] = count
        if topic:
            params["topic"] = topic
        resp = await self._request("GET", "/api/questions", params=params)
        if resp.status_code == 404:
            raise EmptyPoolError(_error_message(resp))
        self._check(resp)
        truncated = resp.headers.get("x-questions-truncated") == "1"
        return [Question.from_api(q) for q in resp.json()], truncated

    async def topics(self) -> list[str]:
        resp = await self._request("GET", "/api/topics")
        self._check(resp)
        return resp.json()

    async def all_topics(self) -> list[str]:
        resp = await self._request("GET", "/api/all-topics")
        self._check(resp)
        return resp.json()

    # ── Leaderboard ───────────────────────────────────────────────────────

    async def high_scores(self, mode: str, limit: int | None = None) -> list[HighScoreRecord]:
        params: dict[str, str | int] = {"mode": mode}
        if limit is not None:
            params["limit"] = limit
        resp = await self._request("GET", "/api/high-scores", params=params)
        self._check(resp)
        return [HighScoreRecord.from_api(r) for r in resp.json()]

    async def all_time_high_score(self, mode: str) -> HighScoreRecord | None:
        resp = await self._request("GET", "/api/all-time-high-score", params={"mode": mode})
        self._check(resp)
        data = resp.json()
        return HighScoreRecord.from_api(data) if data else None

    async def submit_high_score(self, name: str, score: int, total: int, mode: str) -> HighScoreRecord:
        resp = await self._request(
            "POST",
            "/api/high-scores",
            json={"name": name, "score": score, "total": total, "mode": mode},
        )
        self._check(resp)
        return HighScoreRecord.from_api(resp.json())

    # ── Payments ──────────────────────────────────────────────────────────

    async def verify_payment(self, payment_reference: str) -> dict:
        resp = await self._request(
            "POST", "/api/verify-payment", json={"paymentIntentId": payment_reference}
        )
        self._check(resp)
        try:
            return resp.json()
        except ValueError as e:
            # e.g. a captive portal answering 200 with its own HTML page
            raise QuizError(f"Unreadable verification response: {e}") from e

    # ── Accounts ──────────────────────────────────────────────────────────

    async def register(self, name: str, email: str, password: str) -> dict:
        resp = await self._request(
            "POST", "/api/register", json={"name": name, "email": email, "password": password}
        )
        self._check(resp)
        return resp.json()

    async def login(self, email: str, password: str) -> dict:
        resp = await self._request("POST", "/api/login", json={"email": email, "password": password})
        self._check(resp)
        return resp.json()

    async def me(self) -> dict | None:
        resp = await self._request("GET", "/api/me")
        if resp.status_code == 401:
            return None
        self._check(resp)
        return resp.json()

    async def random_advert(self) -> dict:
        resp = await self._request("GET", "/api/adverts/random")
        self._check(resp)
        return resp.json()


def _is_offline(resp: httpx.Response) -> bool:
    try:
        data = resp.json()
    except ValueError:
        return False
    return isinstance(data, dict) and data.get("offline") is True


def _has_field(resp: httpx.Response) -> bool:
    try:
        data = resp.json()
    except ValueError:
        return False
    return isinstance(data, dict) and bool(data.get("field"))
