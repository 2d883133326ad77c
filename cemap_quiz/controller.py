"""Client shell: one QuizController drives one quiz at a time.

The controller owns the current ``QuizSession`` and connects it to the API
client (questions, high scores, payments), the access gate and the local store.
``create_controller`` wires everything through the offline cache layer.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass

from cemap_quiz.certificate import Certificate, build_certificate
from cemap_quiz.client import QuizApiClient
from cemap_quiz.config import Settings
from cemap_quiz.entitlements import AccessGate
from cemap_quiz.errors import AccessDeniedError, InvalidSessionOperation, OfflineError, QuizError
from cemap_quiz.interstitials import Interstitial, pick_interstitial
from cemap_quiz.local_store import LocalStore
from cemap_quiz.models import HighScoreRecord
from cemap_quiz.offline_cache import CacheStorage, OfflineCacheTransport
from cemap_quiz.session import (
    DEFAULT_RULES,
    Feedback,
    QuizResult,
    QuizRules,
    QuizSession,
    start_session,
)

log = logging.getLogger("cemap_quiz.controller")


@dataclass
class Completion:
    result: QuizResult
    certificate: Certificate
    high_score: HighScoreRecord | None = None
    high_score_pending: bool = False  # submission failed (offline or rejected)


class QuizController:
    def __init__(
        self,
        api: QuizApiClient,
        gate: AccessGate,
        store: LocalStore,
        rules: QuizRules = DEFAULT_RULES,
        rng: random.Random | None = None,
    ):
        self.api = api
        self.gate = gate
        self.store = store
        self.rules = rules
        self.rng = rng or random.Random()
        self.session: QuizSession | None = None
        self.last_checkpoint: int | None = None

    def _require_session(self) -> QuizSession:
        if self.session is None:
            raise InvalidSessionOperation("No quiz in progress")
        return self.session

    async def start(
        self, mode: str, question_count: int | None = None, topic: str | None = None
    ) -> QuizSession:
        if not self.gate.check_access(mode):
            raise AccessDeniedError(mode)
        if question_count is None:
            question_count = self.rules.scenario_size if mode == "scenario" else 0
        questions, server_truncated = await self.api.fetch_questions(
            mode, count=question_count or None, topic=topic
        )
        if mode == "practice" and not question_count:
            question_count = len(questions)
        session = start_session(
            mode, question_count, questions, topic=topic, rules=self.rules, rng=self.rng
        )
        session.truncated = session.truncated or server_truncated
        self.session = session
        self.last_checkpoint = None
        log.info("Started %s quiz: %d questions", mode, session.total)
        return session

    def answer(self, option: str) -> Feedback | None:
        session = self._require_session()
        question = session.current_question
        if question is None:
            raise InvalidSessionOperation("No current question")
        return session.submit_answer(question.id, option)

    def next(self) -> Interstitial | None:
        """Advance; returns the interstitial to show when a checkpoint is reached."""
        checkpoint = self._require_session().advance()
        if checkpoint is None:
            return None
        self.last_checkpoint = checkpoint.question_number
        return pick_interstitial(self.session.mode, seed=self.rng.randrange(2**32))

    async def finish(self, name: str = "") -> Completion:
        session = self._require_session()
        result = session.complete()
        completion = Completion(
            result=result,
            certificate=build_certificate(result, name),
        )
        if result.high_score is not None:
            sub = result.high_score
            try:
                completion.high_score = await self.api.submit_high_score(
                    name.strip() or "Anonymous", sub.score, sub.total, sub.mode
                )
            except OfflineError as e:
                log.warning("High score not submitted (offline): %s", e)
                completion.high_score_pending = True
            except QuizError as e:
                # The result stands; only the leaderboard entry is missing
                log.error("High score rejected by server: %s", e)
                completion.high_score_pending = True
        self.session = None
        return completion

    def abandon(self) -> None:
        self.session = None
        self.last_checkpoint = None

    def rate(self, rating: int) -> dict:
        """Record a review given at the last checkpoint."""
        question_number = self.last_checkpoint
        if question_number is None and self.session is not None:
            question_number = self.session.current_index
        return self.store.add_rating(rating, question_number or 0)

    async def redeem_payment(self, payment_reference: str) -> str:
        return await self.gate.grant_from_payment(payment_reference)

    async def aclose(self) -> None:
        await self.api.aclose()


async def create_controller(
    base_url: str,
    settings: Settings,
    network=None,
    rng: random.Random | None = None,
) -> QuizController:
    """Build a controller whose traffic goes through the offline cache layer.

    *network* overrides the real transport (tests pass an ASGI or mock transport).
    """
    state_dir = settings.client_state_full_path
    state_dir.mkdir(parents=True, exist_ok=True)
    storage = CacheStorage(state_dir / "cache.db")
    transport = OfflineCacheTransport(storage, transport=network, version=settings.cache_version)
    await transport.install(base_url)

    api = QuizApiClient(base_url, transport=transport)
    store = LocalStore(state_dir / "local_storage.json")
    gate = AccessGate(store, verifier=api)
    return QuizController(api, gate, store, rules=settings.quiz_rules(), rng=rng)
