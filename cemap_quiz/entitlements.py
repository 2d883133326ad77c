"""Access gate for the paid quiz modes.

Tokens are stored in the local store under one key per scope and are only ever
written after the server has verified a payment. Checking access is purely
local, so it also works offline.
"""
from __future__ import annotations

import logging

from cemap_quiz.errors import OfflineError, QuizError, VerificationFailedError
from cemap_quiz.local_store import LocalStore
from cemap_quiz.models import ENTITLEMENT_SCOPES, EntitlementToken

log = logging.getLogger("cemap_quiz.access")

TOKEN_KEYS = {
    "exam": "examAccessToken",
    "scenario": "scenarioAccessToken",
    "bundle": "bundleAccessToken",
}

# Scopes that unlock each paid mode
UNLOCKED_BY = {
    "exam": ("exam", "bundle"),
    "scenario": ("scenario", "bundle"),
}


class AccessGate:
    def __init__(self, store: LocalStore, verifier):
        """*verifier* needs ``async verify_payment(reference) -> dict``."""
        self.store = store
        self.verifier = verifier

    def token_for(self, scope: str) -> EntitlementToken | None:
        value = self.store.get(TOKEN_KEYS[scope])
        return EntitlementToken(scope, value) if value else None

    def tokens(self) -> list[EntitlementToken]:
        tokens = [self.token_for(scope) for scope in ENTITLEMENT_SCOPES]
        return [t for t in tokens if t is not None]

    def check_access(self, mode: str) -> bool:
        if mode == "practice":
            return True
        scopes = UNLOCKED_BY.get(mode)
        if scopes is None:
            return False
        return any(self.token_for(scope) for scope in scopes)

    async def grant_from_payment(self, payment_reference: str) -> str:
        """Verify *payment_reference* and persist the token; returns its scope."""
        try:
            response = await self.verifier.verify_payment(payment_reference)
        except OfflineError as exc:
            raise VerificationFailedError("Payment could not be verified while offline") from exc
        except QuizError as exc:
            raise VerificationFailedError(str(exc)) from exc

        if not isinstance(response, dict) or response.get("verified") is not True:
            raise VerificationFailedError(f"Payment {payment_reference} was not verified")
        token = response.get("accessToken")
        scope = response.get("purchaseType")
        if not token or scope not in TOKEN_KEYS:
            raise VerificationFailedError("Malformed verification response")

        self.store.set(TOKEN_KEYS[scope], token)
        log.info("Granted %s access", scope)
        return scope
