"""Checkpoint content shown between questions (ad breaks, upgrade and review prompts)."""
from __future__ import annotations

import random
from dataclasses import dataclass

AD_BREAK = "ad_break"
UPGRADE_PROMPT = "upgrade_prompt"
REVIEW_PROMPT = "review_prompt"

DEFAULT_DURATION = 10  # seconds before the interstitial dismisses itself


@dataclass(frozen=True)
class Interstitial:
    kind: str
    message: str
    duration: int = DEFAULT_DURATION


ADVERTS = [
    {"id": "1", "message": "Get 20% off your CeMAP revision materials at StudySmart UK!"},
    {"id": "2", "message": "Ready to boost your mortgage career? Join CeMAP Masterclass Online today!"},
    {"id": "3", "message": "Refresh your knowledge with CeMAP Pro's 2025 syllabus updates!"},
]

_AD_BREAKS = [Interstitial(AD_BREAK, ad["message"]) for ad in ADVERTS]
_UPGRADE = Interstitial(
    UPGRADE_PROMPT,
    "Ready to master CeMAP? Unlock the full exam and scenario quizzes - Premium Access £4.99",
)
_REVIEW = Interstitial(
    REVIEW_PROMPT,
    "You've completed a block of questions. Please rate your experience from 1 to 5.",
    duration=0,  # waits for the rating
)

_BY_MODE = {
    "practice": _AD_BREAKS + [_UPGRADE],
    # Exam takers have already paid; no upgrade pitch.
    "exam": _AD_BREAKS + [_REVIEW],
    "scenario": [],
}


def pick_interstitial(mode: str, seed: int) -> Interstitial | None:
    """Deterministic choice of checkpoint content for *mode* given *seed*."""
    choices = _BY_MODE.get(mode, [])
    if not choices:
        return None
    return random.Random(seed).choice(choices)


def random_advert(rng: random.Random | None = None) -> dict:
    return dict((rng or random).choice(ADVERTS))
