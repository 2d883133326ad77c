"""Client-side persisted state: a small JSON key/value file.

Holds entitlement tokens and quiz ratings between runs. Each write replaces the
whole file through a temp file + ``os.replace`` so a crash never leaves it half
written.
"""
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

REVIEWS_KEY = "quizReviews"


class LocalStore:
    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        return json.loads(self.path.read_text(encoding="utf-8") or "{}")

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self, key: str, default=None):
        return self._load().get(key, default)

    def set(self, key: str, value) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    # ── Ratings ───────────────────────────────────────────────────────────

    def add_rating(self, rating: int, question_number: int) -> dict:
        if not 1 <= rating <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {rating}")
        entry = {
            "rating": rating,
            "questionNumber": question_number,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        reviews = self.get(REVIEWS_KEY, [])
        reviews.append(entry)
        self.set(REVIEWS_KEY, reviews)
        return entry

    def ratings(self) -> list[dict]:
        return list(self.get(REVIEWS_KEY, []))
