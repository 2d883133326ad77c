"""Weekly and all-time leaderboards over the append-only high-score log.

Ranking is by score/total (exact fractions, so 4/5 and 8/10 tie), ties broken
by the earlier timestamp. The all-time best record is shown separately and is
removed from the weekly list before the limit is applied.
"""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from fractions import Fraction

from cemap_quiz.db import Database
from cemap_quiz.models import HighScoreRecord


def week_start(now: datetime) -> datetime:
    """Monday 00:00 UTC of the calendar week containing *now*."""
    now = now.astimezone(timezone.utc)
    monday = now - timedelta(days=now.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def _rank_key(record: HighScoreRecord) -> tuple[Fraction, str]:
    return (-Fraction(record.score, record.total), record.timestamp)


def rank(records: list[HighScoreRecord]) -> list[HighScoreRecord]:
    return sorted(records, key=_rank_key)


def all_time_best(records: list[HighScoreRecord]) -> HighScoreRecord | None:
    if not records:
        return None
    return min(records, key=_rank_key)


def top_n(
    weekly: list[HighScoreRecord], n: int, best: HighScoreRecord | None = None
) -> list[HighScoreRecord]:
    if n <= 0:
        return []
    pool = [r for r in weekly if best is None or r.id != best.id]
    return rank(pool)[:n]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Leaderboard:
    def __init__(self, db: Database, clock: Callable[[], datetime] = _utcnow):
        self.db = db
        self.clock = clock

    def all_time_best(self, mode: str) -> HighScoreRecord | None:
        return all_time_best(self.db.get_high_scores(mode))

    def top_n(self, mode: str, n: int) -> list[HighScoreRecord]:
        since = week_start(self.clock()).isoformat()
        weekly = self.db.get_high_scores(mode, since=since)
        return top_n(weekly, n, best=self.all_time_best(mode))
