from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from cemap_quiz.session import QuizRules

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.json"

DEFAULTS = {
    "db_path": "cemap_quiz.db",
    "question_files": [],
    "exam_size": 50,
    "topic_exam_size": 10,
    "scenario_size": 3,
    "practice_default_count": 5,
    "exam_pass_percent": 80,
    "topic_exam_pass_percent": 70,
    "scenario_pass_percent": 60,
    "checkpoint_every": 9,
    "leaderboard_limit": 4,
    "payment_provider": "stripe",
    "stripe_api_base": "https://api.stripe.com",
    "prices_pence": {"exam": 99, "scenario": 99, "bundle": 499},
    "bundle_access_days": 30,
    "client_state_dir": ".client",
    "cache_version": "v1",
}


@dataclass
class Settings:
    db_path: str = DEFAULTS["db_path"]
    question_files: list[str] = field(default_factory=lambda: list(DEFAULTS["question_files"]))
    exam_size: int = DEFAULTS["exam_size"]
    topic_exam_size: int = DEFAULTS["topic_exam_size"]
    scenario_size: int = DEFAULTS["scenario_size"]
    practice_default_count: int = DEFAULTS["practice_default_count"]
    exam_pass_percent: int = DEFAULTS["exam_pass_percent"]
    topic_exam_pass_percent: int = DEFAULTS["topic_exam_pass_percent"]
    scenario_pass_percent: int = DEFAULTS["scenario_pass_percent"]
    checkpoint_every: int = DEFAULTS["checkpoint_every"]
    leaderboard_limit: int = DEFAULTS["leaderboard_limit"]
    payment_provider: str = DEFAULTS["payment_provider"]
    stripe_api_base: str = DEFAULTS["stripe_api_base"]
    prices_pence: dict[str, int] = field(default_factory=lambda: dict(DEFAULTS["prices_pence"]))
    bundle_access_days: int = DEFAULTS["bundle_access_days"]
    client_state_dir: str = DEFAULTS["client_state_dir"]
    cache_version: str = DEFAULTS["cache_version"]

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def db_full_path(self) -> Path:
        return self.project_root / self.db_path

    @property
    def client_state_full_path(self) -> Path:
        return self.project_root / self.client_state_dir

    @property
    def stripe_secret_key(self) -> str:
        return os.environ.get("STRIPE_SECRET_KEY", "")

    def resolved_question_files(self) -> list[Path]:
        if self.question_files:
            root = self.project_root
            return [root / f for f in self.question_files]
        return sorted(self.data_dir.glob("*.json"))

    def quiz_rules(self) -> QuizRules:
        return QuizRules(
            exam_size=self.exam_size,
            topic_exam_size=self.topic_exam_size,
            scenario_size=self.scenario_size,
            exam_pass_percent=self.exam_pass_percent,
            topic_exam_pass_percent=self.topic_exam_pass_percent,
            scenario_pass_percent=self.scenario_pass_percent,
            checkpoint_every=self.checkpoint_every,
        )

    def to_dict(self) -> dict:
        return {
            "db_path": self.db_path,
            "question_files": self.question_files,
            "exam_size": self.exam_size,
            "topic_exam_size": self.topic_exam_size,
            "scenario_size": self.scenario_size,
            "practice_default_count": self.practice_default_count,
            "exam_pass_percent": self.exam_pass_percent,
            "topic_exam_pass_percent": self.topic_exam_pass_percent,
            "scenario_pass_percent": self.scenario_pass_percent,
            "checkpoint_every": self.checkpoint_every,
            "leaderboard_limit": self.leaderboard_limit,
            "payment_provider": self.payment_provider,
            "stripe_api_base": self.stripe_api_base,
            "prices_pence": self.prices_pence,
            "bundle_access_days": self.bundle_access_days,
            "client_state_dir": self.client_state_dir,
            "cache_version": self.cache_version,
        }


def load_settings() -> Settings:
    if CONFIG_PATH.exists():
        raw = json.loads(CONFIG_PATH.read_text())
        known = {f.name for f in Settings.__dataclass_fields__.values()}
        filtered = {k: v for k, v in raw.items() if k in known}
        return Settings(**filtered)
    return Settings()


def save_settings(settings: Settings) -> None:
    CONFIG_PATH.write_text(json.dumps(settings.to_dict(), indent=4) + "\n")
