from __future__ import annotations

from dataclasses import dataclass

OPTION_LETTERS = ("A", "B", "C", "D")
QUIZ_MODES = ("practice", "exam", "scenario")
LEADERBOARD_MODES = ("exam", "scenario")
ENTITLEMENT_SCOPES = ("exam", "scenario", "bundle")


@dataclass(frozen=True)
class Question:
    id: str
    topic: str
    question_text: str
    options: dict[str, str]  # A..D -> option text
    correct_option: str  # A | B | C | D
    scenario_text: str | None = None
    scenario_group_id: str | None = None

    def to_api(self) -> dict:
        """Wire shape used by GET /api/questions."""
        return {
            "id": self.id,
            "topic": self.topic,
            "question": self.question_text,
            "optionA": self.options["A"],
            "optionB": self.options["B"],
            "optionC": self.options["C"],
            "optionD": self.options["D"],
            "answer": self.correct_option,
            "scenario": self.scenario_text,
            "scenarioId": self.scenario_group_id,
        }

    @classmethod
    def from_api(cls, data: dict) -> Question:
        return cls(
            id=data["id"],
            topic=data["topic"],
            question_text=data["question"],
            options={letter: data[f"option{letter}"] for letter in OPTION_LETTERS},
            correct_option=data["answer"],
            scenario_text=data.get("scenario"),
            scenario_group_id=data.get("scenarioId"),
        )


@dataclass(frozen=True)
class HighScoreRecord:
    id: str
    name: str
    score: int
    total: int
    mode: str  # exam | scenario
    timestamp: str  # ISO-8601, UTC

    @property
    def percentage(self) -> int:
        return round(self.score / self.total * 100)

    def to_api(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "score": self.score,
            "total": self.total,
            "mode": self.mode,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_api(cls, data: dict) -> HighScoreRecord:
        return cls(
            id=data["id"],
            name=data["name"],
            score=int(data["score"]),
            total=int(data["total"]),
            mode=data["mode"],
            timestamp=data["timestamp"],
        )


@dataclass(frozen=True)
class EntitlementToken:
    scope: str  # exam | scenario | bundle
    token: str
