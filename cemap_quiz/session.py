"""Quiz session engine: question sampling, answer recording, pacing and scoring.

A session moves NotStarted -> InProgress -> Completed and never back.
``submit_answer`` and ``advance`` are the only mutations while in progress;
``complete`` scores the session once every question has been answered and the
cursor has moved past the last one.
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field

from cemap_quiz.errors import (
    EmptyPoolError,
    IncompleteSessionError,
    InvalidQuestionError,
    InvalidSessionOperation,
)
from cemap_quiz.models import LEADERBOARD_MODES, OPTION_LETTERS, QUIZ_MODES, Question

NOT_STARTED = "not_started"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"


@dataclass(frozen=True)
class QuizRules:
    exam_size: int = 50
    topic_exam_size: int = 10
    scenario_size: int = 3
    exam_pass_percent: int = 80
    topic_exam_pass_percent: int = 70
    scenario_pass_percent: int = 60
    checkpoint_every: int = 9

    def pass_percent(self, mode: str, topic: str | None = None) -> int | None:
        if mode == "exam":
            return self.topic_exam_pass_percent if topic else self.exam_pass_percent
        if mode == "scenario":
            return self.scenario_pass_percent
        return None  # practice has no pass mark

    def checkpoint_cadence(self, mode: str) -> int | None:
        # Scenario quizzes run uninterrupted.
        if mode == "scenario":
            return None
        return self.checkpoint_every


DEFAULT_RULES = QuizRules()


@dataclass
class Feedback:
    correct: bool
    correct_option: str


@dataclass
class Checkpoint:
    question_number: int  # questions done so far


@dataclass
class ScoreSubmission:
    mode: str
    score: int
    total: int


@dataclass
class QuizResult:
    mode: str
    topic: str | None
    score: int
    total: int
    pass_mark: int | None
    passed: bool | None
    high_score: ScoreSubmission | None

    @property
    def percentage(self) -> int:
        return round(self.score / self.total * 100)


def pass_mark_for(total: int, percent: int) -> int:
    """Correct answers needed to reach *percent* of *total*, rounded up."""
    return -(-total * percent // 100)


def draw_questions(
    pool: list[Question],
    mode: str,
    question_count: int,
    topic: str | None = None,
    rules: QuizRules = DEFAULT_RULES,
    rng: random.Random | None = None,
) -> tuple[list[Question], bool]:
    """Sample a question set for *mode* from *pool*.

    Returns (questions, truncated). ``truncated`` is True when the pool held
    fewer questions than the mode asked for.
    """
    if mode not in QUIZ_MODES:
        raise ValueError(f"Unknown quiz mode: {mode}")
    rng = rng or random.Random()

    if mode == "scenario":
        return _draw_scenario_groups(pool, question_count or rules.scenario_size, rng)

    if mode == "exam":
        wanted = rules.topic_exam_size if topic else rules.exam_size
    else:
        wanted = question_count
    if wanted < 1:
        raise ValueError(f"Question count must be positive, got {wanted}")

    # De-duplicate by id, keeping pool order
    candidates = {
        q.id: q for q in pool
        if q.scenario_group_id is None and (topic is None or q.topic == topic)
    }
    if not candidates:
        label = f"topic '{topic}'" if topic else f"{mode} mode"
        raise EmptyPoolError(f"No questions available for {label}")

    count = min(wanted, len(candidates))
    return rng.sample(list(candidates.values()), count), count < wanted


def _draw_scenario_groups(
    pool: list[Question], wanted: int, rng: random.Random
) -> tuple[list[Question], bool]:
    """Whole scenario groups in random order, each group in pool order."""
    groups: dict[str, list[Question]] = {}
    seen: set[str] = set()
    for q in pool:
        if q.scenario_group_id is None or q.id in seen:
            continue
        seen.add(q.id)
        groups.setdefault(q.scenario_group_id, []).append(q)
    if not groups:
        raise EmptyPoolError("No scenario questions available")

    order = list(groups)
    rng.shuffle(order)
    picked: list[Question] = []
    for group_id in order:
        if len(picked) >= wanted:
            break
        picked.extend(groups[group_id])
    return picked, len(picked) < wanted


@dataclass
class QuizSession:
    mode: str
    questions: list[Question] = field(default_factory=list)
    topic: str | None = None
    truncated: bool = False
    rules: QuizRules = DEFAULT_RULES
    current_index: int = 0
    answers: dict[str, str] = field(default_factory=dict)
    score: int | None = None
    status: str = NOT_STARTED

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Question | None:
        if self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    @property
    def reveals_immediately(self) -> bool:
        return self.mode == "practice"

    def _question(self, question_id: str) -> Question:
        for q in self.questions:
            if q.id == question_id:
                return q
        raise InvalidQuestionError(f"Question {question_id} is not part of this session")

    def _require_in_progress(self) -> None:
        if self.status != IN_PROGRESS:
            raise InvalidSessionOperation(f"Session is {self.status.replace('_', ' ')}")

    def submit_answer(self, question_id: str, option: str) -> Feedback | None:
        """Record *option* for *question_id* (last write wins).

        Practice sessions get the verdict straight away; exam and scenario
        sessions get None until ``complete``.
        """
        self._require_in_progress()
        question = self._question(question_id)
        option = option.upper()
        if option not in OPTION_LETTERS:
            raise InvalidQuestionError(f"Invalid option {option!r}")
        self.answers[question_id] = option
        if self.reveals_immediately:
            return Feedback(option == question.correct_option, question.correct_option)
        return None

    def advance(self) -> Checkpoint | None:
        """Move to the next question; returns a Checkpoint when an interstitial is due."""
        self._require_in_progress()
        if self.current_index >= len(self.questions):
            raise InvalidSessionOperation("No questions left to advance to")
        self.current_index += 1

        cadence = self.rules.checkpoint_cadence(self.mode)
        if (
            cadence
            and self.current_index < len(self.questions)
            and self.current_index % cadence == 0
        ):
            return Checkpoint(question_number=self.current_index)
        return None

    def complete(self) -> QuizResult:
        self._require_in_progress()
        if self.current_index < len(self.questions):
            raise IncompleteSessionError(
                f"Session is at question {self.current_index + 1} of {len(self.questions)}"
            )
        unanswered = [q.id for q in self.questions if q.id not in self.answers]
        if unanswered:
            raise IncompleteSessionError(f"{len(unanswered)} question(s) unanswered")

        score = sum(
            1 for q in self.questions if self.answers[q.id] == q.correct_option
        )
        self.score = score
        self.status = COMPLETED

        total = len(self.questions)
        percent = self.rules.pass_percent(self.mode, self.topic)
        pass_mark = pass_mark_for(total, percent) if percent is not None else None
        high_score = (
            ScoreSubmission(mode=self.mode, score=score, total=total)
            if self.mode in LEADERBOARD_MODES
            else None
        )
        return QuizResult(
            mode=self.mode,
            topic=self.topic,
            score=score,
            total=total,
            pass_mark=pass_mark,
            passed=score >= pass_mark if pass_mark is not None else None,
            high_score=high_score,
        )


def start_session(
    mode: str,
    question_count: int,
    pool: list[Question],
    topic: str | None = None,
    rules: QuizRules = DEFAULT_RULES,
    rng: random.Random | None = None,
) -> QuizSession:
    """Draw a question set from *pool* and return an in-progress session."""
    questions, truncated = draw_questions(
        pool, mode, question_count, topic=topic, rules=rules, rng=rng
    )
    return QuizSession(
        mode=mode,
        questions=questions,
        topic=topic if mode != "scenario" else None,
        truncated=truncated,
        rules=rules,
        status=IN_PROGRESS,
    )
