"""Tests for the quiz session engine."""
from __future__ import annotations

import random

import pytest

from cemap_quiz.errors import (
    EmptyPoolError,
    IncompleteSessionError,
    InvalidQuestionError,
    InvalidSessionOperation,
)
from cemap_quiz.session import (
    COMPLETED,
    IN_PROGRESS,
    QuizRules,
    QuizSession,
    draw_questions,
    pass_mark_for,
    start_session,
)

from conftest import make_question


def _answer_all(session, correct: int | None = None):
    """Walk the whole session; the first *correct* answers are right, the rest wrong."""
    checkpoints = []
    for i, q in enumerate(list(session.questions)):
        right = correct is None or i < correct
        option = q.correct_option if right else _wrong(q.correct_option)
        session.submit_answer(q.id, option)
        cp = session.advance()
        if cp is not None:
            checkpoints.append(cp.question_number)
    return checkpoints


def _wrong(option: str) -> str:
    return "B" if option == "A" else "A"


class TestPassMark:
    @pytest.mark.parametrize(
        "total,percent,expected",
        [(50, 80, 40), (10, 70, 7), (3, 60, 2), (6, 60, 4), (7, 80, 6)],
    )
    def test_rounds_up(self, total, percent, expected):
        assert pass_mark_for(total, percent) == expected

    def test_rules(self):
        rules = QuizRules()
        assert rules.pass_percent("exam") == 80
        assert rules.pass_percent("exam", topic="UK Taxation") == 70
        assert rules.pass_percent("scenario") == 60
        assert rules.pass_percent("practice") is None
        assert rules.checkpoint_cadence("scenario") is None
        assert rules.checkpoint_cadence("exam") == 9


class TestDraw:
    def test_practice_exact_count(self, practice_questions):
        qs, truncated = draw_questions(practice_questions, "practice", 5, rng=random.Random(1))
        assert len(qs) == 5
        assert len({q.id for q in qs}) == 5
        assert not truncated
        assert {q.id for q in qs} <= {q.id for q in practice_questions}

    def test_practice_clamped(self, practice_questions):
        qs, truncated = draw_questions(practice_questions, "practice", 25)
        assert len(qs) == 20
        assert truncated

    def test_duplicates_in_pool_collapsed(self, practice_questions):
        pool = practice_questions[:3] * 2
        qs, truncated = draw_questions(pool, "practice", 5)
        assert sorted(q.id for q in qs) == sorted(q.id for q in practice_questions[:3])
        assert truncated

    def test_topic_filter(self, practice_questions):
        qs, _ = draw_questions(practice_questions, "practice", 20, topic="UK Taxation")
        assert len(qs) == 8
        assert {q.topic for q in qs} == {"UK Taxation"}

    def test_scenario_questions_not_used_for_practice(self, scenario_questions):
        with pytest.raises(EmptyPoolError):
            draw_questions(scenario_questions, "practice", 3)

    def test_empty_pool(self):
        with pytest.raises(EmptyPoolError):
            draw_questions([], "exam", 0)

    def test_unknown_topic(self, practice_questions):
        with pytest.raises(EmptyPoolError, match="Nope"):
            draw_questions(practice_questions, "practice", 5, topic="Nope")

    def test_unknown_mode(self, practice_questions):
        with pytest.raises(ValueError):
            draw_questions(practice_questions, "marathon", 5)

    def test_practice_needs_positive_count(self, practice_questions):
        with pytest.raises(ValueError):
            draw_questions(practice_questions, "practice", 0)

    def test_exam_ignores_count(self, practice_questions):
        rules = QuizRules(exam_size=15)
        qs, truncated = draw_questions(practice_questions, "exam", 3, rules=rules)
        assert len(qs) == 15
        assert not truncated

    def test_topic_exam_size(self, practice_questions):
        qs, truncated = draw_questions(practice_questions, "exam", 0, topic="Mortgage Law")
        assert len(qs) == 10
        assert not truncated

    def test_scenario_whole_group_in_order(self, scenario_questions):
        for seed in range(10):
            qs, truncated = draw_questions(
                scenario_questions, "scenario", 3, rng=random.Random(seed)
            )
            assert len(qs) == 3
            assert not truncated
            group = qs[0].scenario_group_id
            assert [q.id for q in qs] == [f"sc{group[-1]}-q{n}" for n in (1, 2, 3)]

    def test_scenario_rounds_up_to_whole_groups(self, scenario_questions):
        qs, truncated = draw_questions(scenario_questions, "scenario", 4)
        assert len(qs) == 6
        assert not truncated

    def test_scenario_truncated(self, scenario_questions):
        qs, truncated = draw_questions(scenario_questions, "scenario", 9)
        assert len(qs) == 6
        assert truncated

    def test_scenario_groups_keep_order_when_mixed(self, scenario_questions):
        qs, _ = draw_questions(scenario_questions, "scenario", 6, rng=random.Random(3))
        by_group = {}
        for q in qs:
            by_group.setdefault(q.scenario_group_id, []).append(q.id)
        for g, ids in by_group.items():
            assert ids == sorted(ids)


class TestSessionFlow:
    def test_start(self, practice_questions):
        s = start_session("practice", 5, practice_questions)
        assert s.status == IN_PROGRESS
        assert s.current_index == 0
        assert s.current_question is s.questions[0]

    def test_practice_feedback(self, practice_questions):
        s = start_session("practice", 5, practice_questions)
        q = s.current_question
        fb = s.submit_answer(q.id, q.correct_option.lower())
        assert fb.correct
        fb = s.submit_answer(q.id, _wrong(q.correct_option))
        assert not fb.correct
        assert fb.correct_option == q.correct_option
        # last write wins, no advance
        assert s.answers[q.id] == _wrong(q.correct_option)
        assert s.current_index == 0

    def test_exam_no_feedback(self, practice_questions):
        s = start_session("exam", 0, practice_questions, topic="UK Taxation")
        q = s.current_question
        assert s.submit_answer(q.id, "A") is None

    def test_unknown_question(self, practice_questions):
        s = start_session("practice", 2, practice_questions)
        with pytest.raises(InvalidQuestionError):
            s.submit_answer("not-in-session", "A")
        assert s.answers == {}

    def test_invalid_option(self, practice_questions):
        s = start_session("practice", 2, practice_questions)
        with pytest.raises(InvalidQuestionError):
            s.submit_answer(s.questions[0].id, "E")

    def test_not_started_session_rejects_answers(self):
        s = QuizSession(mode="practice", questions=[make_question("q1")])
        with pytest.raises(InvalidSessionOperation):
            s.submit_answer("q1", "A")

    def test_advance_never_past_end(self, practice_questions):
        s = start_session("practice", 2, practice_questions)
        s.advance()
        s.advance()
        assert s.current_index == 2
        assert s.current_question is None
        with pytest.raises(InvalidSessionOperation):
            s.advance()
        assert s.current_index == 2

    def test_complete_blocks_until_done(self, practice_questions):
        s = start_session("practice", 3, practice_questions)
        with pytest.raises(IncompleteSessionError):
            s.complete()
        # at the end with two unanswered
        s.submit_answer(s.questions[0].id, "A")
        s.advance()
        s.advance()
        s.advance()
        with pytest.raises(IncompleteSessionError):
            s.complete()
        assert s.status == IN_PROGRESS

    def test_completed_is_final(self, practice_questions):
        s = start_session("practice", 2, practice_questions)
        _answer_all(s)
        s.complete()
        assert s.status == COMPLETED
        with pytest.raises(InvalidSessionOperation):
            s.submit_answer(s.questions[0].id, "A")
        with pytest.raises(InvalidSessionOperation):
            s.complete()

    def test_score_counts_correct_answers(self, practice_questions):
        s = start_session("practice", 10, practice_questions, rng=random.Random(7))
        _answer_all(s, correct=6)
        result = s.complete()
        assert result.score == s.score == 6
        assert 0 <= result.score <= result.total == 10


class TestCheckpoints:
    def test_exam_every_nine(self, practice_questions):
        s = start_session("exam", 0, practice_questions, rules=QuizRules(exam_size=20))
        assert _answer_all(s) == [9, 18]

    def test_none_at_the_end(self, practice_questions):
        s = start_session("practice", 18, practice_questions)
        # index 18 == len: finished, no interstitial
        assert _answer_all(s) == [9]

    def test_scenario_never(self, scenario_questions):
        rules = QuizRules(checkpoint_every=1)
        s = start_session("scenario", 6, scenario_questions, rules=rules)
        assert _answer_all(s) == []


class TestWorkedExamples:
    def test_practice_five_of_twenty(self, practice_questions):
        s = start_session("practice", 5, practice_questions)
        assert len({q.id for q in s.questions}) == 5
        _answer_all(s)
        result = s.complete()
        assert (result.score, result.total) == (5, 5)
        assert result.percentage == 100
        assert result.passed is None
        assert result.high_score is None

    def test_full_exam_forty_of_fifty(self):
        pool = [make_question(f"q{i:02d}", answer="ABCD"[i % 4]) for i in range(60)]
        s = start_session("exam", 0, pool)
        assert s.total == 50
        _answer_all(s, correct=40)
        result = s.complete()
        assert (result.score, result.total) == (40, 50)
        assert result.pass_mark == 40
        assert result.passed
        assert result.high_score.mode == "exam"
        assert (result.high_score.score, result.high_score.total) == (40, 50)

    def test_full_exam_just_below(self):
        pool = [make_question(f"q{i:02d}") for i in range(50)]
        s = start_session("exam", 0, pool)
        _answer_all(s, correct=39)
        assert not s.complete().passed

    def test_topic_exam_seventy_percent(self, practice_questions):
        s = start_session("exam", 0, practice_questions, topic="Mortgage Law")
        _answer_all(s, correct=7)
        result = s.complete()
        assert result.topic == "Mortgage Law"
        assert result.pass_mark == 7
        assert result.passed
        assert result.high_score.mode == "exam"

    def test_scenario_sixty_percent(self, scenario_questions):
        s = start_session("scenario", 3, scenario_questions, topic="ignored")
        assert s.topic is None
        _answer_all(s, correct=2)
        result = s.complete()
        assert result.pass_mark == 2
        assert result.passed
        assert result.high_score.mode == "scenario"
