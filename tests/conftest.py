"""Shared test fixtures."""
from __future__ import annotations

import json

import pytest

from cemap_quiz.db import Database
from cemap_quiz.models import Question


def make_question(
    qid: str,
    topic: str = "Mortgage Law",
    answer: str = "A",
    group: str | None = None,
    scenario: str | None = None,
) -> Question:
    return Question(
        id=qid,
        topic=topic,
        question_text=f"Question {qid}?",
        options={"A": f"{qid} a", "B": f"{qid} b", "C": f"{qid} c", "D": f"{qid} d"},
        correct_option=answer,
        scenario_text=scenario if group else None,
        scenario_group_id=group,
    )


@pytest.fixture
def tmp_db(tmp_path):
    """Create a fresh temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def practice_questions():
    """20 standalone questions: 12 on Mortgage Law, 8 on UK Taxation."""
    law = [make_question(f"law-{i:02d}", "Mortgage Law", "ABCD"[i % 4]) for i in range(12)]
    tax = [make_question(f"tax-{i:02d}", "UK Taxation", "ABCD"[i % 4]) for i in range(8)]
    return law + tax


@pytest.fixture
def scenario_questions():
    """Two scenario groups of three questions each, in declared order."""
    questions = []
    for g in (1, 2):
        text = f"Scenario {g}: a first-time buyer with a £{g * 20},000 deposit."
        for n in range(1, 4):
            questions.append(
                make_question(
                    f"sc{g}-q{n}",
                    topic="Mortgage Products" if n % 2 else "Financial Advice Process",
                    answer="B",
                    group=f"scenario-{g}",
                    scenario=text,
                )
            )
    return questions


@pytest.fixture
def sample_questions(practice_questions, scenario_questions):
    return practice_questions + scenario_questions


@pytest.fixture
def populated_db(tmp_db, sample_questions):
    """A database pre-loaded with sample questions."""
    tmp_db.import_questions(sample_questions, "bank.json")
    return tmp_db


@pytest.fixture
def bank_json():
    """Minimal question bank content for parser testing."""
    return {
        "questions": [
            {
                "id": "cemap-001",
                "topic": "Financial Services Industry",
                "question": "What does the 'M' in GRAM stand for?",
                "options": {
                    "A": "Monetary Transformation",
                    "B": "Maturity Transformation",
                    "C": "Market Transformation",
                    "D": "Medium Transformation",
                },
                "answer": "B",
            },
            {
                "id": "cemap-002",
                "topic": "UK Taxation",
                "question": "What is the personal allowance taper threshold?",
                "options": {"A": "£50,270", "B": "£100,000", "C": "£125,140", "D": "£150,000"},
                "answer": "b",
            },
            {
                "id": "scenario-1-q1",
                "topic": "Mortgage Products",
                "question": "What is the loan-to-value?",
                "options": {"A": "80%", "B": "85%", "C": "90%", "D": "95%"},
                "answer": "C",
                "scenario_id": "scenario-1",
                "scenario": "Sarah and James are buying a £280,000 home with a £28,000 deposit.",
            },
            {
                "id": "scenario-1-q2",
                "topic": "Financial Advice Process",
                "question": "What must the adviser confirm about the gift?",
                "options": {
                    "A": "That it is non-repayable",
                    "B": "That it is taxable",
                    "C": "That it is insured",
                    "D": "Nothing",
                },
                "answer": "A",
                "scenario_id": "scenario-1",
                "scenario": "Sarah and James are buying a £280,000 home with a £28,000 deposit.",
            },
        ]
    }


@pytest.fixture
def bank_file(tmp_path, bank_json):
    path = tmp_path / "bank.json"
    path.write_text(json.dumps(bank_json), encoding="utf-8")
    return path
