"""Parse a CeMAP question bank JSON file into Question objects.

Expected shape::

  {"questions": [
      {"id": "cemap-001", "topic": "...", "question": "...",
       "options": {"A": "...", "B": "...", "C": "...", "D": "..."},
       "answer": "B",
       "scenario_id": "scenario-1", "scenario": "..."}   # optional pair
  ]}

A bare top-level list is accepted as well.
"""
from __future__ import annotations

import json
from pathlib import Path

from cemap_quiz.models import OPTION_LETTERS, Question


def parse_question_bank(path: Path) -> list[Question]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    items = raw["questions"] if isinstance(raw, dict) else raw

    questions: list[Question] = []
    seen_ids: set[str] = set()
    scenario_texts: dict[str, str] = {}

    for i, item in enumerate(items):
        where = f"{path.name}: question #{i + 1}"
        qid = str(item.get("id") or "").strip()
        if not qid:
            raise ValueError(f"{where}: missing id")
        if qid in seen_ids:
            raise ValueError(f"{where}: duplicate id {qid!r}")
        seen_ids.add(qid)

        options = item.get("options") or {}
        missing = [letter for letter in OPTION_LETTERS if not options.get(letter)]
        if missing:
            raise ValueError(f"{where} ({qid}): missing option(s) {', '.join(missing)}")

        answer = str(item.get("answer", "")).strip().upper()
        if answer not in OPTION_LETTERS:
            raise ValueError(f"{where} ({qid}): answer must be one of A-D, got {answer!r}")

        group_id = item.get("scenario_id")
        scenario = item.get("scenario")
        if group_id:
            if not scenario:
                raise ValueError(f"{where} ({qid}): scenario question without scenario text")
            # Every question in a group shares one scenario
            previous = scenario_texts.setdefault(group_id, scenario)
            if previous != scenario:
                raise ValueError(f"{where} ({qid}): scenario text differs within {group_id}")

        questions.append(
            Question(
                id=qid,
                topic=item["topic"],
                question_text=item["question"],
                options={letter: options[letter] for letter in OPTION_LETTERS},
                correct_option=answer,
                scenario_text=scenario if group_id else None,
                scenario_group_id=group_id or None,
            )
        )

    return questions
