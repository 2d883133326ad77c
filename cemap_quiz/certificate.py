from __future__ import annotations

import textwrap
from dataclasses import dataclass
from datetime import date

from cemap_quiz.session import QuizResult

ISSUER = "JK Training"

_TITLES = {
    "practice": ("Practice Test Certificate", "the CeMAP Practice Test"),
    "exam": ("Full Exam Certificate", "the CeMAP Full Exam"),
    "topic_exam": ("Topic Exam Certificate", "a CeMAP Topic Exam"),
    "scenario": ("Scenario Quiz Certificate", "the CeMAP Scenario Quiz"),
}


@dataclass
class Certificate:
    title: str
    description: str
    name: str
    score: int
    total: int
    percentage: int
    passed: bool | None
    issued_on: date
    issuer: str = ISSUER

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "name": self.name,
            "score": self.score,
            "total": self.total,
            "percentage": self.percentage,
            "passed": self.passed,
            "date": self.issued_on.isoformat(),
            "issuer": self.issuer,
        }


def build_certificate(
    result: QuizResult, name: str = "", today: date | None = None
) -> Certificate:
    key = "topic_exam" if result.mode == "exam" and result.topic else result.mode
    title, subject = _TITLES[key]
    description = f"You have successfully completed {subject}"
    if key == "topic_exam":
        description += f": {result.topic}"
    return Certificate(
        title=title,
        description=description,
        name=name.strip() or "The Bearer",
        score=result.score,
        total=result.total,
        percentage=result.percentage,
        passed=result.passed,
        issued_on=today or date.today(),
    )


def render_certificate(cert: Certificate, width: int = 60) -> str:
    """Plain-text certificate card for the terminal."""
    # en-GB long date, e.g. 7 March 2025
    when = f"{cert.issued_on.day} {cert.issued_on:%B %Y}"
    lines = [
        "Certificate of Achievement",
        f"Awarded by {cert.issuer}",
        "",
        "This is to certify that",
        cert.name,
        "",
        cert.description,
        "",
        cert.title,
        f"Score: {cert.score}/{cert.total} ({cert.percentage}%)",
    ]
    if cert.passed is not None:
        lines.append("PASSED" if cert.passed else "Not yet passed")
    lines.append(f"Date: {when}")

    inner = width - 4
    border = "+" + "-" * (width - 2) + "+"
    body = [
        f"| {part.center(inner)} |"
        for line in lines
        for part in (textwrap.wrap(line, inner) or [""])
    ]
    return "\n".join([border, *body, border])
