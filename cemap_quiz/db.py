from __future__ import annotations

import secrets
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from cemap_quiz.models import HighScoreRecord, Question

SCHEMA = """
CREATE TABLE IF NOT EXISTS questions (
    id TEXT PRIMARY KEY,
    topic TEXT NOT NULL,
    question_text TEXT NOT NULL,
    option_a TEXT NOT NULL,
    option_b TEXT NOT NULL,
    option_c TEXT NOT NULL,
    option_d TEXT NOT NULL,
    correct_option TEXT NOT NULL CHECK (correct_option IN ('A', 'B', 'C', 'D')),
    scenario_text TEXT,
    scenario_group_id TEXT,
    position INTEGER NOT NULL,
    source_file TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS high_scores (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    score INTEGER NOT NULL CHECK (score >= 0),
    total INTEGER NOT NULL CHECK (total > 0 AND score <= total),
    mode TEXT NOT NULL,
    timestamp TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_high_scores_mode ON high_scores (mode, timestamp);

CREATE TABLE IF NOT EXISTS access_grants (
    token TEXT PRIMARY KEY,
    payment_reference TEXT NOT NULL UNIQUE,
    product TEXT NOT NULL,
    user_id TEXT REFERENCES users(id),
    expires_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS login_sessions (
    token TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS file_mtimes (
    file_path TEXT PRIMARY KEY,
    mtime_ns INTEGER NOT NULL
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _question_from_row(row: sqlite3.Row) -> Question:
    return Question(
        id=row["id"],
        topic=row["topic"],
        question_text=row["question_text"],
        options={
            "A": row["option_a"],
            "B": row["option_b"],
            "C": row["option_c"],
            "D": row["option_d"],
        },
        correct_option=row["correct_option"],
        scenario_text=row["scenario_text"],
        scenario_group_id=row["scenario_group_id"],
    )


def _high_score_from_row(row: sqlite3.Row) -> HighScoreRecord:
    return HighScoreRecord(
        id=row["id"],
        name=row["name"],
        score=row["score"],
        total=row["total"],
        mode=row["mode"],
        timestamp=row["timestamp"],
    )


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # ── Import ────────────────────────────────────────────────────────────

    def delete_questions_by_source(self, source_file: str) -> int:
        """Remove all questions originally imported from *source_file*."""
        cur = self.conn.execute(
            "DELETE FROM questions WHERE source_file = ?", (source_file,)
        )
        self.conn.commit()
        return cur.rowcount

    def import_questions(self, questions: list[Question], source_file: str) -> int:
        """Insert or replace questions, remembering their order in the bank file."""
        row = self.conn.execute("SELECT COALESCE(MAX(position), -1) FROM questions").fetchone()
        next_position = row[0] + 1
        count = 0
        for q in questions:
            self.conn.execute(
                "INSERT OR REPLACE INTO questions (id, topic, question_text, option_a, "
                "option_b, option_c, option_d, correct_option, scenario_text, "
                "scenario_group_id, position, source_file) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    q.id,
                    q.topic,
                    q.question_text,
                    q.options["A"],
                    q.options["B"],
                    q.options["C"],
                    q.options["D"],
                    q.correct_option,
                    q.scenario_text,
                    q.scenario_group_id,
                    next_position + count,
                    source_file,
                ),
            )
            count += 1
        self.conn.commit()
        return count

    # ── File mtimes ─────────────────────────────────────────────────────

    def get_file_mtime(self, file_path: str) -> int | None:
        row = self.conn.execute(
            "SELECT mtime_ns FROM file_mtimes WHERE file_path = ?", (file_path,)
        ).fetchone()
        return row[0] if row else None

    def set_file_mtime(self, file_path: str, mtime_ns: int) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO file_mtimes (file_path, mtime_ns) VALUES (?, ?)",
            (file_path, mtime_ns),
        )
        self.conn.commit()

    # ── Questions ─────────────────────────────────────────────────────────

    def get_question_count(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM questions").fetchone()
        return row[0]

    def get_all_questions(self) -> list[Question]:
        rows = self.conn.execute("SELECT * FROM questions ORDER BY position").fetchall()
        return [_question_from_row(r) for r in rows]

    def get_question_pool(self, mode: str, topic: str | None = None) -> list[Question]:
        """Candidate questions for *mode* in declared order.

        Scenario mode gets every scenario question (topic is ignored: a scenario
        group mixes topics); practice and exam get the standalone questions,
        optionally restricted to *topic*.
        """
        if mode == "scenario":
            rows = self.conn.execute(
                "SELECT * FROM questions WHERE scenario_group_id IS NOT NULL "
                "ORDER BY position"
            ).fetchall()
        elif topic:
            rows = self.conn.execute(
                "SELECT * FROM questions WHERE scenario_group_id IS NULL AND topic = ? "
                "ORDER BY position",
                (topic,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM questions WHERE scenario_group_id IS NULL ORDER BY position"
            ).fetchall()
        return [_question_from_row(r) for r in rows]

    def get_topics(self) -> list[str]:
        """Topics with standalone questions (usable for a topic quiz)."""
        rows = self.conn.execute(
            "SELECT DISTINCT topic FROM questions WHERE scenario_group_id IS NULL "
            "ORDER BY topic"
        ).fetchall()
        return [r[0] for r in rows]

    def get_all_topics(self) -> list[str]:
        rows = self.conn.execute(
            "SELECT DISTINCT topic FROM questions ORDER BY topic"
        ).fetchall()
        return [r[0] for r in rows]

    # ── High scores ───────────────────────────────────────────────────────

    def add_high_score(self, name: str, score: int, total: int, mode: str) -> HighScoreRecord:
        record = HighScoreRecord(
            id=str(uuid.uuid4()),
            name=name,
            score=score,
            total=total,
            mode=mode,
            timestamp=_now(),
        )
        self.conn.execute(
            "INSERT INTO high_scores (id, name, score, total, mode, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (record.id, record.name, record.score, record.total, record.mode,
             record.timestamp),
        )
        self.conn.commit()
        return record

    def get_high_scores(self, mode: str, since: str | None = None) -> list[HighScoreRecord]:
        """All records for *mode*, optionally only those at or after *since*."""
        if since is not None:
            rows = self.conn.execute(
                "SELECT * FROM high_scores WHERE mode = ? AND timestamp >= ? "
                "ORDER BY timestamp",
                (mode, since),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM high_scores WHERE mode = ? ORDER BY timestamp", (mode,)
            ).fetchall()
        return [_high_score_from_row(r) for r in rows]

    # ── Access grants ─────────────────────────────────────────────────────

    def get_access_grant(self, token: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM access_grants WHERE token = ?", (token,)
        ).fetchone()
        return dict(row) if row else None

    def get_access_grant_by_reference(self, payment_reference: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM access_grants WHERE payment_reference = ?",
            (payment_reference,),
        ).fetchone()
        return dict(row) if row else None

    def create_access_grant(
        self,
        payment_reference: str,
        product: str,
        expires_at: str | None = None,
        user_id: str | None = None,
    ) -> dict:
        """Record a verified purchase. One grant per payment reference."""
        existing = self.get_access_grant_by_reference(payment_reference)
        if existing:
            return existing
        token = secrets.token_urlsafe(32)
        self.conn.execute(
            "INSERT INTO access_grants (token, payment_reference, product, user_id, "
            "expires_at, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (token, payment_reference, product, user_id, expires_at, _now()),
        )
        self.conn.commit()
        return self.get_access_grant(token)

    # ── Users ─────────────────────────────────────────────────────────────

    def create_user(self, name: str, email: str, password_hash: str) -> dict:
        user_id = str(uuid.uuid4())
        self.conn.execute(
            "INSERT INTO users (id, name, email, password_hash, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (user_id, name, email.lower(), password_hash, _now()),
        )
        self.conn.commit()
        return self.get_user(user_id)

    def get_user(self, user_id: str) -> dict | None:
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def get_user_by_email(self, email: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM users WHERE email = ?", (email.lower(),)
        ).fetchone()
        return dict(row) if row else None

    def create_login_session(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        self.conn.execute(
            "INSERT INTO login_sessions (token, user_id, created_at) VALUES (?, ?, ?)",
            (token, user_id, _now()),
        )
        self.conn.commit()
        return token

    def get_session_user(self, token: str) -> dict | None:
        row = self.conn.execute(
            "SELECT u.* FROM login_sessions s JOIN users u ON u.id = s.user_id "
            "WHERE s.token = ?",
            (token,),
        ).fetchone()
        return dict(row) if row else None

    def delete_login_session(self, token: str) -> None:
        self.conn.execute("DELETE FROM login_sessions WHERE token = ?", (token,))
        self.conn.commit()

    # ── Stats ─────────────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        questions = self.get_question_count()
        scenario_row = self.conn.execute(
            "SELECT COUNT(*), COUNT(DISTINCT scenario_group_id) FROM questions "
            "WHERE scenario_group_id IS NOT NULL"
        ).fetchone()
        scores = {
            r["mode"]: r["cnt"]
            for r in self.conn.execute(
                "SELECT mode, COUNT(*) AS cnt FROM high_scores GROUP BY mode"
            ).fetchall()
        }
        grants = self.conn.execute("SELECT COUNT(*) FROM access_grants").fetchone()
        users = self.conn.execute("SELECT COUNT(*) FROM users").fetchone()

        return {
            "total_questions": questions,
            "scenario_questions": scenario_row[0],
            "scenario_groups": scenario_row[1],
            "topics": len(self.get_all_topics()),
            "high_scores": scores,
            "access_grants": grants[0],
            "users": users[0],
        }
