"""CLI entry point for cemap-quiz.

Usage:
  python -m cemap_quiz serve [--port PORT] [--host HOST] [--no-auto-import]
  python -m cemap_quiz stop
  python -m cemap_quiz restart [--port PORT] [--host HOST]
  python -m cemap_quiz status
  python -m cemap_quiz import
  python -m cemap_quiz stats
  python -m cemap_quiz play [--mode MODE] [--count N] [--topic TOPIC] [--url URL] [--name NAME]
  python -m cemap_quiz redeem PAYMENT_ID [--url URL]
"""
from __future__ import annotations

import asyncio
import os
import signal
import sys
from pathlib import Path

PID_FILE = Path(__file__).resolve().parent.parent / ".cemap-quiz.pid"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765

COMMANDS = ("serve", "stop", "restart", "status", "import", "stats", "play", "redeem")


def main():
    args = sys.argv[1:]
    command, rest = (args[0], args[1:]) if args else ("serve", [])

    if command == "serve":
        _serve(rest)
    elif command == "stop":
        _stop()
    elif command == "restart":
        _stop()
        _wait_for_exit()
        _serve(rest)
    elif command == "status":
        _status()
    elif command == "import":
        _import_questions()
    elif command == "stats":
        _stats()
    elif command == "play":
        asyncio.run(_play(rest))
    elif command == "redeem":
        asyncio.run(_redeem(rest))
    else:
        print(f"Unknown command: {command}")
        print(f"Commands: {', '.join(COMMANDS)}")
        sys.exit(1)


def _parse_flag(args: list[str], name: str, default: str) -> str:
    for i, a in enumerate(args):
        if a == name and i + 1 < len(args):
            return args[i + 1]
    return default


# ── Server process ────────────────────────────────────────────────────────

def _server_pid() -> int | None:
    """PID of the running quiz server, or None (a stale PID file is removed)."""
    try:
        pid = int(PID_FILE.read_text().strip())
        os.kill(pid, 0)
    except FileNotFoundError:
        return None
    except (ValueError, ProcessLookupError, PermissionError):
        PID_FILE.unlink(missing_ok=True)
        return None
    return pid


def _stop() -> bool:
    pid = _server_pid()
    if pid is None:
        print("Quiz server is not running.")
        return False
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        print(f"Quiz server (PID {pid}) had already exited.")
        return False
    finally:
        PID_FILE.unlink(missing_ok=True)
    print(f"Stopped quiz server (PID {pid}).")
    return True


def _wait_for_exit(timeout: float = 5.0):
    """Give a stopped server time to release its port before restarting."""
    import time

    deadline = time.monotonic() + timeout
    while _server_pid() is not None and time.monotonic() < deadline:
        time.sleep(0.2)
    time.sleep(0.5)


def _serve(args: list[str]):
    import uvicorn
    from cemap_quiz.config import load_settings
    from cemap_quiz.db import Database

    running = _server_pid()
    if running is not None:
        print(f"Quiz server already running (PID {running}). Use 'restart' or 'stop' first.")
        sys.exit(1)

    if "--no-auto-import" in args:
        os.environ["CEMAP_QUIZ_NO_AUTO_IMPORT"] = "1"
    host = _parse_flag(args, "--host", DEFAULT_HOST)
    port = int(_parse_flag(args, "--port", str(DEFAULT_PORT)))

    if "--no-auto-import" in args:
        db = Database(load_settings().db_full_path)
        if not db.get_question_count():
            print("Warning: question bank is empty; run 'import' first.")
        db.close()

    PID_FILE.write_text(str(os.getpid()))
    print(f"Starting CeMAP Quiz on {_server_url(host, port)}")
    print("Press Ctrl+C to stop\n")
    try:
        uvicorn.run("cemap_quiz.app:app", host=host, port=port, timeout_graceful_shutdown=5)
    finally:
        PID_FILE.unlink(missing_ok=True)
        os.environ.pop("CEMAP_QUIZ_NO_AUTO_IMPORT", None)


def _server_url(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> str:
    return f"http://{host}:{port}"


def _status():
    """Server process plus this machine's client state (unlocks, offline cache)."""
    from cemap_quiz.config import load_settings
    from cemap_quiz.entitlements import AccessGate
    from cemap_quiz.local_store import LocalStore
    from cemap_quiz.offline_cache import CacheStorage

    pid = _server_pid()
    print(f"Quiz server: running (PID {pid})" if pid else "Quiz server: not running")

    state_dir = load_settings().client_state_full_path
    gate = AccessGate(LocalStore(state_dir / "local_storage.json"), verifier=None)
    scopes = [t.scope for t in gate.tokens()]
    print(f"Unlocked:    {', '.join(scopes) if scopes else 'practice only'}")

    cache_path = state_dir / "cache.db"
    if not cache_path.exists():
        print("Offline cache: not installed")
        return
    storage = CacheStorage(cache_path)
    try:
        for namespace in storage.keys():
            print(f"Offline cache {namespace}: {storage.count(namespace)} responses")
    finally:
        storage.close()


def _import_questions():
    from cemap_quiz.app import import_question_file
    from cemap_quiz.config import load_settings
    from cemap_quiz.db import Database

    settings = load_settings()
    db = Database(settings.db_full_path)

    for qf in settings.resolved_question_files():
        if not qf.exists():
            print(f"  Skipping (not found): {qf}")
            continue
        print(f"  Parsing: {qf.name}")
        try:
            n = import_question_file(db, qf)
        except (ValueError, KeyError) as e:
            print(f"    rejected: {e}")
            continue
        print(f"    {n} questions")

    stats = db.get_stats()
    print(
        f"\nTotal in DB: {stats['total_questions']} questions, "
        f"{stats['scenario_groups']} scenarios, {stats['topics']} topics"
    )
    db.close()


def _stats():
    from cemap_quiz.config import load_settings
    from cemap_quiz.db import Database

    settings = load_settings()
    db = Database(settings.db_full_path)
    stats = db.get_stats()

    print("CeMAP Quiz Stats")
    print("=" * 40)
    print(f"Total questions:    {stats['total_questions']}")
    print(f"Scenario questions: {stats['scenario_questions']} ({stats['scenario_groups']} scenarios)")
    print(f"Topics:             {stats['topics']}")
    for mode, n in sorted(stats["high_scores"].items()):
        print(f"High scores ({mode}): {n}")
    print(f"Access grants:      {stats['access_grants']}")
    print(f"Users:              {stats['users']}")
    db.close()


# ── Terminal client ───────────────────────────────────────────────────────

def _ask_option(prompt: str) -> str:
    while True:
        choice = input(prompt).strip().upper()
        if choice in ("A", "B", "C", "D"):
            return choice
        print("  Please answer A, B, C or D.")


async def _play(args: list[str]):
    from cemap_quiz.certificate import render_certificate
    from cemap_quiz.config import load_settings
    from cemap_quiz.controller import create_controller
    from cemap_quiz.errors import AccessDeniedError, EmptyPoolError, OfflineError, QuizError

    mode = _parse_flag(args, "--mode", "practice")
    count = int(_parse_flag(args, "--count", "0")) or None
    topic = _parse_flag(args, "--topic", "") or None
    name = _parse_flag(args, "--name", "")
    url = _parse_flag(args, "--url", _server_url())

    controller = await create_controller(url, load_settings())
    try:
        try:
            session = await controller.start(mode, question_count=count, topic=topic)
        except AccessDeniedError:
            print(f"{mode.title()} mode needs a purchase. Run 'redeem PAYMENT_ID' first.")
            return
        except (EmptyPoolError, OfflineError) as e:
            print(f"Cannot start quiz: {e}")
            return
        except QuizError as e:
            print(f"Server refused the quiz request: {e}")
            return

        if session.truncated:
            print(f"Only {session.total} questions available.")
        shown_scenario = None
        while session.current_question is not None:
            q = session.current_question
            if q.scenario_text and q.scenario_group_id != shown_scenario:
                print(f"\nScenario: {q.scenario_text}")
                shown_scenario = q.scenario_group_id
            print(f"\nQuestion {session.current_index + 1}/{session.total} [{q.topic}]")
            print(q.question_text)
            for letter, text in q.options.items():
                print(f"  {letter}) {text}")
            feedback = controller.answer(_ask_option("Your answer: "))
            if feedback is not None:
                verdict = "Correct!" if feedback.correct else f"Wrong - answer: {feedback.correct_option}"
                print(f"  {verdict}")

            interstitial = controller.next()
            if interstitial is not None:
                print(f"\n*** {interstitial.message} ***")
                if interstitial.kind == "review_prompt":
                    rating = input("Rating (1-5, blank to skip): ").strip()
                    if rating.isdigit() and 1 <= int(rating) <= 5:
                        controller.rate(int(rating))

        completion = await controller.finish(name)
        print()
        print(render_certificate(completion.certificate))
        if completion.high_score_pending:
            print("High score could not be submitted; see the log for details.")
    finally:
        await controller.aclose()


async def _redeem(args: list[str]):
    from cemap_quiz.config import load_settings
    from cemap_quiz.controller import create_controller
    from cemap_quiz.errors import VerificationFailedError

    if not args or args[0].startswith("--"):
        print("Usage: redeem PAYMENT_ID [--url URL]")
        sys.exit(1)
    url = _parse_flag(args, "--url", _server_url())
    controller = await create_controller(url, load_settings())
    try:
        scope = await controller.redeem_payment(args[0])
        unlocked = ", ".join(t.scope for t in controller.gate.tokens())
        print(f"Verified {scope} purchase. Unlocked: {unlocked}")
    except VerificationFailedError as e:
        print(f"Payment not verified: {e}")
        sys.exit(1)
    finally:
        await controller.aclose()


if __name__ == "__main__":
    main()
