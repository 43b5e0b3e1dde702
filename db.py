import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

from db_pool import SQLiteConnectionPool
from schemas import (
    ActivityRecord,
    ActivityResult,
    JournalEntry,
    MoodSample,
    UserPreferences,
)

DB_PATH = os.getenv("DB_PATH", "data.db")

_ACTIVITY_KINDS = {"question", "practice", "exam"}

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def configure(db_path: str) -> None:
    """Point the module at ``db_path``, replacing the pool if the path changed."""
    global DB_PATH, _pool
    if db_path == DB_PATH:
        return
    _pool.close_all()
    DB_PATH = db_path
    _pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;

            CREATE TABLE IF NOT EXISTS activity_log (
              id             INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id        TEXT NOT NULL,
              kind           TEXT NOT NULL CHECK (kind IN ('question', 'practice', 'exam')),
              occurred_at    TEXT NOT NULL,
              score          REAL,
              is_correct     INTEGER,
              time_spent_ms  INTEGER NOT NULL DEFAULT 0,
              category       TEXT,
              difficulty     TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_activity_user_time ON activity_log(user_id, occurred_at);

            CREATE TABLE IF NOT EXISTS mood_ratings (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id     TEXT NOT NULL,
              mood_value  REAL NOT NULL CHECK (mood_value BETWEEN 1 AND 5),
              session_id  TEXT,
              exam_id     TEXT,
              created_at  TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_mood_user_time ON mood_ratings(user_id, created_at);

            CREATE TABLE IF NOT EXISTS journal_entries (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id     TEXT NOT NULL,
              entry_text  TEXT NOT NULL,
              tags        TEXT,
              created_at  TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_journal_user_time ON journal_entries(user_id, created_at);

            CREATE TABLE IF NOT EXISTS study_preferences (
              user_id     TEXT PRIMARY KEY,
              preferences TEXT NOT NULL,
              updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        con.commit()


# -------------- timestamp helpers --------------
def _coerce_to_utc(dt: Optional[datetime], fallback: Optional[datetime] = None) -> datetime:
    if dt is None:
        dt = fallback or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _format_timestamp(dt: Optional[datetime]) -> str:
    # Fixed width so that string comparison in SQL orders chronologically.
    return _coerce_to_utc(dt).isoformat(timespec="microseconds")


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return _coerce_to_utc(datetime.fromisoformat(text))
    except ValueError:
        return _coerce_to_utc(datetime.strptime(text, "%Y-%m-%d %H:%M:%S"))


def _decode_json_field(value: Optional[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    value = value.strip()
    if not value:
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


# -------------- activities --------------
def log_activity(
    user_id: str,
    kind: str,
    *,
    is_correct: Optional[bool] = None,
    score: Optional[float] = None,
    time_spent_ms: int = 0,
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> int:
    if kind not in _ACTIVITY_KINDS:
        raise ValueError(f"Unknown activity kind: {kind}")
    cur = _exec(
        """
        INSERT INTO activity_log(user_id, kind, occurred_at, score, is_correct, time_spent_ms, category, difficulty)
        VALUES (?,?,?,?,?,?,?,?)
        """,
        (
            user_id,
            kind,
            _format_timestamp(occurred_at),
            score,
            None if is_correct is None else int(bool(is_correct)),
            max(0, int(time_spent_ms or 0)),
            category,
            difficulty,
        ),
    )
    return int(cur.lastrowid)


def _activity_from_row(row: sqlite3.Row) -> ActivityRecord:
    is_correct = row["is_correct"]
    return ActivityRecord(
        user_id=row["user_id"],
        kind=row["kind"],
        occurred_at=_parse_timestamp(row["occurred_at"]),
        result=ActivityResult(
            score=row["score"],
            is_correct=None if is_correct is None else bool(is_correct),
            time_spent_ms=row["time_spent_ms"] or 0,
        ),
        category=row["category"],
        difficulty=row["difficulty"],
    )


def list_activities(user_id: str, since: Optional[datetime] = None) -> List[ActivityRecord]:
    """Activities of ``user_id`` at or after ``since``, oldest first."""
    if since is not None:
        rows = _query(
            """
            SELECT user_id, kind, occurred_at, score, is_correct, time_spent_ms, category, difficulty
            FROM activity_log
            WHERE user_id = ? AND occurred_at >= ?
            ORDER BY occurred_at ASC, id ASC
            """,
            (user_id, _format_timestamp(since)),
        )
    else:
        rows = _query(
            """
            SELECT user_id, kind, occurred_at, score, is_correct, time_spent_ms, category, difficulty
            FROM activity_log
            WHERE user_id = ?
            ORDER BY occurred_at ASC, id ASC
            """,
            (user_id,),
        )
    return [_activity_from_row(row) for row in rows]


# -------------- wellbeing --------------
def save_mood_rating(
    user_id: str,
    mood_value: float,
    *,
    session_id: Optional[str] = None,
    exam_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> int:
    if not session_id and not exam_id:
        raise ValueError("A mood rating needs a session_id or an exam_id")
    if not 1 <= float(mood_value) <= 5:
        raise ValueError("Mood value must be between 1 and 5")
    cur = _exec(
        "INSERT INTO mood_ratings(user_id, mood_value, session_id, exam_id, created_at) VALUES (?,?,?,?,?)",
        (user_id, float(mood_value), session_id, exam_id, _format_timestamp(created_at)),
    )
    return int(cur.lastrowid)


def list_mood_samples(user_id: str, limit: Optional[int] = None) -> List[MoodSample]:
    """Mood ratings of ``user_id``, oldest first (the most recent ``limit`` when given)."""
    sql = """
        SELECT user_id, mood_value, session_id, exam_id, created_at
        FROM mood_ratings
        WHERE user_id = ?
        ORDER BY created_at DESC, id DESC
    """
    params: Sequence[Any] = (user_id,)
    if limit is not None:
        sql += " LIMIT ?"
        params = (user_id, int(limit))
    rows = _query(sql, params)
    samples = [
        MoodSample(
            user_id=row["user_id"],
            value=row["mood_value"],
            timestamp=_parse_timestamp(row["created_at"]),
            session_id=row["session_id"],
            exam_id=row["exam_id"],
        )
        for row in rows
    ]
    samples.reverse()
    return samples


def save_journal_entry(
    user_id: str,
    text: str,
    *,
    tags: Optional[Sequence[str]] = None,
    created_at: Optional[datetime] = None,
) -> int:
    cur = _exec(
        "INSERT INTO journal_entries(user_id, entry_text, tags, created_at) VALUES (?,?,?,?)",
        (user_id, text, json_dumps(list(tags or [])), _format_timestamp(created_at)),
    )
    return int(cur.lastrowid)


def list_journal_entries(user_id: str, limit: int = 10) -> List[JournalEntry]:
    """The ``limit`` most recent journal entries of ``user_id``, newest first."""
    rows = _query(
        """
        SELECT user_id, entry_text, tags, created_at
        FROM journal_entries
        WHERE user_id = ?
        ORDER BY created_at DESC, id DESC
        LIMIT ?
        """,
        (user_id, int(limit)),
    )
    entries: List[JournalEntry] = []
    for row in rows:
        tags = _decode_json_field(row["tags"])
        entries.append(
            JournalEntry(
                user_id=row["user_id"],
                text=row["entry_text"],
                timestamp=_parse_timestamp(row["created_at"]),
                tags=[str(tag) for tag in tags] if isinstance(tags, list) else [],
            )
        )
    return entries


# -------------- preferences --------------
def get_preferences(user_id: str) -> Optional[UserPreferences]:
    rows = _query("SELECT preferences FROM study_preferences WHERE user_id = ?", (user_id,))
    if not rows:
        return None
    payload = _decode_json_field(rows[0]["preferences"])
    if not isinstance(payload, dict):
        return None
    return UserPreferences.model_validate(payload)


def save_preferences(user_id: str, preferences: UserPreferences) -> None:
    _exec(
        """
        INSERT INTO study_preferences (user_id, preferences, updated_at)
        VALUES (?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT(user_id) DO UPDATE SET
            preferences = excluded.preferences,
            updated_at = CURRENT_TIMESTAMP
        """,
        (user_id, preferences.model_dump_json()),
    )
