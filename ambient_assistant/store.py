"""SQLite-backed store for snapshots, sessions, history and user rules."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .filters import app_key
from .models import (
    AppFilter,
    AudioFilter,
    AudioSession,
    CommandHistoryEntry,
    ContextPattern,
    ContextSnapshot,
    ScreenSnapshot,
)
from .utils import deserialize_list, serialize_list

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS screen_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    app_name TEXT NOT NULL,
    window_title TEXT NOT NULL,
    extracted_text TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    captured_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_screen_snapshots_time ON screen_snapshots(captured_at);

CREATE TABLE IF NOT EXISTS audio_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    transcript TEXT NOT NULL,
    source_name TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT,
    is_final INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audio_sessions_time ON audio_sessions(start_time);

CREATE TABLE IF NOT EXISTS context_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    app_name TEXT NOT NULL,
    window_title TEXT NOT NULL,
    user_intent TEXT,
    screen_text TEXT,
    screen_hash TEXT,
    screen_captured_at TEXT,
    audio_transcript TEXT,
    audio_source TEXT,
    audio_start_time TEXT,
    timestamp TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_context_snapshots_time ON context_snapshots(timestamp);

CREATE TABLE IF NOT EXISTS command_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    command TEXT NOT NULL,
    success INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    result_summary TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS app_filters (
    filter_key TEXT PRIMARY KEY,
    app_name TEXT NOT NULL,
    is_whitelisted INTEGER NOT NULL,
    is_blacklisted INTEGER NOT NULL,
    window_patterns TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audio_filters (
    filter_key TEXT PRIMARY KEY,
    source_name TEXT NOT NULL,
    is_whitelisted INTEGER NOT NULL,
    is_blacklisted INTEGER NOT NULL,
    volume_threshold REAL NOT NULL,
    keywords TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS context_patterns (
    pattern_name TEXT PRIMARY KEY,
    app_name TEXT NOT NULL,
    window_pattern TEXT NOT NULL,
    audio_keywords TEXT NOT NULL,
    screen_keywords TEXT NOT NULL,
    trigger_actions TEXT NOT NULL,
    is_active INTEGER NOT NULL
);
"""


@dataclass(frozen=True, slots=True)
class _Table:
    name: str
    order_by: Optional[str]
    columns: Tuple[str, ...]


_TABLES: Dict[str, _Table] = {
    "screen_snapshots": _Table("screen_snapshots", "captured_at", ("app_name", "content_hash")),
    "audio_sessions": _Table("audio_sessions", "start_time", ("source_name", "is_final")),
    "context_snapshots": _Table("context_snapshots", "timestamp", ("app_name", "user_intent")),
    "command_history": _Table("command_history", "timestamp", ("command", "success")),
    "app_filters": _Table("app_filters", None, ("app_name",)),
    "audio_filters": _Table("audio_filters", None, ("source_name",)),
    "context_patterns": _Table("context_patterns", None, ("pattern_name", "is_active")),
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class RecordStore:
    """Persist assistant entities and read them back newest first."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        # Sentinel threads and the caller share one connection.
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._writers: Dict[type, Callable[[Any], Tuple[str, Sequence[Any]]]] = {
            ScreenSnapshot: self._screen_row,
            AudioSession: self._audio_row,
            ContextSnapshot: self._context_row,
            CommandHistoryEntry: self._history_row,
            AppFilter: self._app_filter_row,
            AudioFilter: self._audio_filter_row,
            ContextPattern: self._pattern_row,
        }
        self._readers: Dict[str, Callable[[sqlite3.Row], Any]] = {
            "screen_snapshots": self._row_to_screen,
            "audio_sessions": self._row_to_audio,
            "context_snapshots": self._row_to_context,
            "command_history": self._row_to_history,
            "app_filters": self._row_to_app_filter,
            "audio_filters": self._row_to_audio_filter,
            "context_patterns": self._row_to_pattern,
        }
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._lock:
            self.conn.executescript(_SCHEMA)
            self.conn.commit()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, entity: Any) -> None:
        writer = self._writers.get(type(entity))
        if writer is None:
            raise TypeError(f"Cannot persist {type(entity).__name__}")
        sql, params = writer(entity)
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute(sql, params)
            self.conn.commit()

    def delete(self, kind: str, key: str) -> bool:
        """Remove a filter or pattern by name."""

        columns = {
            "app_filters": "filter_key",
            "audio_filters": "filter_key",
            "context_patterns": "pattern_name",
        }
        if kind not in columns:
            raise ValueError(f"Records of kind {kind!r} cannot be deleted")
        if kind == "app_filters":
            lookup = app_key(key)
        elif kind == "audio_filters":
            lookup = key.strip().lower()
        else:
            lookup = key
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute(f"DELETE FROM {kind} WHERE {columns[kind]} = ?", (lookup,))
            self.conn.commit()
            return cur.rowcount > 0

    @staticmethod
    def _screen_row(snapshot: ScreenSnapshot) -> Tuple[str, Sequence[Any]]:
        return (
            """
            INSERT INTO screen_snapshots (app_name, window_title, extracted_text, content_hash, captured_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                snapshot.app_name,
                snapshot.window_title,
                snapshot.extracted_text,
                snapshot.content_hash,
                _iso(snapshot.captured_at),
            ),
        )

    @staticmethod
    def _audio_row(session: AudioSession) -> Tuple[str, Sequence[Any]]:
        return (
            """
            INSERT INTO audio_sessions (transcript, source_name, start_time, end_time, is_final)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                session.transcript,
                session.source_name,
                _iso(session.start_time),
                _iso(session.end_time),
                int(session.is_final),
            ),
        )

    @staticmethod
    def _context_row(snapshot: ContextSnapshot) -> Tuple[str, Sequence[Any]]:
        screen, audio = snapshot.screen_snapshot, snapshot.audio_session
        return (
            """
            INSERT INTO context_snapshots (
                app_name, window_title, user_intent, screen_text, screen_hash, screen_captured_at,
                audio_transcript, audio_source, audio_start_time, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                snapshot.app_name,
                snapshot.window_title,
                snapshot.user_intent,
                screen.extracted_text if screen else None,
                screen.content_hash if screen else None,
                _iso(screen.captured_at) if screen else None,
                audio.transcript if audio else None,
                audio.source_name if audio else None,
                _iso(audio.start_time) if audio else None,
                _iso(snapshot.timestamp),
            ),
        )

    @staticmethod
    def _history_row(entry: CommandHistoryEntry) -> Tuple[str, Sequence[Any]]:
        return (
            "INSERT INTO command_history (command, success, timestamp, result_summary) VALUES (?, ?, ?, ?)",
            (entry.command, int(entry.success), _iso(entry.timestamp), entry.result_summary),
        )

    @staticmethod
    def _app_filter_row(app_filter: AppFilter) -> Tuple[str, Sequence[Any]]:
        return (
            """
            INSERT INTO app_filters (filter_key, app_name, is_whitelisted, is_blacklisted, window_patterns)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(filter_key) DO UPDATE SET
                app_name=excluded.app_name,
                is_whitelisted=excluded.is_whitelisted,
                is_blacklisted=excluded.is_blacklisted,
                window_patterns=excluded.window_patterns
            """,
            (
                app_key(app_filter.app_name),
                app_filter.app_name,
                int(app_filter.is_whitelisted),
                int(app_filter.is_blacklisted),
                serialize_list(app_filter.window_patterns),
            ),
        )

    @staticmethod
    def _audio_filter_row(audio_filter: AudioFilter) -> Tuple[str, Sequence[Any]]:
        return (
            """
            INSERT INTO audio_filters (filter_key, source_name, is_whitelisted, is_blacklisted, volume_threshold, keywords)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(filter_key) DO UPDATE SET
                source_name=excluded.source_name,
                is_whitelisted=excluded.is_whitelisted,
                is_blacklisted=excluded.is_blacklisted,
                volume_threshold=excluded.volume_threshold,
                keywords=excluded.keywords
            """,
            (
                audio_filter.source_name.strip().lower(),
                audio_filter.source_name,
                int(audio_filter.is_whitelisted),
                int(audio_filter.is_blacklisted),
                float(audio_filter.volume_threshold),
                serialize_list(audio_filter.keywords),
            ),
        )

    @staticmethod
    def _pattern_row(pattern: ContextPattern) -> Tuple[str, Sequence[Any]]:
        return (
            """
            INSERT INTO context_patterns (
                pattern_name, app_name, window_pattern, audio_keywords, screen_keywords, trigger_actions, is_active
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(pattern_name) DO UPDATE SET
                app_name=excluded.app_name,
                window_pattern=excluded.window_pattern,
                audio_keywords=excluded.audio_keywords,
                screen_keywords=excluded.screen_keywords,
                trigger_actions=excluded.trigger_actions,
                is_active=excluded.is_active
            """,
            (
                pattern.pattern_name,
                pattern.app_name,
                pattern.window_pattern,
                serialize_list(pattern.audio_keywords),
                serialize_list(pattern.screen_keywords),
                serialize_list(pattern.trigger_actions),
                int(pattern.is_active),
            ),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query(self, kind: str, *, limit: int | None = 20, **filters: Any) -> List[Any]:
        """Return stored records of ``kind``; timed records come newest first.

        Keyword arguments filter by column equality on the indexed columns of
        each kind (for example ``app_name="Chrome"``).
        """

        table = _TABLES.get(kind)
        if table is None:
            raise ValueError(f"Unknown record kind: {kind!r}")
        unknown = set(filters) - set(table.columns)
        if unknown:
            raise ValueError(f"Cannot filter {kind} by {', '.join(sorted(unknown))}")

        clauses = [f"{column} = ?" for column in filters]
        params: List[Any] = [int(value) if isinstance(value, bool) else value for value in filters.values()]
        sql = f"SELECT * FROM {table.name}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        if table.order_by:
            sql += f" ORDER BY {table.order_by} DESC, rowid DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._lock, closing(self.conn.cursor()) as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        reader = self._readers[kind]
        return [reader(row) for row in rows]

    @staticmethod
    def _row_to_screen(row: sqlite3.Row) -> ScreenSnapshot:
        return ScreenSnapshot(
            app_name=row["app_name"],
            window_title=row["window_title"],
            extracted_text=row["extracted_text"],
            content_hash=row["content_hash"],
            captured_at=_parse(row["captured_at"]),
        )

    @staticmethod
    def _row_to_audio(row: sqlite3.Row) -> AudioSession:
        return AudioSession(
            transcript=row["transcript"],
            source_name=row["source_name"],
            start_time=_parse(row["start_time"]),
            end_time=_parse(row["end_time"]),
            is_final=bool(row["is_final"]),
        )

    @staticmethod
    def _row_to_context(row: sqlite3.Row) -> ContextSnapshot:
        screen = None
        if row["screen_hash"] is not None:
            screen = ScreenSnapshot(
                app_name=row["app_name"],
                window_title=row["window_title"],
                extracted_text=row["screen_text"] or "",
                content_hash=row["screen_hash"],
                captured_at=_parse(row["screen_captured_at"]),
            )
        audio = None
        if row["audio_transcript"] is not None:
            audio = AudioSession(
                transcript=row["audio_transcript"],
                source_name=row["audio_source"] or "",
                start_time=_parse(row["audio_start_time"]),
                is_final=True,
            )
        return ContextSnapshot(
            app_name=row["app_name"],
            window_title=row["window_title"],
            screen_snapshot=screen,
            audio_session=audio,
            user_intent=row["user_intent"],
            timestamp=_parse(row["timestamp"]),
        )

    @staticmethod
    def _row_to_history(row: sqlite3.Row) -> CommandHistoryEntry:
        return CommandHistoryEntry(
            command=row["command"],
            success=bool(row["success"]),
            timestamp=_parse(row["timestamp"]),
            result_summary=row["result_summary"],
        )

    @staticmethod
    def _row_to_app_filter(row: sqlite3.Row) -> AppFilter:
        return AppFilter(
            app_name=row["app_name"],
            is_whitelisted=bool(row["is_whitelisted"]),
            is_blacklisted=bool(row["is_blacklisted"]),
            window_patterns=deserialize_list(row["window_patterns"]),
        )

    @staticmethod
    def _row_to_audio_filter(row: sqlite3.Row) -> AudioFilter:
        return AudioFilter(
            source_name=row["source_name"],
            is_whitelisted=bool(row["is_whitelisted"]),
            is_blacklisted=bool(row["is_blacklisted"]),
            volume_threshold=float(row["volume_threshold"]),
            keywords=deserialize_list(row["keywords"]),
        )

    @staticmethod
    def _row_to_pattern(row: sqlite3.Row) -> ContextPattern:
        return ContextPattern(
            pattern_name=row["pattern_name"],
            app_name=row["app_name"],
            window_pattern=row["window_pattern"],
            audio_keywords=deserialize_list(row["audio_keywords"]),
            screen_keywords=deserialize_list(row["screen_keywords"]),
            trigger_actions=deserialize_list(row["trigger_actions"]),
            is_active=bool(row["is_active"]),
        )

    def close(self) -> None:
        with self._lock:
            self.conn.close()
