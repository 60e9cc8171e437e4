import json
import sqlite3
import logging
from contextlib import contextmanager
from typing import Any, Optional

from reachbot.models import Message, Query, ReachOut, User, UserType

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    jid TEXT NOT NULL UNIQUE,
    phone TEXT,
    name TEXT,
    type TEXT NOT NULL,
    current_reach_out TEXT,
    metadata TEXT,
    profile TEXT,
    created_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS queries (
    id TEXT PRIMARY KEY,
    author_id TEXT NOT NULL,
    author_type TEXT NOT NULL,
    text TEXT NOT NULL,
    status TEXT NOT NULL,
    reported INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS reach_outs (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    target_id TEXT NOT NULL,
    query_id TEXT NOT NULL,
    type TEXT NOT NULL,
    status TEXT NOT NULL,
    user_info TEXT NOT NULL DEFAULT '',
    "end" INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS ix_reach_outs_pair ON reach_outs (query_id, target_id);
CREATE INDEX IF NOT EXISTS ix_reach_outs_target ON reach_outs (target_id, status);
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    jid TEXT NOT NULL,
    by TEXT NOT NULL,
    type TEXT NOT NULL,
    content TEXT NOT NULL,
    has_media INTEGER NOT NULL DEFAULT 0,
    media_type TEXT,
    timestamp REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_messages_jid ON messages (jid, timestamp);
"""

_USER_COLUMNS = ("id", "jid", "phone", "name", "type", "current_reach_out", "metadata", "profile", "created_at")
_REACH_OUT_COLUMNS = ("id", "target_id", "query_id", "type", "status", "user_info", "end", "created_at")


def _dict_row(cursor, row):
    return {col[0]: row[i] for i, col in enumerate(cursor.description)}


def _user_from_row(row: dict) -> User:
    row = dict(row)
    row["metadata"] = json.loads(row["metadata"]) if row.get("metadata") else None
    return User.model_validate(row)


def _reach_out_from_row(row: dict) -> ReachOut:
    row = {k: v for k, v in row.items() if k != "seq"}
    row["end"] = bool(row["end"])
    return ReachOut.model_validate(row)


def _query_from_row(row: dict) -> Query:
    row = dict(row)
    row["reported"] = bool(row["reported"])
    return Query.model_validate(row)


class DocumentStore:
    """Durable collections for users, queries, reach-outs and the message log."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = _dict_row
        try:
            yield conn
        finally:
            conn.close()

    # --- users ---

    def find_user_by_jid(self, jid: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE jid = ?", (jid,)).fetchone()
        return _user_from_row(row) if row else None

    def find_user_by_id(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _user_from_row(row) if row else None

    def insert_user(self, user: User) -> User:
        """Insert a user, returning the stored row if the jid already exists."""
        data = user.model_dump(mode="json")
        data["metadata"] = json.dumps(data["metadata"]) if data["metadata"] is not None else None
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR IGNORE INTO users ({', '.join(_USER_COLUMNS)}) "
                f"VALUES ({', '.join('?' * len(_USER_COLUMNS))})",
                tuple(data[c] for c in _USER_COLUMNS),
            )
            conn.commit()
            row = conn.execute("SELECT * FROM users WHERE jid = ?", (user.jid,)).fetchone()
        return _user_from_row(row)

    def replace_user(self, user: User) -> Optional[User]:
        data = user.model_dump(mode="json")
        data["metadata"] = json.dumps(data["metadata"]) if data["metadata"] is not None else None
        assignments = ", ".join(f"{c} = ?" for c in _USER_COLUMNS if c != "id")
        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE users SET {assignments} WHERE id = ?",
                tuple(data[c] for c in _USER_COLUMNS if c != "id") + (user.id,),
            )
            conn.commit()
        if cur.rowcount == 0:
            return None
        return user

    def find_users_by_type(self, user_type: UserType, unengaged_only: bool = True) -> list[User]:
        sql = "SELECT * FROM users WHERE type = ?"
        if unengaged_only:
            sql += " AND current_reach_out IS NULL"
        with self._connect() as conn:
            rows = conn.execute(sql + " ORDER BY created_at", (user_type.value,)).fetchall()
        return [_user_from_row(r) for r in rows]

    # --- messages ---

    def insert_message(self, message: Message) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                """INSERT INTO messages (jid, by, type, content, has_media, media_type, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    message.jid,
                    message.by.value,
                    message.type.value,
                    message.content,
                    int(message.has_media),
                    message.media_type,
                    message.timestamp,
                ),
            )
            conn.commit()
            return cur.lastrowid

    def recent_messages(self, jid: str, limit: int) -> list[Message]:
        """Return the most recent messages for a jid, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE jid = ? ORDER BY timestamp DESC, id DESC LIMIT ?",
                (jid, limit),
            ).fetchall()
        result = []
        for row in rows:
            row.pop("id")
            row["has_media"] = bool(row["has_media"])
            result.append(Message.model_validate(row))
        return result

    # --- queries ---

    def insert_query(self, query: Query) -> Query:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO queries (id, author_id, author_type, text, status, reported, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    query.id, query.author_id, query.author_type.value, query.text,
                    query.status.value, int(query.reported), query.created_at,
                ),
            )
            conn.commit()
        return query

    def get_query(self, query_id: str) -> Optional[Query]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM queries WHERE id = ?", (query_id,)).fetchone()
        return _query_from_row(row) if row else None

    def update_query(self, query_id: str, **fields: Any) -> Optional[Query]:
        fields = {k: (v.value if hasattr(v, "value") else v) for k, v in fields.items()}
        if "reported" in fields:
            fields["reported"] = int(fields["reported"])
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self._connect() as conn:
            conn.execute(f"UPDATE queries SET {assignments} WHERE id = ?", (*fields.values(), query_id))
            conn.commit()
        return self.get_query(query_id)

    def find_queries_by_author(self, author_id: str, status: Optional[str] = None,
                               reported: Optional[bool] = None) -> list[Query]:
        sql = "SELECT * FROM queries WHERE author_id = ?"
        params: list[Any] = [author_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status)
        if reported is not None:
            sql += " AND reported = ?"
            params.append(int(reported))
        with self._connect() as conn:
            rows = conn.execute(sql + " ORDER BY created_at", params).fetchall()
        return [_query_from_row(r) for r in rows]

    # --- reach-outs ---

    def insert_reach_out(self, reach_out: ReachOut) -> tuple[ReachOut, bool]:
        """Insert a reach-out keyed by (query_id, target_id).

        Returns the stored record and whether it was newly created.
        """
        data = reach_out.model_dump(mode="json")
        data["end"] = int(data["end"])
        with self._connect() as conn:
            cur = conn.execute(
                f"""INSERT OR IGNORE INTO reach_outs ({', '.join(f'"{c}"' for c in _REACH_OUT_COLUMNS)})
                    VALUES ({', '.join('?' * len(_REACH_OUT_COLUMNS))})""",
                tuple(data[c] for c in _REACH_OUT_COLUMNS),
            )
            conn.commit()
            created = cur.rowcount == 1
            row = conn.execute(
                "SELECT * FROM reach_outs WHERE query_id = ? AND target_id = ?",
                (reach_out.query_id, reach_out.target_id),
            ).fetchone()
        return _reach_out_from_row(row), created

    def get_reach_out(self, reach_out_id: str) -> Optional[ReachOut]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM reach_outs WHERE id = ?", (reach_out_id,)).fetchone()
        return _reach_out_from_row(row) if row else None

    def find_reach_out(self, query_id: str, target_id: str) -> Optional[ReachOut]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM reach_outs WHERE query_id = ? AND target_id = ?",
                (query_id, target_id),
            ).fetchone()
        return _reach_out_from_row(row) if row else None

    def find_reach_outs_for_target(self, target_id: str, status: str) -> list[ReachOut]:
        """Reach-outs for a target with the given status, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM reach_outs WHERE target_id = ? AND status = ? ORDER BY created_at, seq",
                (target_id, status),
            ).fetchall()
        return [_reach_out_from_row(r) for r in rows]

    def find_reach_outs_for_query(self, query_id: str, status: Optional[str] = None) -> list[ReachOut]:
        sql = "SELECT * FROM reach_outs WHERE query_id = ?"
        params: list[Any] = [query_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status)
        with self._connect() as conn:
            rows = conn.execute(sql + " ORDER BY created_at, seq", params).fetchall()
        return [_reach_out_from_row(r) for r in rows]

    def update_reach_out(self, reach_out_id: str, **fields: Any) -> Optional[ReachOut]:
        fields = {k: (v.value if hasattr(v, "value") else v) for k, v in fields.items()}
        if "end" in fields:
            fields["end"] = int(fields["end"])
        assignments = ", ".join(f'"{k}" = ?' for k in fields)
        with self._connect() as conn:
            conn.execute(f"UPDATE reach_outs SET {assignments} WHERE id = ?", (*fields.values(), reach_out_id))
            conn.commit()
        return self.get_reach_out(reach_out_id)
