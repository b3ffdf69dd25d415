"""SQLite 消息存储。

一张 messages 表，每条消息一行，按 (session_id, timestamp, id) 建索引：
访问模式只有“追加一条 / 按序读全部 / 删除全部”三种。

- 建表使用 CREATE ... IF NOT EXISTS，多个实例同时启动时可以安全竞争。
- 每次操作使用独立连接，不在请求之间共享连接或内存状态。
- extend 在单个 IMMEDIATE 事务内完成，多条消息要么全部可见要么都不可见。
"""

import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Iterator, List, Sequence, Tuple

from chat_core.config.settings import settings
from chat_core.domain.conversation import (
    MessageStore,
    Turn,
    format_timestamp,
    parse_timestamp,
    require_session_id,
    utcnow,
    validate_entry,
)
from chat_core.domain.exceptions import StorageError
from chat_core.domain.models import Role
from chat_core.infrastructure.logging.logger import logger


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        timestamp TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_session ON messages (session_id, timestamp, id)",
)


class SqliteMessageStore(MessageStore):
    def __init__(self, db_path: str | Path | None = None, timeout: float = 30.0):
        if db_path is None:
            db_path = Path(settings.storage_root) / "chat_history.db"
        self.db_path = Path(db_path).resolve()
        self._timeout = timeout

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        # isolation_level=None: 事务边界由下面的 BEGIN/COMMIT 显式控制
        conn = sqlite3.connect(str(self.db_path), timeout=self._timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA synchronous=NORMAL")
            yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """幂等建表，可在启动时调用，也会在每次访问前懒调用。"""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                for ddl in SCHEMA:
                    conn.execute(ddl)
        except (OSError, sqlite3.Error) as e:
            raise StorageError(code="STORE_INIT_ERROR", message=str(e))

    def append(self, session_id: str, role: Role, content: str) -> Turn:
        return self.extend(session_id, [(role, content)])[0]

    def extend(self, session_id: str, entries: Sequence[Tuple[Role, str]]) -> List[Turn]:
        require_session_id(session_id)
        for role, content in entries:
            validate_entry(role, content)
        if not entries:
            return []
        self.initialize()
        turns: List[Turn] = []
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        "SELECT MAX(timestamp) AS last FROM messages WHERE session_id = ?",
                        (session_id,),
                    ).fetchone()
                    now = utcnow()
                    if row["last"]:
                        last = parse_timestamp(row["last"])
                        if last > now:
                            now = last
                    stamp = format_timestamp(now)
                    for role, content in entries:
                        cur = conn.execute(
                            "INSERT INTO messages (session_id, role, content, timestamp) VALUES (?, ?, ?, ?)",
                            (session_id, role, content, stamp),
                        )
                        turns.append(
                            Turn(session_id=session_id, role=role, content=content, created_at=now, seq=cur.lastrowid)
                        )
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as e:
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e), session_id=session_id)
        logger.debug(
            "Appended turns",
            extra={"extra": {"session_id": session_id, "count": len(turns)}},
        )
        return turns

    def list(self, session_id: str) -> List[Turn]:
        if not session_id:
            return []
        self.initialize()
        try:
            with self._connect() as conn, closing(
                conn.execute(
                    "SELECT id, role, content, timestamp FROM messages "
                    "WHERE session_id = ? ORDER BY timestamp ASC, id ASC",
                    (session_id,),
                )
            ) as cur:
                rows = cur.fetchall()
        except sqlite3.Error as e:
            raise StorageError(code="STORE_READ_ERROR", message=str(e), session_id=session_id)
        return [
            Turn(
                session_id=session_id,
                role=row["role"],
                content=row["content"],
                created_at=parse_timestamp(row["timestamp"]),
                seq=row["id"],
            )
            for row in rows
        ]

    def clear(self, session_id: str) -> None:
        if not session_id:
            return
        self.initialize()
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        except sqlite3.Error as e:
            raise StorageError(code="STORE_DELETE_ERROR", message=str(e), session_id=session_id)
