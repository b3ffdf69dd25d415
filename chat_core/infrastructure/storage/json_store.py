import fcntl
import hashlib
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

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
from chat_core.domain.exceptions import BusinessError, StorageError
from chat_core.domain.models import Role
from chat_core.infrastructure.logging.logger import logger


class JsonlMessageStore(MessageStore):
    """每个会话一个 JSON Lines 文件的只追加日志。

    文件名取 session_id 的 SHA-256，客户端传入的任意字符串不会进入文件系统路径。
    一次 append/extend 只做一次 O_APPEND 写入，多行要么全部落盘要么都不落盘。
    读尾部、取时间戳、写入三步在文件排他锁（flock）内完成，并发写入者按加锁顺序落盘。
    文件中的行序即提交顺序，行号即插入序号，list 按行序返回。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._sessions_root = self._root / "sessions"

    def initialize(self) -> None:
        try:
            self._sessions_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
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
        path = self._session_path(session_id)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
                last_ts, seq = self._tail(path)
                now = utcnow()
                if last_ts is not None and last_ts > now:
                    now = last_ts
                turns: List[Turn] = []
                lines: List[str] = []
                for offset, (role, content) in enumerate(entries):
                    turn = Turn(session_id=session_id, role=role, content=content, created_at=now, seq=seq + offset)
                    turns.append(turn)
                    lines.append(json.dumps(self._to_payload(turn), ensure_ascii=False) + "\n")
                os.write(fd, "".join(lines).encode("utf-8"))
                os.fsync(fd)
            finally:
                # close 会释放 flock
                os.close(fd)
        except BusinessError:
            raise
        except (OSError, ValueError) as e:
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e), session_id=session_id)
        return turns

    def list(self, session_id: str) -> List[Turn]:
        if not session_id:
            # 空 session_id 不可能被写入过
            return []
        path = self._session_path(session_id)
        items: List[Turn] = []
        try:
            if not path.exists():
                return items
            lines = self._read_lines(path)
        except OSError as e:
            raise StorageError(code="STORE_READ_ERROR", message=str(e), session_id=session_id)
        for lineno, line in enumerate(lines):
            if not line.strip():
                continue
            try:
                # 非法 UTF-8 在 json.loads 中表现为 UnicodeDecodeError（ValueError 子类）
                items.append(self._to_turn(json.loads(line), lineno))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(
                    "Skipping malformed history line",
                    extra={"extra": {"path": str(path), "line": lineno, "error": str(e)}},
                )
        return items

    def clear(self, session_id: str) -> None:
        if not session_id:
            return
        try:
            self._session_path(session_id).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(code="STORE_DELETE_ERROR", message=str(e), session_id=session_id)

    def _session_path(self, session_id: str) -> Path:
        digest = hashlib.sha256(session_id.encode("utf-8")).hexdigest()
        return self._sessions_root / f"{digest}.jsonl"

    def _tail(self, path: Path) -> Tuple[Optional[datetime], int]:
        """返回 (最后一条记录的时间戳, 现有行数)，用于保证时间戳单调不减。"""
        if not path.exists():
            return None, 0
        lines = self._read_lines(path)
        for line in reversed(lines):
            try:
                return parse_timestamp(json.loads(line)["timestamp"]), len(lines)
            except (ValueError, KeyError, TypeError):
                continue
        return None, len(lines)

    @staticmethod
    def _read_lines(path: Path) -> List[bytes]:
        """按字节读取并按 \\n 切行；逐行解码，坏行不影响其他行。"""
        lines = path.read_bytes().split(b"\n")
        if lines and not lines[-1]:
            lines.pop()
        return lines

    def _to_payload(self, turn: Turn) -> Dict[str, Any]:
        return {
            "session_id": turn.session_id,
            "role": turn.role,
            "content": turn.content,
            "timestamp": format_timestamp(turn.created_at),
        }

    def _to_turn(self, data: Dict[str, Any], lineno: int) -> Turn:
        return Turn(
            session_id=data["session_id"],
            role=data["role"],
            content=data["content"],
            created_at=parse_timestamp(data["timestamp"]),
            seq=lineno,
        )
