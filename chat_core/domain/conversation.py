from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol, Sequence, Tuple

from .exceptions import InvalidArgument
from .models import Role, ROLES


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


@dataclass(frozen=True)
class Turn:
    """会话中的一条消息，写入后不可变。

    排序键为 (created_at, seq)：seq 是存储分配的插入序号，
    用于在时间戳相同的情况下保持写入顺序。
    """

    session_id: str
    role: Role
    content: str
    created_at: datetime
    seq: int = 0

    @property
    def timestamp(self) -> str:
        return format_timestamp(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}


class MessageStore(Protocol):
    """按会话划分的只追加消息日志。"""

    def initialize(self) -> None:
        ...

    def append(self, session_id: str, role: Role, content: str) -> Turn:
        ...

    def extend(self, session_id: str, entries: Sequence[Tuple[Role, str]]) -> List[Turn]:
        ...

    def list(self, session_id: str) -> List[Turn]:
        ...

    def clear(self, session_id: str) -> None:
        ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """定宽 ISO-8601 UTC 字符串，字典序与时间序一致。"""
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).astimezone(timezone.utc)


def require_session_id(session_id: str) -> str:
    if not isinstance(session_id, str) or not session_id:
        raise InvalidArgument(code="MISSING_SESSION_ID", message="Missing sessionId")
    return session_id


def validate_entry(role: str, content: str) -> None:
    """校验单条待写入消息，供各存储后端共用。"""
    if role not in ROLES:
        raise InvalidArgument(code="INVALID_ROLE", message=f"Unsupported role: {role!r}")
    if not isinstance(content, str) or not content:
        raise InvalidArgument(code="MISSING_CONTENT", message="Message content must not be empty")

