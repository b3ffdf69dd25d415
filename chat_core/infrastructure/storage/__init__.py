"""消息存储后端。

- sqlite_store: 默认后端，单表 + 事务。
- json_store: 每会话一个 JSON Lines 文件，无需数据库。
"""

from pathlib import Path
from typing import Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import MessageStore
from chat_core.infrastructure.storage.json_store import JsonlMessageStore
from chat_core.infrastructure.storage.sqlite_store import SqliteMessageStore


def create_store(backend: Optional[str] = None, root: str | Path | None = None) -> MessageStore:
    """根据配置创建存储实例，默认取 settings.storage_backend。"""

    name = (backend or settings.storage_backend).lower()
    base = Path(root or settings.storage_root)
    if name == "jsonl":
        return JsonlMessageStore(root=base)
    if name == "sqlite":
        return SqliteMessageStore(db_path=base / "chat_history.db")
    raise ValueError(f"Unknown storage backend: {name!r}")
