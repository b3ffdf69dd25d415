"""对话上下文组装。

组装策略：
1. 以存储中的 list(session_id) 为准；
2. 仅当存储不可用（StorageError）或该会话为空时，才退回到客户端传来的历史；
3. 可选地在最前面补一条 system 提示词；
4. 裁剪到最近 max_context_messages 条；
5. 新的用户消息永远作为最后一条，role = "user"。
"""

from typing import Any, Iterable, List, Mapping, Optional, Union

from chat_core.config.settings import settings
from chat_core.domain.conversation import MessageStore, Turn, utcnow
from chat_core.domain.exceptions import StorageError
from chat_core.domain.models import ROLES, ChatMessage
from chat_core.infrastructure.logging.logger import logger


HintItem = Union[Mapping[str, Any], ChatMessage, Turn]


class ConversationAssembler:
    def __init__(
        self,
        store: MessageStore,
        system_prompt: Optional[str] = None,
        max_context_messages: Optional[int] = None,
    ):
        self._store = store
        self._system_prompt = system_prompt if system_prompt is not None else settings.system_prompt
        self._max_context = max_context_messages or settings.max_context_messages

    def assemble(
        self,
        session_id: str,
        client_history_hint: Optional[Iterable[HintItem]],
        new_user_message: str,
    ) -> List[Turn]:
        """返回发给模型的有序 Turn 列表，最后一条为新的用户消息。"""
        source = "store"
        try:
            history = self._store.list(session_id)
        except StorageError as e:
            logger.warning(
                "History unavailable, using client hint",
                extra={"extra": {"session_id": session_id, "error": e.message}},
            )
            history = []
            source = "hint"
        if not history:
            hint_turns = self._turns_from_hint(session_id, client_history_hint)
            if hint_turns:
                history = hint_turns
                source = "hint"

        if len(history) > self._max_context:
            trimmed = len(history) - self._max_context
            history = history[-self._max_context:]
            logger.info(
                "Truncated context",
                extra={"extra": {"session_id": session_id, "max_context": self._max_context, "trimmed": trimmed}},
            )

        now = utcnow()
        turns: List[Turn] = []
        if self._system_prompt and not (history and history[0].role == "system"):
            turns.append(Turn(session_id=session_id, role="system", content=self._system_prompt, created_at=now))
        turns.extend(history)
        turns.append(Turn(session_id=session_id, role="user", content=new_user_message, created_at=now))
        logger.debug(
            "Assembled conversation",
            extra={"extra": {"session_id": session_id, "source": source, "turns": len(turns)}},
        )
        return turns

    def _turns_from_hint(self, session_id: str, hint: Optional[Iterable[HintItem]]) -> List[Turn]:
        if not hint:
            return []
        now = utcnow()
        turns: List[Turn] = []
        dropped = 0
        for seq, item in enumerate(hint):
            role, content = _role_and_content(item)
            if role not in ROLES or not isinstance(content, str) or not content.strip():
                dropped += 1
                continue
            turns.append(Turn(session_id=session_id, role=role, content=content, created_at=now, seq=seq))
        if dropped:
            logger.info(
                "Dropped invalid hint entries",
                extra={"extra": {"session_id": session_id, "dropped": dropped}},
            )
        return turns


def _role_and_content(item: HintItem):
    if isinstance(item, (ChatMessage, Turn)):
        return item.role, item.content
    if isinstance(item, Mapping):
        return item.get("role"), item.get("content")
    return None, None


def to_chat_messages(turns: Iterable[Turn]) -> List[ChatMessage]:
    return [ChatMessage(role=t.role, content=t.content) for t in turns]

