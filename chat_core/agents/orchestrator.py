"""对话编排核心模块。

一次 respond() 调用依次经过：
    validating -> assembling -> inferring -> persisting -> done

- validating 失败：抛 InvalidArgument，不触碰存储。
- inferring 失败：抛 UpstreamModelError，不持久化任何消息（不留下没有回复的用户消息）。
- persisting 失败：记录 warning 并回调 on_persist_error，仍返回助手回复
  （该路径上回复的可用性优先于历史的持久性）。

用户消息与助手回复通过一次 store.extend() 成对写入，要么都写入要么都不写入。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import uuid4
import logging
import time

from chat_core.agents.assembler import ConversationAssembler, HintItem, to_chat_messages
from chat_core.config.settings import settings
from chat_core.domain.conversation import MessageStore, Turn, require_session_id, utcnow
from chat_core.domain.exceptions import BusinessError, InvalidArgument, StorageError, UpstreamModelError
from chat_core.domain.models import ChatRequest, ChatResult
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import ProviderClient
from chat_core.providers.registry import CHAT_MAX_TOKENS, CHAT_TEMPERATURE


EMPTY_REPLY_FALLBACK = "No response generated"

PersistErrorHook = Callable[[str, StorageError], None]


class ChatPhase(str, Enum):
    VALIDATING = "validating"
    ASSEMBLING = "assembling"
    INFERRING = "inferring"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ChatConfig:
    provider: str
    model: str
    max_tokens: int = CHAT_MAX_TOKENS
    temperature: float = CHAT_TEMPERATURE


class ChatOrchestrator:
    def __init__(
        self,
        store: MessageStore,
        provider_client: ProviderClient,
        assembler: Optional[ConversationAssembler] = None,
        config: Optional[ChatConfig] = None,
        on_persist_error: Optional[PersistErrorHook] = None,
    ):
        self._store = store
        self._provider_client = provider_client
        self._assembler = assembler or ConversationAssembler(store)
        self._config = config or ChatConfig(
            provider=provider_client.name,
            model=settings.default_model,
            max_tokens=settings.max_output_tokens,
            temperature=settings.temperature,
        )
        self._on_persist_error = on_persist_error

    def respond(
        self,
        session_id: str,
        user_message: str,
        client_history_hint: Optional[Iterable[HintItem]] = None,
    ) -> Turn:
        """处理一条用户消息并返回助手回复。

        Args:
            session_id: 会话 ID（客户端自选的不透明字符串）
            user_message: 用户输入
            client_history_hint: 客户端本地保存的历史，仅在存储不可用或为空时使用

        Returns:
            助手回复的 Turn

        Raises:
            InvalidArgument: session_id 或 user_message 为空
            UpstreamModelError: 模型调用失败
        """
        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "session_id": session_id,
        }

        try:
            require_session_id(session_id)
            if not isinstance(user_message, str) or not user_message.strip():
                raise InvalidArgument(code="MISSING_MESSAGE", message="Missing message")
        except InvalidArgument as e:
            self._log(logging.INFO, "Rejected chat request", log_ctx, phase=ChatPhase.FAILED.value, error=e.message)
            raise

        self._log(logging.DEBUG, "Assembling context", log_ctx, phase=ChatPhase.ASSEMBLING.value)
        turns = self._assembler.assemble(session_id, client_history_hint, user_message)

        req = ChatRequest(
            provider=self._config.provider,
            model=self._config.model,
            messages=to_chat_messages(turns),
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
        )
        self._log(
            logging.INFO,
            "Calling provider",
            log_ctx,
            phase=ChatPhase.INFERRING.value,
            provider=self._config.provider,
            model=self._config.model,
            message_count=len(turns),
        )
        result = self._infer(req, log_ctx)
        reply = result.text
        if not reply.strip():
            reply = EMPTY_REPLY_FALLBACK
        if result.usage:
            self._log(
                logging.INFO,
                "Token usage",
                log_ctx,
                prompt_tokens=result.usage.prompt_tokens,
                completion_tokens=result.usage.completion_tokens,
                total_tokens=result.usage.total_tokens,
            )

        assistant_turn = self._persist(session_id, user_message, reply, log_ctx)

        self._log(
            logging.INFO,
            "Completed chat request",
            log_ctx,
            phase=ChatPhase.DONE.value,
            elapsed_seconds=round(time.time() - start_time, 2),
        )
        return assistant_turn

    def history(self, session_id: str) -> List[Turn]:
        """读取会话历史；存储故障时降级为空列表。"""
        require_session_id(session_id)
        try:
            return self._store.list(session_id)
        except StorageError as e:
            self._log(
                logging.WARNING,
                "History read failed, returning empty history",
                {"session_id": session_id},
                code=e.code,
                error=e.message,
            )
            return []

    def clear(self, session_id: str) -> None:
        require_session_id(session_id)
        self._store.clear(session_id)
        self._log(logging.INFO, "Cleared history", {"session_id": session_id})

    def _infer(self, req: ChatRequest, log_ctx: Dict[str, Any]) -> ChatResult:
        try:
            return self._provider_client.chat(req)
        except UpstreamModelError as e:
            self._log(logging.ERROR, "Provider call failed", log_ctx, phase=ChatPhase.FAILED.value, code=e.code, error=e.message)
            raise
        except BusinessError as e:
            # 例如 Provider 密钥缺失：对调用方同样表现为模型不可用
            self._log(logging.ERROR, "Provider call failed", log_ctx, phase=ChatPhase.FAILED.value, code=e.code, error=e.message)
            raise UpstreamModelError(code=e.code, message=e.message, **e.extra) from e
        except Exception as e:
            self._log(logging.ERROR, "Provider call failed", log_ctx, phase=ChatPhase.FAILED.value, error=str(e))
            raise UpstreamModelError(message=str(e) or type(e).__name__) from e

    def _persist(self, session_id: str, user_message: str, reply: str, log_ctx: Dict[str, Any]) -> Turn:
        try:
            _, assistant_turn = self._store.extend(
                session_id,
                [("user", user_message), ("assistant", reply)],
            )
        except StorageError as e:
            self._log(
                logging.WARNING,
                "Persisting turns failed, reply returned without saving",
                log_ctx,
                phase=ChatPhase.PERSISTING.value,
                code=e.code,
                error=e.message,
            )
            if self._on_persist_error is not None:
                try:
                    self._on_persist_error(session_id, e)
                except Exception as hook_err:
                    self._log(
                        logging.WARNING,
                        "on_persist_error hook raised",
                        log_ctx,
                        phase=ChatPhase.PERSISTING.value,
                        error=str(hook_err),
                    )
            return Turn(session_id=session_id, role="assistant", content=reply, created_at=utcnow())
        self._log(
            logging.INFO,
            "Stored turns",
            log_ctx,
            phase=ChatPhase.PERSISTING.value,
            assistant_seq=assistant_turn.seq,
        )
        return assistant_turn

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
