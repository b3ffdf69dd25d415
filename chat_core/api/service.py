"""对外 API 服务模块。

提供简化的函数接口供上层应用（HTTP 路由、脚本）调用，返回可直接序列化为 JSON 的字典。
"""

from typing import Any, Dict, Iterable, List, Optional

from chat_core.agents.orchestrator import ChatOrchestrator
from chat_core.domain.conversation import MessageStore
from chat_core.domain.exceptions import StorageError
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage import create_store
from chat_core.providers import create_provider


_store: Optional[MessageStore] = None
_orchestrator: Optional[ChatOrchestrator] = None


def get_default_orchestrator() -> ChatOrchestrator:
    """获取默认的 ChatOrchestrator 实例（进程内单例）。"""
    global _store, _orchestrator
    if _store is None:
        _store = create_store()
        # 幂等建表；失败时不阻塞启动，后续每次访问会再懒初始化
        try:
            _store.initialize()
        except StorageError as e:
            logger.warning("Store initialization deferred", extra={"extra": {"error": e.message}})
    if _orchestrator is None:
        _orchestrator = ChatOrchestrator(store=_store, provider_client=create_provider())
    return _orchestrator


def set_default_orchestrator(orchestrator: Optional[ChatOrchestrator]) -> None:
    """替换默认实例（测试或嵌入场景使用），传 None 则在下次调用时重建。"""
    global _store, _orchestrator
    _orchestrator = orchestrator
    if orchestrator is None:
        _store = None


def run_chat(
    session_id: str,
    message: str,
    conversation_history: Optional[Iterable[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """运行一轮对话。

    Args:
        session_id: 会话ID
        message: 用户输入内容
        conversation_history: 客户端本地历史（可选，仅作为存储不可用时的兜底）

    Returns:
        助手消息字典 {role, content, timestamp}

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    orchestrator = get_default_orchestrator()
    turn = orchestrator.respond(session_id, message, conversation_history)
    return turn.to_dict()


def get_history(session_id: str) -> List[Dict[str, Any]]:
    """获取会话的所有消息（按时间顺序）。"""
    orchestrator = get_default_orchestrator()
    return [t.to_dict() for t in orchestrator.history(session_id)]


def clear_history(session_id: str) -> None:
    """删除会话的全部消息，幂等。"""
    get_default_orchestrator().clear(session_id)
