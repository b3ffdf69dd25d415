"""chat_core 顶层包。

一个最小的持久化对话历史服务：按 sessionId 分组的只追加消息存储、
上下文组装、调用外部大模型并成对写入用户/助手消息的编排器，
以及对应的 HTTP 接口。
"""

from chat_core.api.service import clear_history, get_history, run_chat

__all__ = ["run_chat", "get_history", "clear_history"]
