"""Orchestrator 与 Provider 之间交换的请求/结果结构。

Turn 是存储层的记录；这里的 ChatMessage 只描述发给模型的一条消息，
不带时间戳和会话信息。各 Provider 负责在自己的 JSON 格式与这些结构之间转换。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


Role = Literal["system", "user", "assistant"]

ROLES = ("system", "user", "assistant")


@dataclass
class ChatMessage:
    role: Role
    content: str
    # 仅用于日志，不会发给 Provider
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatRequest:
    """一次推理请求。model 是逻辑模型名，由 registry 解析为厂商模型。"""

    provider: str
    model: str
    messages: List[ChatMessage]
    temperature: float = 0.7
    max_tokens: Optional[int] = None


@dataclass
class ChatUsage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    @property
    def text(self) -> str:
        """第一个候选的文本；没有候选时为空串，由调用方决定兜底文案。"""
        if not self.choices:
            return ""
        return self.choices[0].message.content or ""
