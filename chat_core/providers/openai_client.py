"""OpenAI 兼容 Provider 适配器（Kimi / GLM 等）。

这些厂商都使用 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

本实现只依赖公共字段：model/messages/temperature/max_tokens/stream。
"""

from typing import Any, Dict

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import NetworkError, ValidationError
from chat_core.domain.models import (
    ChatChoice,
    ChatMessage,
    ChatRequest,
    ChatResult,
    ChatUsage,
)
from chat_core.providers.base import read_json, resolve_model
from chat_core.providers.registry import ModelConfig, ProviderConfig


class OpenAICompatibleClient:
    """OpenAI 兼容协议的客户端，具体厂商由 ProviderConfig 决定。"""

    def __init__(self, provider_cfg: ProviderConfig, cfg=settings):
        self._provider = provider_cfg
        self._settings = cfg
        self.name = provider_cfg.name

    def chat(self, req: ChatRequest) -> ChatResult:
        api_key = getattr(self._settings, self._provider.api_key_setting, None)
        if not api_key:
            raise ValidationError(
                code="MISSING_API_KEY",
                message=f"{self._provider.api_key_setting.upper()} not set",
            )
        model_cfg = resolve_model(self._provider, req.model)
        payload = self._build_payload(req, model_cfg)
        base = getattr(self._settings, self._provider.base_url_setting, None) or self._provider.base_url
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{base}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        return self._parse_response(read_json(resp, self.name), req)

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> dict:
        return {
            "model": model_cfg.provider_model,
            "messages": [self._message_to_payload(m) for m in req.messages],
            "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "stream": False,
        }

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        choices: list[ChatChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            msg = ch.get("message") or {}
            choices.append(
                ChatChoice(
                    index=i,
                    message=ChatMessage(role="assistant", content=msg.get("content") or ""),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage") or {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        return {"role": message.role, "content": message.content}
