"""Cloudflare Workers AI Provider 适配器。

调用托管推理端点：
- URL: {base_url}/{account_id}/ai/run/{model}
- 认证: Authorization: Bearer <api_token>

响应体形如 {"success": true, "result": {"response": "...", "usage": {...}}}，
部分模型直接在顶层返回 response 字段，两种都兼容。
"""

from typing import Any, Dict

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ApiError, NetworkError, ValidationError
from chat_core.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from chat_core.providers.base import read_json, resolve_model
from chat_core.providers.registry import WORKERS_AI_CONFIG, ModelConfig


class WorkersAIClient:
    """Workers AI 客户端实现。"""

    name = "workers-ai"

    def __init__(self, cfg=settings):
        self._settings = cfg

    def chat(self, req: ChatRequest) -> ChatResult:
        account_id = getattr(self._settings, "workers_ai_account_id", None)
        token = getattr(self._settings, "workers_ai_api_token", None)
        if not account_id or not token:
            raise ValidationError(
                code="MISSING_API_KEY",
                message="WORKERS_AI_ACCOUNT_ID / WORKERS_AI_API_TOKEN not set",
            )
        model_cfg = resolve_model(WORKERS_AI_CONFIG, req.model)
        payload = self._build_payload(req, model_cfg)
        base = getattr(self._settings, "workers_ai_base_url", None) or WORKERS_AI_CONFIG.base_url
        url = f"{base}/{account_id}/ai/run/{model_cfg.provider_model}"
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    url,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        data = read_json(resp, self.name)
        if data.get("success") is False:
            errors = data.get("errors") or []
            message = "; ".join(str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors)
            raise ApiError(code="API_ERROR", message=message or "Workers AI request failed", provider=self.name)
        return self._parse_response(data, req)

    @staticmethod
    def _build_payload(req: ChatRequest, model_cfg: ModelConfig) -> Dict[str, Any]:
        return {
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
            "stream": False,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
        }

    def _parse_response(self, data: Dict[str, Any], req: ChatRequest) -> ChatResult:
        result = data.get("result")
        if not isinstance(result, dict):
            result = data
        content = result.get("response") or ""
        usage = None
        usage_raw = result.get("usage") or {}
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatResult(
            provider=self.name,
            model=req.model,
            choices=[ChatChoice(index=0, message=ChatMessage(role="assistant", content=content), finish_reason="stop")],
            usage=usage,
            raw=data,
        )
