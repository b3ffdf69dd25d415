"""Provider 协议与各客户端共用的 HTTP 响应处理。"""

from typing import Any, Dict, Protocol

import httpx

from chat_core.domain.exceptions import ApiError, RateLimitError, ValidationError
from chat_core.domain.models import ChatRequest, ChatResult
from chat_core.providers.registry import ModelConfig, ProviderConfig


class ProviderClient(Protocol):
    name: str

    def chat(self, req: ChatRequest) -> ChatResult:
        """一次非流式调用；失败时抛 UpstreamModelError 的子类。"""
        ...


def resolve_model(provider_cfg: ProviderConfig, logical_name: str) -> ModelConfig:
    try:
        return provider_cfg.models[logical_name]
    except KeyError:
        raise ValidationError(
            code="UNKNOWN_MODEL",
            message=f"Model {logical_name!r} is not configured for {provider_cfg.name}",
        )


def read_json(resp: httpx.Response, provider: str) -> Dict[str, Any]:
    """把上游 HTTP 响应转成 JSON，非成功状态映射为对应的业务异常。

    429 单独映射为 RateLimitError，便于调用方区分限流与其他失败；
    其余 >=400 的状态码保留在 upstream_status 中。
    """
    if resp.status_code == 429:
        raise RateLimitError(code="RATE_LIMIT", message=f"{provider} rate limit", provider=provider)
    if resp.status_code >= 400:
        raise ApiError(
            code="API_ERROR",
            message=resp.text,
            provider=provider,
            upstream_status=resp.status_code,
        )
    try:
        data = resp.json()
    except ValueError as e:
        raise ApiError(code="API_ERROR", message=f"Invalid JSON from {provider}: {e}", provider=provider)
    if not isinstance(data, dict):
        raise ApiError(code="API_ERROR", message=f"Unexpected payload from {provider}", provider=provider)
    return data
