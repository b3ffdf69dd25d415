"""Provider 与模型配置。

对话服务只使用一个逻辑模型名 "chat"，由各 Provider 映射为自己的模型 ID。
切换厂商或升级模型只需要改这里，orchestrator 与路由层不感知。
"""

from dataclasses import dataclass
from typing import Dict, Mapping

# 生成上限固定为常量，不按上下文长度动态推导
CHAT_MAX_TOKENS = 1024
CHAT_TEMPERATURE = 0.7


@dataclass
class ModelConfig:
    logical_name: str
    provider_model: str
    max_tokens: int = CHAT_MAX_TOKENS
    default_temperature: float = CHAT_TEMPERATURE


@dataclass
class ProviderConfig:
    """单个 Provider 的端点与模型表。

    api_key_setting / base_url_setting 是 Settings 上的字段名，
    客户端在调用时再去取值，方便测试时替换 settings。
    """

    name: str
    base_url: str
    models: Dict[str, ModelConfig]
    api_key_setting: str = ""
    base_url_setting: str = ""


def _chat_only(provider_model: str) -> Dict[str, ModelConfig]:
    return {"chat": ModelConfig(logical_name="chat", provider_model=provider_model)}


WORKERS_AI_CONFIG = ProviderConfig(
    name="workers-ai",
    base_url="https://api.cloudflare.com/client/v4/accounts",
    models=_chat_only("@cf/meta/llama-3.3-70b-instruct-fp8-fast"),
    api_key_setting="workers_ai_api_token",
    base_url_setting="workers_ai_base_url",
)

KIMI_CONFIG = ProviderConfig(
    name="kimi",
    base_url="https://api.moonshot.cn/v1",
    models=_chat_only("kimi-k2-turbo-preview"),
    api_key_setting="kimi_api_key",
    base_url_setting="kimi_base_url",
)

GLM_CONFIG = ProviderConfig(
    name="glm",
    base_url="https://open.bigmodel.cn/api/paas/v4",
    models=_chat_only("glm-4.6"),
    api_key_setting="glm_api_key",
    base_url_setting="glm_base_url",
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    cfg.name: cfg for cfg in (WORKERS_AI_CONFIG, KIMI_CONFIG, GLM_CONFIG)
}


def get_provider_config(name: str) -> ProviderConfig:
    try:
        return PROVIDER_REGISTRY[name.lower()]
    except KeyError:
        raise KeyError(f"Unknown provider: {name!r}") from None
