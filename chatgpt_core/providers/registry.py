"""服务端点与模型配置。

本模块将“逻辑模型名”与“服务端模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "default"。
- backend_model：Web 后端实际接受的模型 slug，例如 "text-davinci-002-render-sha"。

端点路径与会话 cookie 名也集中在这里，便于服务端改版时统一调整。"""

from dataclasses import dataclass
from typing import Dict


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    backend_model: str


@dataclass
class ServiceConfig:
    """Web 服务的端点配置。"""

    name: str
    base_url: str
    session_path: str
    conversation_path: str
    session_cookie: str
    models: Dict[str, ModelConfig]

    def session_url(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}{self.session_path}"

    def conversation_url(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}{self.conversation_path}"


CHATGPT_CONFIG = ServiceConfig(
    name="chatgpt",
    base_url="https://chat.openai.com",
    session_path="/api/auth/session",
    conversation_path="/backend-api/conversation",
    session_cookie="__Secure-next-auth.session-token",
    models={
        "default": ModelConfig(logical_name="default", backend_model="text-davinci-002-render-sha"),
        "gpt-4": ModelConfig(logical_name="gpt-4", backend_model="gpt-4"),
    },
)


def resolve_model(name: str) -> str:
    """逻辑名映射为服务端模型名，未登记的名字按原样透传。"""

    key = (name or "default").lower()
    for k, cfg in CHATGPT_CONFIG.models.items():
        if k.lower() == key:
            return cfg.backend_model
    return name
