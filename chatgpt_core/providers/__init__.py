"""ChatGPT Web 服务集成层。

该包下的模块负责：
- 定义访问令牌来源的抽象接口 (base)。
- 维护服务端点与模型配置 (registry)。
- 会话令牌换取访问令牌 (auth)。
- 构造请求、解析流式响应并对外提供客户端 (request_builder、stream_parser、chatgpt_client)。
"""

from typing import Optional

from chatgpt_core.config.client_config import ClientConfig
from chatgpt_core.config.settings import settings
from chatgpt_core.providers.chatgpt_client import ChatGPTClient


def create_client(session_token: Optional[str] = None, **overrides) -> ChatGPTClient:
    """根据全局配置创建客户端，显式传入的参数优先。"""

    config = ClientConfig.from_settings(settings, session_token=session_token, **overrides)
    return ChatGPTClient(config=config)
