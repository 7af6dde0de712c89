"""ChatGPT Core 顶层包。

该包用浏览器得到的会话令牌换取短期访问令牌，
并提供一次性与流式两种方式发送对话消息，
包括配置加载、领域模型、令牌刷新、请求构造与流式响应解析等能力。
"""

from chatgpt_core.config.client_config import ClientConfig
from chatgpt_core.domain.conversation import Conversation
from chatgpt_core.domain.exceptions import (
    ApiError,
    AuthError,
    BusinessError,
    DecodeError,
    NetworkError,
    StreamError,
    ValidationError,
)
from chatgpt_core.domain.models import AccessToken, Message, ResponsePart, Role
from chatgpt_core.providers import create_client
from chatgpt_core.providers.auth import CredentialManager
from chatgpt_core.providers.chatgpt_client import ChatGPTClient
from chatgpt_core.providers.stream_parser import ResponseStream, StreamState

__all__ = [
    "AccessToken",
    "ApiError",
    "AuthError",
    "BusinessError",
    "ChatGPTClient",
    "ClientConfig",
    "Conversation",
    "CredentialManager",
    "DecodeError",
    "Message",
    "NetworkError",
    "ResponsePart",
    "ResponseStream",
    "Role",
    "StreamError",
    "StreamState",
    "ValidationError",
    "create_client",
]
