"""访问令牌来源的抽象接口。

ChatGPTClient 不直接依赖 CredentialManager 的实现细节，而是依赖此协议：

- ensure_valid(): 返回当前有效的访问令牌，必要时刷新。
- invalidate(): 服务端拒绝访问令牌后丢弃缓存，下次调用强制刷新。

测试或上层应用可以注入自己的实现（例如固定令牌）。
"""

from typing import Protocol

from chatgpt_core.domain.models import AccessToken


class TokenSource(Protocol):
    """访问令牌提供方协议。"""

    async def ensure_valid(self) -> AccessToken:
        ...

    def invalidate(self) -> None:
        ...
