"""单个客户端实例使用的配置。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from chatgpt_core.config.settings import DEFAULT_USER_AGENT, Settings, settings as default_settings


@dataclass
class ClientConfig:
    """ChatGPTClient 的配置。

    - base_url: 覆盖默认服务地址。
    - request_timeout: 建立请求并收到首字节的最长等待（秒）。
    - stream_idle_timeout: 相邻两个流事件之间的最长等待（秒）。
    - refresh_margin: 访问令牌到期前多少秒就视为需要刷新。
    - session_token: 长期会话令牌，构造客户端时也可以单独传入。
    """

    base_url: str = "https://chat.openai.com"
    request_timeout: float = 30.0
    stream_idle_timeout: float = 60.0
    model: str = "default"
    user_agent: str = DEFAULT_USER_AGENT
    refresh_margin: float = 60.0
    session_token: Optional[str] = None

    def __post_init__(self):
        self.base_url = self.base_url.rstrip("/")

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None, **overrides) -> "ClientConfig":
        """根据全局 Settings 生成配置，显式传入的字段优先。"""

        cfg = cfg or default_settings
        values = dict(
            base_url=cfg.chatgpt_base_url,
            request_timeout=cfg.http_timeout,
            stream_idle_timeout=cfg.stream_idle_timeout,
            model=cfg.chatgpt_model,
            user_agent=cfg.user_agent,
            refresh_margin=cfg.token_refresh_margin,
            session_token=cfg.chatgpt_session_token,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
