"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Web 端会拒绝非浏览器的 User-Agent
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHATGPT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 会话与服务端 ----
    chatgpt_session_token: Optional[str] = Field(
        default=None,
        description="浏览器登录后得到的长期会话令牌",
    )
    chatgpt_base_url: str = Field(
        default="https://chat.openai.com",
        description="Web 服务基础URL",
    )
    chatgpt_model: str = Field(
        default="default",
        description="逻辑模型名，由 registry 映射为服务端模型",
    )
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="请求使用的 User-Agent",
    )

    # ---- 超时与刷新 ----
    http_timeout: float = Field(default=30.0, ge=1.0, description="建立请求并收到首字节的超时时间（秒）")
    stream_idle_timeout: float = Field(default=60.0, ge=1.0, description="相邻两个流事件之间的最长等待（秒）")
    token_refresh_margin: float = Field(default=60.0, ge=0.0, description="访问令牌提前刷新的安全余量（秒）")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("chatgpt_session_token")
    @classmethod
    def validate_session_token(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("Session token seems too short")
        return v

    @field_validator("chatgpt_base_url")
    @classmethod
    def strip_base_url(cls, v: str) -> str:
        return v.rstrip("/")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
