"""统一的消息、凭据与响应数据模型。

本模块定义了客户端各组件之间共享的标准数据结构：

- Message: 一条对话消息（system/user/assistant），构造后不可变。
- SessionCredential / AccessToken: 长期会话令牌与短期访问令牌。
- OutboundPayload: 发往对话端点的请求体。
- ResponsePart: 流式解析得到的响应片段。

HTTP 适配层（providers）只依赖这些模型，
并负责在服务端 JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from chatgpt_core.domain.exceptions import ValidationError


class Role(str, Enum):
    """消息角色（与 Web 端 author.role 字段对应）。"""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(code="INVALID_ROLE", message=f"Unknown message role: {value!r}")


@dataclass(frozen=True)
class Message:
    """一条对话消息。

    - role: 消息角色，字符串会在构造时转换为 Role，未知角色抛 ValidationError。
    - content: 纯文本内容，必须是 str。
    """

    role: Role
    content: str

    def __post_init__(self):
        # frozen dataclass 只能通过 object.__setattr__ 规范化字段
        object.__setattr__(self, "role", Role.parse(self.role))
        if not isinstance(self.content, str):
            raise ValidationError(code="INVALID_CONTENT", message="Message content must be a string")

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)


@dataclass(frozen=True)
class AccessToken:
    """短期访问令牌（Bearer）。"""

    token: str
    expires_at: datetime

    @property
    def authorization(self) -> str:
        return f"Bearer {self.token}"

    def is_valid(self, now: datetime, margin: float = 0.0) -> bool:
        """令牌在 now + margin 秒之后仍未过期时才视为有效。"""

        return self.expires_at - timedelta(seconds=margin) > now


@dataclass
class SessionCredential:
    """长期会话令牌及其换取到的短期访问令牌。

    只由 CredentialManager 持有和修改：
    short_lived_token 仅在 expires_at 仍在未来时可用，否则必须先刷新。
    """

    long_lived_token: str
    short_lived_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def cached_token(self, now: datetime, margin: float) -> Optional[AccessToken]:
        if not self.short_lived_token or self.expires_at is None:
            return None
        token = AccessToken(token=self.short_lived_token, expires_at=self.expires_at)
        return token if token.is_valid(now, margin) else None

    def clear(self) -> None:
        self.short_lived_token = None
        self.expires_at = None


@dataclass
class OutboundPayload:
    """发往对话端点的一次请求。

    body 只由消息列表、模型与会话续接字段决定；
    request_id 是每次新生成的客户端请求标识，单独存放，
    序列化时才合并进 JSON。
    """

    request_id: str
    body: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        return {**self.body, "request_id": self.request_id}


@dataclass(frozen=True)
class ResponsePart:
    """流式响应中的一个片段。

    - text: 截至当前事件的完整文本（累积值，与上游协议一致）。
    - delta: 相对上一个已产出片段新增的后缀。
    - is_final: 是否为终止片段；终止片段携带最后一次成功解析的文本与 message_id。
    - message_id / conversation_id: 服务端给出的标识。
    """

    text: str
    is_final: bool = False
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    delta: str = ""
