from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .exceptions import ValidationError


@dataclass
class Conversation:
    """多轮对话的续接状态。

    两个字段要么都为空（新会话），要么都有值（续接会话）。
    同一个 Conversation 不能被两个并发请求同时使用，由调用方保证。
    """

    conversation_id: Optional[str] = None
    last_message_id: Optional[str] = None

    def __post_init__(self):
        if bool(self.conversation_id) != bool(self.last_message_id):
            raise ValidationError(
                code="INVALID_CONVERSATION",
                message="conversation_id and last_message_id must be set together",
            )

    @property
    def is_new(self) -> bool:
        return not self.conversation_id

    def as_continuation(self) -> Optional[Tuple[str, str]]:
        if self.is_new:
            return None
        return self.conversation_id, self.last_message_id

    def update(self, conversation_id: str, new_message_id: str) -> None:
        """一次成功交换之后同时记录两个字段。"""

        if not conversation_id or not new_message_id:
            raise ValidationError(
                code="INVALID_CONVERSATION",
                message="conversation_id and new_message_id are both required",
            )
        self.conversation_id, self.last_message_id = conversation_id, new_message_id

    def reset(self) -> None:
        self.conversation_id, self.last_message_id = None, None

    def to_dict(self) -> Dict[str, Any]:
        return {"conversation_id": self.conversation_id, "last_message_id": self.last_message_id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        return cls(
            conversation_id=data.get("conversation_id") or None,
            last_message_id=data.get("last_message_id") or None,
        )
