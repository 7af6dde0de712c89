"""对话请求体构造。"""

from typing import Any, Dict, Sequence
from uuid import uuid4

from chatgpt_core.domain.conversation import Conversation
from chatgpt_core.domain.exceptions import ValidationError
from chatgpt_core.domain.models import Message, OutboundPayload
from chatgpt_core.providers.registry import resolve_model


class RequestBuilder:
    """把消息列表与会话续接状态转换为对话端点的请求体。

    相同的消息与 Conversation 生成的 body 完全一致，
    只有每次新生成的 request_id 不同。
    """

    def __init__(self, model: str = "default"):
        self._model = resolve_model(model)

    def build(self, messages: Sequence[Message], conversation: Conversation) -> OutboundPayload:
        if not messages:
            raise ValidationError(code="EMPTY_MESSAGES", message="At least one message is required")
        body: Dict[str, Any] = {
            "action": "next",
            "model": self._model,
            "messages": [self._message_to_payload(m) for m in messages],
        }
        continuation = conversation.as_continuation()
        if continuation is not None:
            body["conversation_id"], body["parent_message_id"] = continuation
        return OutboundPayload(request_id=str(uuid4()), body=body)

    @staticmethod
    def _message_to_payload(message: Message) -> Dict[str, Any]:
        if not isinstance(message, Message):
            raise ValidationError(code="INVALID_MESSAGE", message=f"Expected Message, got {type(message).__name__}")
        role = message.role.value
        return {
            "author": {"role": role},
            "role": role,
            "content": {"content_type": "text", "parts": [message.content]},
        }
