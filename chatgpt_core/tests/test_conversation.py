import pytest

from chatgpt_core.domain.conversation import Conversation
from chatgpt_core.domain.exceptions import ValidationError
from chatgpt_core.domain.models import Message, Role


def test_models_exist():
    cm = Message(role="user", content="hi")
    assert cm.role is Role.USER
    conv = Conversation()
    assert conv.is_new
    assert conv.as_continuation() is None


def test_update_records_continuation():
    conv = Conversation()
    conv.update("c1", "m1")
    assert conv.as_continuation() == ("c1", "m1")
    conv.update("c1", "m2")
    assert conv.last_message_id == "m2"
    conv.reset()
    assert conv.is_new


def test_half_set_conversation_is_rejected():
    with pytest.raises(ValidationError):
        Conversation(conversation_id="c1")
    conv = Conversation()
    with pytest.raises(ValidationError):
        conv.update("c1", "")
    assert conv.is_new


def test_dict_round_trip():
    conv = Conversation.from_dict({"conversation_id": "c1", "last_message_id": "m1"})
    assert Conversation.from_dict(conv.to_dict()) == conv
    assert Conversation.from_dict({}).is_new


def test_message_validation():
    assert Message.system("be brief").role is Role.SYSTEM
    assert Message(role="ASSISTANT", content="ok").role is Role.ASSISTANT
    with pytest.raises(ValidationError) as exc:
        Message(role="tool", content="x")
    assert exc.value.code == "INVALID_ROLE"
    with pytest.raises(ValidationError):
        Message(role="user", content=None)
