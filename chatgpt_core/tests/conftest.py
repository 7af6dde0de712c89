import os
import tempfile

# 日志目录指向临时目录，必须在导入 chatgpt_core 之前设置
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="chatgpt_core_logs_"))

import json  # noqa: E402

import pytest  # noqa: E402


def make_event(text, message_id="m1", conversation_id="c1", role="assistant"):
    payload = {
        "message": {
            "id": message_id,
            "author": {"role": role},
            "content": {"content_type": "text", "parts": [text]},
        },
        "conversation_id": conversation_id,
        "error": None,
    }
    return f"data: {json.dumps(payload)}\n\n"


@pytest.fixture
def sse_event():
    return make_event


@pytest.fixture
def sse_body():
    """把若干累积文本拼成完整的 SSE 响应体。"""

    def build(texts, message_id="m1", conversation_id="c1", done=True):
        chunks = [make_event(t, message_id, conversation_id) for t in texts]
        if done:
            chunks.append("data: [DONE]\n\n")
        return "".join(chunks).encode("utf-8")

    return build
