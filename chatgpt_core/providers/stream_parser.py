"""流式响应解析。

对话端点以 server-sent events 返回回复，每个事件的 data 是一个 JSON：

    {"message": {"id": "...", "author": {"role": "assistant"},
                 "content": {"content_type": "text", "parts": ["Hel"]}},
     "conversation_id": "...", "error": null}

并以 ``data: [DONE]`` 结束。上游每个事件携带的是截至目前的完整文本（累积值），
而不是增量，所以解析器需要：

1. 逐个事件解码出消息文本与 message_id。
2. 与上一次产出的文本比较，得到新增后缀 delta；ResponsePart.text 仍保留累积值，
   对外契约是“片段文本为累积值”，与上游一致。
3. 单个事件解析失败时记录警告并跳过；若直到结束都没有任何有效事件，则抛 StreamError。
4. 收到终止符时产出 is_final=True 的片段，携带最后一次成功解析的文本与 message_id。

状态机：AWAITING_FIRST_EVENT -> STREAMING -> COMPLETED；
STREAMING（或 AWAITING_FIRST_EVENT）在连接提前关闭或空闲超时时进入 FAILED。
"""

import asyncio
import json
import os
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable, List, Optional, Union

import httpx

from chatgpt_core.domain.exceptions import DecodeError, StreamError
from chatgpt_core.domain.models import ResponsePart
from chatgpt_core.infrastructure.logging.logger import logger

STREAM_TERMINATOR = "[DONE]"


class StreamState(str, Enum):
    AWAITING_FIRST_EVENT = "awaiting_first_event"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StreamFragment:
    """单个事件解码后的结果。"""

    text: str
    message_id: str
    conversation_id: Optional[str] = None


async def iter_sse_data(lines: AsyncIterable[Union[str, bytes]]) -> AsyncIterator[str]:
    """按 SSE 规则把逐行输入组装为事件 data（多行 data 以换行拼接）。"""

    buffer: List[str] = []
    async for raw in lines:
        line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        line = line.rstrip("\r\n")
        if not line:
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            value = line[5:]
            buffer.append(value[1:] if value.startswith(" ") else value)
        # event:/id:/retry: 字段在该协议中没有用到
    if buffer:
        yield "\n".join(buffer)


def decode_event(data: str) -> Optional[StreamFragment]:
    """解析单个事件。

    返回 None 表示这是与回复文本无关的事件（用户消息回显、审核元数据等）；
    格式错误抛 DecodeError；服务端在事件里报告错误时抛 StreamError。
    """

    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise DecodeError(code="MALFORMED_EVENT", message=f"Invalid JSON event: {e}")
    if not isinstance(payload, dict):
        raise DecodeError(code="MALFORMED_EVENT", message="Event is not a JSON object")

    error = payload.get("error")
    if error:
        raise StreamError(code="SERVER_ERROR", message=str(error))

    message = payload.get("message")
    if message is None:
        return None
    if not isinstance(message, dict):
        raise DecodeError(code="MALFORMED_EVENT", message="Event message is not an object")

    author = message.get("author")
    role = author.get("role") if isinstance(author, dict) else None
    if role and role != "assistant":
        return None

    content = message.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        raise DecodeError(code="MALFORMED_EVENT", message="Event message has no content parts")
    message_id = message.get("id")
    if not message_id:
        raise DecodeError(code="MALFORMED_EVENT", message="Event message has no id")

    return StreamFragment(
        text="".join(p for p in parts if isinstance(p, str)),
        message_id=str(message_id),
        conversation_id=payload.get("conversation_id") or None,
    )


class ResponseStreamParser:
    """把事件序列转换为 ResponsePart 序列。每个请求使用一个新的解析器，不可重启。"""

    def __init__(self):
        self.state = StreamState.AWAITING_FIRST_EVENT
        self.skipped_events = 0
        self._text = ""
        self._message_id: Optional[str] = None
        self._conversation_id: Optional[str] = None
        self._started = False

    def feed(self, data: str) -> Optional[ResponsePart]:
        """处理一个事件的 data，有新内容时返回 ResponsePart，否则返回 None。"""

        if self.state in (StreamState.COMPLETED, StreamState.FAILED):
            raise StreamError(code="STREAM_FINISHED", message=f"Stream is already {self.state.value}")
        if data.strip() == STREAM_TERMINATOR:
            return self._complete()
        try:
            fragment = decode_event(data)
        except DecodeError as e:
            self.skipped_events += 1
            logger.warning(
                "Skipped malformed stream event",
                extra={"extra": {"code": e.code, "error": e.message, "skipped": self.skipped_events}},
            )
            return None
        except StreamError:
            self.state = StreamState.FAILED
            raise
        if fragment is None:
            return None
        return self._advance(fragment)

    def fail(self, code: str, message: str) -> StreamError:
        self.state = StreamState.FAILED
        return StreamError(code=code, message=message, skipped_events=self.skipped_events)

    async def parse(
        self,
        lines: AsyncIterable[Union[str, bytes]],
        idle_timeout: Optional[float] = None,
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> AsyncIterator[ResponsePart]:
        """消费逐行输入，惰性产出 ResponsePart，终止片段之后结束。

        on_close 在生成器结束时必定被调用，包括调用方丢弃生成器、
        由事件循环回收的情况，用于释放底层连接。
        """

        if self._started:
            raise StreamError(code="STREAM_REUSED", message="A parser can only consume one stream")
        self._started = True
        events = iter_sse_data(lines).__aiter__()
        try:
            while True:
                try:
                    data = await asyncio.wait_for(events.__anext__(), idle_timeout)
                except StopAsyncIteration:
                    if self.state is StreamState.AWAITING_FIRST_EVENT:
                        raise self.fail(
                            "NO_VALID_EVENT",
                            f"Stream closed without a valid event ({self.skipped_events} malformed)",
                        )
                    raise self.fail("STREAM_CLOSED_EARLY", "Connection closed before the stream terminator")
                except asyncio.TimeoutError:
                    raise self.fail("STREAM_IDLE_TIMEOUT", f"No stream event within {idle_timeout}s")
                part = self.feed(data)
                if part is None:
                    continue
                yield part
                if part.is_final:
                    return
        finally:
            try:
                await events.aclose()
            finally:
                if on_close is not None:
                    await on_close()

    def _advance(self, fragment: StreamFragment) -> Optional[ResponsePart]:
        if fragment.conversation_id:
            self._conversation_id = fragment.conversation_id
        same_message = fragment.message_id == self._message_id
        if self.state is StreamState.STREAMING and same_message and fragment.text == self._text:
            return None
        previous = self._text if same_message else ""
        # 上游重写文本而不是追加时，delta 取最长公共前缀之后的部分
        common = len(os.path.commonprefix([previous, fragment.text]))
        self._text, self._message_id = fragment.text, fragment.message_id
        self.state = StreamState.STREAMING
        return ResponsePart(
            text=fragment.text,
            delta=fragment.text[common:],
            message_id=fragment.message_id,
            conversation_id=self._conversation_id,
        )

    def _complete(self) -> ResponsePart:
        if self.state is StreamState.AWAITING_FIRST_EVENT:
            raise self.fail(
                "NO_VALID_EVENT",
                f"Stream terminated without a valid event ({self.skipped_events} malformed)",
            )
        self.state = StreamState.COMPLETED
        return ResponsePart(
            text=self._text,
            is_final=True,
            message_id=self._message_id,
            conversation_id=self._conversation_id,
        )


class ResponseStream:
    """send_message_streaming 返回的惰性片段序列。

    既是异步迭代器也是异步上下文管理器。收到终止片段时先调用 on_final，
    再关闭底层 HTTP 响应；提前关闭或取消时只关闭响应，不调用 on_final。
    """

    def __init__(
        self,
        response: httpx.Response,
        parser: Optional[ResponseStreamParser] = None,
        idle_timeout: Optional[float] = None,
        on_final: Optional[Callable[[ResponsePart], None]] = None,
        request_id: Optional[str] = None,
    ):
        self._response = response
        self._parser = parser or ResponseStreamParser()
        # 丢弃 ResponseStream 而未 aclose 时，生成器被回收也会关闭响应
        self._parts = self._parser.parse(response.aiter_lines(), idle_timeout, on_close=response.aclose)
        self._on_final = on_final
        self._closed = False
        self.request_id = request_id

    @property
    def state(self) -> StreamState:
        return self._parser.state

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "ResponseStream":
        return self

    async def __anext__(self) -> ResponsePart:
        if self._closed:
            raise StopAsyncIteration
        try:
            part = await self._parts.__anext__()
        except StopAsyncIteration:
            await self.aclose()
            raise
        except StreamError as e:
            self._log_failure(e)
            await self.aclose()
            raise
        except httpx.TimeoutException as e:
            error = self._parser.fail("STREAM_IDLE_TIMEOUT", f"Stream read timed out: {e}")
            self._log_failure(error)
            await self.aclose()
            raise error
        except (httpx.TransportError, httpx.StreamError) as e:
            error = self._parser.fail("STREAM_INTERRUPTED", str(e) or type(e).__name__)
            self._log_failure(error)
            await self.aclose()
            raise error
        except BaseException:
            await self.aclose()
            raise
        if part.is_final:
            try:
                if self._on_final is not None:
                    self._on_final(part)
            finally:
                await self.aclose()
            logger.info(
                "Response stream completed",
                extra={"extra": {
                    "request_id": self.request_id,
                    "message_id": part.message_id,
                    "conversation_id": part.conversation_id,
                    "skipped": self._parser.skipped_events,
                }},
            )
        return part

    async def collect(self) -> ResponsePart:
        """消费整个流并返回终止片段。"""

        final: Optional[ResponsePart] = None
        async with self:
            async for part in self:
                if part.is_final:
                    final = part
        if final is None:
            raise StreamError(code="STREAM_CLOSED_EARLY", message="Stream closed before the final part")
        return final

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._parts.aclose()
        finally:
            await self._response.aclose()
        if self.state in (StreamState.AWAITING_FIRST_EVENT, StreamState.STREAMING):
            logger.info("Response stream cancelled", extra={"extra": {"request_id": self.request_id}})

    async def __aenter__(self) -> "ResponseStream":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def _log_failure(self, error: StreamError) -> None:
        logger.warning(
            "Response stream failed",
            extra={"extra": {"request_id": self.request_id, "code": error.code, "error": error.message}},
        )
