"""ChatGPT Web 客户端。

本模块负责：

1. 通过 TokenSource（默认 CredentialManager）拿到有效的访问令牌。
2. 用 RequestBuilder 把消息与 Conversation 转成对话端点的请求体。
3. 发起流式 HTTP 请求，并处理网络错误、认证失败与其他非 2xx 响应。
4. 把响应交给 ResponseStreamParser 解析；收到终止片段后才更新 Conversation。

send_message 与 send_message_full 内部都走流式路径，只是替调用方消费完整个流。
同一个 Conversation 不能被两个并发调用同时使用，这一前提由调用方保证。
"""

import asyncio
from typing import Optional, Sequence, Union

import httpx

from chatgpt_core.config.client_config import ClientConfig
from chatgpt_core.domain.conversation import Conversation
from chatgpt_core.domain.exceptions import ApiError, AuthError, NetworkError, StreamError, ValidationError
from chatgpt_core.domain.models import AccessToken, Message, OutboundPayload, ResponsePart
from chatgpt_core.infrastructure.logging.logger import logger
from chatgpt_core.providers.auth import CredentialManager
from chatgpt_core.providers.base import TokenSource
from chatgpt_core.providers.registry import CHATGPT_CONFIG
from chatgpt_core.providers.request_builder import RequestBuilder
from chatgpt_core.providers.stream_parser import ResponseStream, ResponseStreamParser

MessagesInput = Union[str, Message, Sequence[Message]]


class ChatGPTClient:
    """对话客户端门面。

    - send_message: 返回聚合后的回复文本。
    - send_message_full: 返回终止 ResponsePart（文本 + message_id + conversation_id）。
    - send_message_streaming: 返回 ResponseStream，由调用方逐个消费片段。
    """

    name = "chatgpt"

    def __init__(
        self,
        session_token: Optional[str] = None,
        config: Optional[ClientConfig] = None,
        *,
        credentials: Optional[TokenSource] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config or ClientConfig()
        self._client = http_client
        self._owns_client = http_client is None
        if credentials is None:
            token = session_token or self._config.session_token
            if not token:
                # 配置缺失走 ValidationError，方便上层统一处理
                raise ValidationError(code="MISSING_SESSION_TOKEN", message="Session token not set")
            credentials = CredentialManager(token, self._config, http_client=self._get_client())
        self._credentials = credentials
        self._builder = RequestBuilder(self._config.model)

    @property
    def credentials(self) -> TokenSource:
        return self._credentials

    async def send_message(self, messages: MessagesInput, conversation: Optional[Conversation] = None) -> str:
        """发送消息并返回完整回复文本，成功后原地更新 conversation。"""

        final = await self.send_message_full(messages, conversation)
        return final.text

    async def send_message_full(
        self, messages: MessagesInput, conversation: Optional[Conversation] = None
    ) -> ResponsePart:
        stream = await self.send_message_streaming(messages, conversation)
        return await stream.collect()

    async def send_message_streaming(
        self, messages: MessagesInput, conversation: Optional[Conversation] = None
    ) -> ResponseStream:
        """发起请求并立即返回流。

        认证失败、网络错误、非 2xx 响应在 await 时抛出；
        流解析错误在迭代时抛出。conversation 只在收到终止片段时更新，
        提前关闭或取消流不会修改它。
        """

        conversation = conversation if conversation is not None else Conversation()
        msgs = self._normalize_messages(messages)
        token = await self._credentials.ensure_valid()
        payload = self._builder.build(msgs, conversation)
        response = await self._open_stream(payload, token)

        def commit(part: ResponsePart) -> None:
            conversation_id = part.conversation_id or conversation.conversation_id
            if not conversation_id or not part.message_id:
                raise StreamError(
                    code="MISSING_IDENTIFIERS",
                    message="Stream completed without conversation_id or message_id",
                )
            conversation.update(conversation_id, part.message_id)

        return ResponseStream(
            response,
            ResponseStreamParser(),
            idle_timeout=self._config.stream_idle_timeout,
            on_final=commit,
            request_id=payload.request_id,
        )

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ChatGPTClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # ---- 辅助方法 ----

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.request_timeout, read=self._config.stream_idle_timeout),
                trust_env=False,
            )
        return self._client

    async def _open_stream(self, payload: OutboundPayload, token: AccessToken) -> httpx.Response:
        """发送请求并等待响应头，超过 request_timeout 视为网络错误。"""

        client = self._get_client()
        request = client.build_request(
            "POST",
            CHATGPT_CONFIG.conversation_url(self._config.base_url),
            json=payload.to_json(),
            headers={
                "Authorization": token.authorization,
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
                "User-Agent": self._config.user_agent,
            },
        )
        try:
            resp = await asyncio.wait_for(client.send(request, stream=True), self._config.request_timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise NetworkError(
                code="REQUEST_TIMEOUT",
                message=f"No response within {self._config.request_timeout}s: {e}",
                request_id=payload.request_id,
            )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), request_id=payload.request_id)

        if resp.status_code in (401, 403):
            await resp.aclose()
            # 访问令牌被拒绝，丢弃缓存，下次调用重新换取
            self._credentials.invalidate()
            raise AuthError(
                code="ACCESS_TOKEN_REJECTED",
                message="Access token rejected by conversation endpoint",
                http_status=resp.status_code,
            )
        if resp.status_code >= 400:
            body = await resp.aread()
            await resp.aclose()
            raise ApiError(
                code="API_ERROR",
                message=body.decode("utf-8", errors="replace"),
                http_status=resp.status_code,
                request_id=payload.request_id,
            )

        logger.info(
            "Conversation request sent",
            extra={"extra": {
                "request_id": payload.request_id,
                "conversation_id": payload.body.get("conversation_id"),
                "status": resp.status_code,
            }},
        )
        return resp

    @staticmethod
    def _normalize_messages(messages: MessagesInput) -> list[Message]:
        if isinstance(messages, str):
            return [Message.user(messages)]
        if isinstance(messages, Message):
            return [messages]
        return list(messages)
