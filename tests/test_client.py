"""Tests for the remote dispatcher client."""

from __future__ import annotations

import json

import httpx
import pytest

from chatstream.api import create_app
from chatstream.chat.client import RemoteDispatcher, error_from_response
from chatstream.chat.models import (
    ChatTurn,
    Credential,
    CredentialPayload,
    MessageRole,
    ProviderName,
    StreamEvent,
    StreamEventType,
)
from chatstream.chat.session import SessionController, SessionState
from chatstream.config import Settings
from chatstream.errors import UnsupportedProviderError, UpstreamError, ValidationError
from chatstream.providers import ProviderDispatcher, get_dispatcher
from chatstream.store import ChatStore

from conftest import FakeProvider

HISTORY = [ChatTurn(role=MessageRole.USER, content="Hello")]
CREDENTIAL = CredentialPayload(provider="openai", secret="sk-test-123456789")


def sse(*events: StreamEvent) -> str:
    return "".join(event.to_sse() for event in events)


def remote(handler) -> RemoteDispatcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteDispatcher("http://dispatcher.test/", client=client)


async def collect(events):
    return [event async for event in events]


class TestRemoteDispatcher:
    """Tests for RemoteDispatcher against a mock transport."""

    @pytest.mark.asyncio
    async def test_relays_stream(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                text=sse(StreamEvent.delta("Hi"), StreamEvent.delta(" there"), StreamEvent.done()),
                headers={"content-type": "text/event-stream"},
            )

        dispatcher = remote(handler)
        events = await collect(dispatcher.stream_completion(HISTORY, CREDENTIAL))

        assert [e.type for e in events] == [
            StreamEventType.DELTA,
            StreamEventType.DELTA,
            StreamEventType.DONE,
        ]
        assert str(requests[0].url) == "http://dispatcher.test/api/chat"
        assert json.loads(requests[0].content) == {
            "messages": [{"role": "user", "content": "Hello"}],
            "credential": {"provider": "openai", "secret": "sk-test-123456789"},
        }
        await dispatcher.aclose()

    @pytest.mark.asyncio
    async def test_stored_credential_is_forwarded(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, text=sse(StreamEvent.done()))

        credential = Credential(name="Home", provider=ProviderName.ANTHROPIC, secret="sk-ant-xyz")
        await collect(remote(handler).stream_completion(HISTORY, credential))

        assert bodies[0]["credential"] == {"provider": "anthropic", "secret": "sk-ant-xyz"}

    def test_empty_secret_fails_locally(self):
        """No request is made for a credential without a secret."""
        calls = []
        dispatcher = remote(lambda request: calls.append(request))
        with pytest.raises(ValidationError, match="API key is required"):
            dispatcher.stream_completion(HISTORY, CredentialPayload(provider="openai", secret=" "))
        assert calls == []

    @pytest.mark.asyncio
    async def test_validation_error_response(self):
        def handler(request):
            return httpx.Response(
                400, json={"error": "validation_error", "message": "API key is required"}
            )

        with pytest.raises(ValidationError, match="API key is required"):
            await collect(remote(handler).stream_completion(HISTORY, CREDENTIAL))

    @pytest.mark.asyncio
    async def test_unsupported_provider_response(self):
        def handler(request):
            return httpx.Response(
                400,
                json={
                    "error": "unsupported_provider",
                    "message": "Unsupported provider: other",
                    "details": {"provider": "other"},
                },
            )

        with pytest.raises(UnsupportedProviderError) as exc_info:
            await collect(remote(handler).stream_completion(HISTORY, CREDENTIAL))
        assert exc_info.value.provider == "other"

    @pytest.mark.asyncio
    async def test_upstream_error_response(self):
        def handler(request):
            return httpx.Response(502, json={"error": "upstream_error", "message": "bad key"})

        with pytest.raises(UpstreamError, match="bad key"):
            await collect(remote(handler).stream_completion(HISTORY, CREDENTIAL))

    @pytest.mark.asyncio
    async def test_error_event_is_relayed(self):
        def handler(request):
            return httpx.Response(
                200, text=sse(StreamEvent.delta("Par"), StreamEvent.failure("rate limited"))
            )

        events = await collect(remote(handler).stream_completion(HISTORY, CREDENTIAL))
        assert events[-1] == StreamEvent.failure("rate limited")

    @pytest.mark.asyncio
    async def test_truncated_stream(self):
        """A stream that ends without done or error is an upstream failure."""
        def handler(request):
            return httpx.Response(200, text=sse(StreamEvent.delta("Hi")))

        with pytest.raises(UpstreamError, match="without a terminal event"):
            await collect(remote(handler).stream_completion(HISTORY, CREDENTIAL))

    @pytest.mark.asyncio
    async def test_malformed_frame(self):
        """A garbled data line becomes an upstream failure, not a pydantic error."""
        def handler(request):
            return httpx.Response(
                200, text='data: {"type":"delta","content":"Hi"}\n\ndata: {garbled\n\n'
            )

        events = remote(handler).stream_completion(HISTORY, CREDENTIAL)
        first = await events.__anext__()
        assert first == StreamEvent.delta("Hi")
        with pytest.raises(UpstreamError, match="Malformed dispatcher event"):
            await events.__anext__()

    @pytest.mark.asyncio
    async def test_unknown_event_type(self):
        def handler(request):
            return httpx.Response(200, text='data: {"type":"heartbeat"}\n\n')

        with pytest.raises(UpstreamError, match="Malformed dispatcher event"):
            await collect(remote(handler).stream_completion(HISTORY, CREDENTIAL))

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamError, match="Dispatcher unreachable"):
            await collect(remote(handler).stream_completion(HISTORY, CREDENTIAL))


class TestErrorFromResponse:
    """Tests for error_from_response."""

    def test_plain_text_body(self):
        error = error_from_response(500, b"Internal Server Error")
        assert isinstance(error, UpstreamError)
        assert error.message == "Internal Server Error"

    def test_empty_body(self):
        assert error_from_response(503, b"").message == "HTTP 503"

    def test_client_error(self):
        error = error_from_response(422, b'{"detail": []}')
        assert isinstance(error, ValidationError)


class TestEndToEnd:
    """Session controller talking to the real app through RemoteDispatcher."""

    @pytest.mark.asyncio
    async def test_hi_there_over_http(self, store: ChatStore):
        provider = FakeProvider(fragments=["Hi", " there"])
        app = create_app(Settings(_env_file=None))
        app.dependency_overrides[get_dispatcher] = lambda: ProviderDispatcher([provider])
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
        dispatcher = RemoteDispatcher("http://chatstream.test", client=client)

        await store.add_credential(
            Credential(name="Work", provider=ProviderName.OPENAI, secret="sk-test-123456789")
        )
        controller = SessionController(store, dispatcher)
        conversation = await controller.new_conversation()

        reply = await controller.send_message("Hello")

        assert reply.content == "Hi there"
        assert [m.content for m in await store.get_messages(conversation.id)] == [
            "Hello",
            "Hi there",
        ]
        assert provider.calls[0][1] == "sk-test-123456789"
        await dispatcher.aclose()

    @pytest.mark.asyncio
    async def test_rejected_key_over_http(self, store: ChatStore):
        app = create_app(Settings(_env_file=None))
        app.dependency_overrides[get_dispatcher] = lambda: ProviderDispatcher([FakeProvider()])
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
        dispatcher = RemoteDispatcher("http://chatstream.test", client=client)

        await store.add_credential(
            Credential(name="Other", provider=ProviderName.OTHER, secret="key-123456789")
        )
        controller = SessionController(store, dispatcher)
        await controller.new_conversation()

        assert await controller.send_message("Hello") is None
        assert controller.error == "Unsupported provider: other"
        await dispatcher.aclose()

    @pytest.mark.asyncio
    async def test_malformed_frame_reaches_controller(self, store: ChatStore):
        """A garbled frame ends the send cleanly with only the user turn stored."""
        def handler(request):
            return httpx.Response(
                200, text='data: {"type":"delta","content":"Hi"}\n\ndata: {garbled\n\n'
            )

        dispatcher = remote(handler)
        await store.add_credential(
            Credential(name="Work", provider=ProviderName.OPENAI, secret="sk-test-123456789")
        )
        controller = SessionController(store, dispatcher)
        conversation = await controller.new_conversation()

        assert await controller.send_message("Hello") is None

        assert controller.error.startswith("Malformed dispatcher event")
        assert controller.state == SessionState.IDLE
        assert controller.streaming_message is None
        assert [m.role for m in controller.messages] == [MessageRole.USER]
        assert [m.role for m in await store.get_messages(conversation.id)] == [MessageRole.USER]
        await dispatcher.aclose()
