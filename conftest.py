"""Shared fixtures: a scripted upstream behind httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from duckchat_relay.relay_service import ChatRelay
from duckchat_relay.server import create_app
from duckchat_relay.sessions import InMemorySessionStore
from duckchat_relay.upstream.client import DuckChatClient
from duckchat_relay.upstream.identity import StaticIdentityProvider
from duckchat_relay.upstream.models import Identity, UpstreamConfig
from duckchat_relay.upstream.rate_limiting import (
    FixedWindowRateLimiter,
    RateLimitConfig,
)

BASE_URL = "https://duck.test"
TEST_IDENTITY = Identity(
    user_agent="relay-tests/1.0",
    origin="https://duckduckgo.com",
    referer="https://duckduckgo.com/",
)


def ddg_stream(*messages: str, extra: list[dict] | None = None) -> str:
    """Render messages the way the upstream streams them."""
    frames = [{"message": message} for message in messages] + (extra or [])
    body = "".join(f"data: {json.dumps(frame)}\n\n" for frame in frames)
    return body + "data: [DONE]LIMT_CVRSA\n"


async def _byte_chunks(parts: list[str]):
    for part in parts:
        yield part.encode()


class FakeUpstream:
    """Scripted stand-in for the status and chat endpoints."""

    def __init__(self) -> None:
        self.issue_tokens = True
        self.status_calls = 0
        self.chat_requests: list[httpx.Request] = []
        self.scripted: list[str | list[str]] = []
        self.chat_status = 200
        self.rotate_token: str | None = None

    def chat_payload(self, index: int = -1) -> dict:
        return json.loads(self.chat_requests[index].content)

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/duckchat/v1/status":
            self.status_calls += 1
            if not self.issue_tokens:
                return httpx.Response(200)
            return httpx.Response(
                200, headers={"x-vqd-4": f"tok-{self.status_calls}"}
            )

        if request.url.path == "/duckchat/v1/chat":
            self.chat_requests.append(request)
            if self.chat_status != 200:
                return httpx.Response(self.chat_status, text="upstream says no")

            if self.scripted:
                script = self.scripted.pop(0)
            else:
                # Echo the last user message back
                payload = json.loads(request.content)
                script = ddg_stream(payload["messages"][-1]["content"])

            parts = script if isinstance(script, list) else [script]
            headers = {"content-type": "text/event-stream"}
            if self.rotate_token:
                headers["x-vqd-4"] = self.rotate_token
            return httpx.Response(
                200, headers=headers, content=_byte_chunks(parts)
            )

        return httpx.Response(404)


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def upstream_config() -> UpstreamConfig:
    return UpstreamConfig(base_url=BASE_URL)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def duck_client(
    fake_upstream: FakeUpstream,
    upstream_config: UpstreamConfig,
    sleeps: list[float],
) -> DuckChatClient:
    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(fake_upstream.handler)
    )
    return DuckChatClient(
        upstream_config,
        StaticIdentityProvider(TEST_IDENTITY),
        http_client=http_client,
        sleep=record_sleep,
    )


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def relay(duck_client: DuckChatClient, session_store: InMemorySessionStore) -> ChatRelay:
    return ChatRelay(duck_client, session_store)


@pytest.fixture
def limiter() -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(RateLimitConfig(window_seconds=60, max_requests=100))


@pytest.fixture
def app(relay: ChatRelay, limiter: FixedWindowRateLimiter):
    return create_app(relay, limiter)
