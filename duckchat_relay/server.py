"""
HTTP surface of the relay.

Routes:
- GET  /                      liveness text
- POST /chat                  session-aware chat (buffered or streaming)
- POST /v1/chat/completions   stateless chat over a full message list
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from duckchat_relay.logging_utils import RelayErrorHandler
from duckchat_relay.relay_service import ChatRelay, ChatResult
from duckchat_relay.upstream.exceptions import RateLimitError, RelayError
from duckchat_relay.upstream.models import ChatTurn
from duckchat_relay.upstream.rate_limiting import FixedWindowRateLimiter

HTTP_BAD_REQUEST = 400
SESSION_HEADER = "X-Session-Id"
STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"

logger = structlog.get_logger(__name__)


class ChatRequest(BaseModel):
    """Body of POST /chat."""
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1)
    model: str | None = "1"
    session_id: str | None = Field(default=None, alias="sessionId")
    stream: bool = False


class CompletionRequest(BaseModel):
    """Body of POST /v1/chat/completions."""
    messages: list[ChatTurn] = Field(min_length=1)
    model: str | None = None
    stream: bool = False


def error_response(
    error: Exception, operation: str, context: dict | None = None
) -> JSONResponse:
    status, body = RelayErrorHandler.error_body(error, operation, context)
    headers = {}
    if isinstance(error, RateLimitError) and error.retry_after is not None:
        headers["Retry-After"] = str(max(1, round(error.retry_after)))
    return JSONResponse(content=body, status_code=status, headers=headers)


async def stream_response(
    fragments: AsyncGenerator[str],
    operation: str,
    headers: dict[str, str] | None = None,
) -> StreamingResponse:
    """
    Turn a fragment generator into a streaming response.

    The first fragment is awaited before any byte is sent, so failures that
    happen before the reply starts still get a proper status code. Failures
    after that end the stream with an error trailer line.
    """
    try:
        first = await anext(fragments)
    except StopAsyncIteration:
        first = ""
    except BaseException:
        await fragments.aclose()
        raise

    async def body() -> AsyncIterator[str]:
        try:
            if first:
                yield first
            async for fragment in fragments:
                yield fragment
        except Exception as e:
            status, error_body = RelayErrorHandler.error_body(e, operation)
            yield f"\n[error] {status} {error_body['message']}\n"
        finally:
            # Closes the upstream connection when the client disconnects
            await fragments.aclose()

    return StreamingResponse(body(), media_type=STREAM_MEDIA_TYPE, headers=headers)


async def enforce_rate_limit(request: Request) -> None:
    limiter: FixedWindowRateLimiter = request.app.state.limiter
    await limiter.acquire()


def get_relay(request: Request) -> ChatRelay:
    return request.app.state.relay


def create_app(
    relay: ChatRelay,
    limiter: FixedWindowRateLimiter,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Build the FastAPI application around an already-wired relay."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await relay.aclose()

    app = FastAPI(title="DuckChat Relay", version="0.1.0", lifespan=lifespan)
    app.state.relay = relay
    app.state.limiter = limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[SESSION_HEADER],
    )

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        return error_response(exc, request.url.path)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning(
            "Rejected invalid request", path=request.url.path, errors=exc.errors()
        )
        return JSONResponse(
            content={"success": False, "message": "Invalid request body"},
            status_code=HTTP_BAD_REQUEST,
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        return error_response(exc, request.url.path)

    @app.get("/")
    async def root() -> PlainTextResponse:
        return PlainTextResponse("DuckChat relay is running")

    @app.post("/chat", dependencies=[Depends(enforce_rate_limit)], response_model=None)
    async def chat(
        payload: ChatRequest, relay: ChatRelay = Depends(get_relay)
    ) -> JSONResponse | StreamingResponse:
        if payload.stream:
            session_id = payload.session_id or relay.new_session_id()
            return await stream_response(
                relay.stream_chat(payload.message, session_id, payload.model),
                "/chat",
                headers={SESSION_HEADER: session_id},
            )

        result: ChatResult = await relay.chat(
            payload.message, payload.model, payload.session_id
        )
        return JSONResponse(
            content={
                "response": result.response,
                "sessionId": result.session_id,
                "tokens": result.tokens,
                "timestamp": result.timestamp,
            }
        )

    @app.post(
        "/v1/chat/completions",
        dependencies=[Depends(enforce_rate_limit)],
        response_model=None,
    )
    async def chat_completions(
        payload: CompletionRequest, relay: ChatRelay = Depends(get_relay)
    ) -> JSONResponse | StreamingResponse:
        if payload.stream:
            return await stream_response(
                relay.stream_complete(payload.messages, payload.model),
                "/v1/chat/completions",
            )

        result = await relay.complete(payload.messages, payload.model)
        return JSONResponse(
            content={
                "response": result.response,
                "model": result.model,
                "tokens": result.tokens,
                "timestamp": result.timestamp,
            }
        )

    return app
