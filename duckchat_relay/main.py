"""
Main module for the chat relay process.
"""

from __future__ import annotations

import uvicorn
from fastapi import FastAPI

from duckchat_relay.config import Configuration
from duckchat_relay.logging_utils import configure_logging, logger
from duckchat_relay.relay_service import ChatRelay
from duckchat_relay.server import create_app
from duckchat_relay.sessions import InMemorySessionStore
from duckchat_relay.upstream.client import DuckChatClient
from duckchat_relay.upstream.identity import RandomIdentityProvider
from duckchat_relay.upstream.models import UpstreamConfig
from duckchat_relay.upstream.rate_limiting import (
    FixedWindowRateLimiter,
    RateLimitConfig,
)
from duckchat_relay.upstream.streaming import Dialect


def build_app(config: Configuration) -> FastAPI:
    """Wire client, session store, limiter and relay from configuration."""
    upstream_config = UpstreamConfig.from_settings(
        config.get_upstream_config(),
        config.get_token_config(),
        config.get_models_config(),
    )

    identity_config = config.get_identity_config()
    identity_provider = RandomIdentityProvider(
        user_agents=identity_config["user_agents"],
        origin=identity_config["origin"],
        referer=identity_config["referer"],
    )

    rate_config = config.get_rate_limit_config()
    limiter = FixedWindowRateLimiter(
        RateLimitConfig(
            window_seconds=float(rate_config["window_seconds"]),
            max_requests=int(rate_config["max_requests"]),
        )
    )

    relay = ChatRelay(
        client=DuckChatClient(upstream_config, identity_provider),
        sessions=InMemorySessionStore(),
        dialect=Dialect(config.get_streaming_config()["dialect"]),
        enforce_alternation=bool(
            config.get_session_config()["enforce_alternation"]
        ),
    )

    return create_app(
        relay, limiter, cors_origins=config.get_server_config()["cors_origins"]
    )


def main() -> None:
    """Load configuration and serve the relay with uvicorn."""
    config = Configuration()
    log_level = config.get_logging_config()["level"]
    configure_logging(log_level)

    server_config = config.get_server_config()
    app = build_app(config)

    logger.info(
        "Starting chat relay",
        host=server_config["host"],
        port=server_config["port"],
        upstream=config.get_upstream_config()["base_url"],
        dialect=config.get_streaming_config()["dialect"],
    )
    uvicorn.run(
        app,
        host=server_config["host"],
        port=server_config["port"],
        log_level=log_level.lower(),
    )


if __name__ == "__main__":
    main()
