"""Configuration management for the chat relay."""

import os
from typing import Any

import yaml
from dotenv import load_dotenv

CONFIG_PATH_ENV = "DUCKCHAT_RELAY_CONFIG"
UPSTREAM_URL_ENV = "DUCKCHAT_UPSTREAM_URL"

VALID_DIALECTS = ["sse", "duckduckgo"]
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Configuration:
    """Manages configuration and environment variables for the relay."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env before resolving the config path
        self._config = self._load_yaml_config(config_path)

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "Configuration":
        """Build a configuration from an in-memory dictionary.

        Args:
            config: Parsed configuration with the same layout as config.yaml.

        Returns:
            Configuration instance backed by the given dictionary.
        """
        if not isinstance(config, dict):
            raise ValueError(f"Config must be a dict, got {type(config)}")
        instance = cls.__new__(cls)
        instance._config = config
        return instance

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self, config_path: str | None) -> dict[str, Any]:
        """Load configuration from YAML file."""
        path = (
            config_path
            or os.getenv(CONFIG_PATH_ENV)
            or os.path.join(os.path.dirname(__file__), "config.yaml")
        )
        with open(path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary.

        Returns:
            The complete configuration dictionary.
        """
        return self._config

    def _require(self, section: str, keys: list[str]) -> dict[str, Any]:
        """Return a config section after checking every key is present."""
        section_config = self._config.get(section, {})
        for key in keys:
            if key not in section_config:
                raise ValueError(
                    f"{section}.{key} must be explicitly configured in config.yaml"
                )
        return section_config

    def get_upstream_config(self) -> dict[str, Any]:
        """Get upstream provider configuration.

        The base URL can be overridden with the DUCKCHAT_UPSTREAM_URL
        environment variable.

        Returns:
            Upstream configuration dictionary with validated values.

        Raises:
            ValueError: If required upstream parameters are missing or invalid.
        """
        upstream_config = self._require(
            "upstream",
            [
                "base_url", "status_path", "chat_path",
                "token_timeout", "chat_timeout", "read_timeout",
            ],
        )

        # Create new dictionary without mutating the original
        result = {**upstream_config}
        env_url = os.getenv(UPSTREAM_URL_ENV)
        if env_url:
            result["base_url"] = env_url

        if not result["base_url"].startswith(("http://", "https://")):
            raise ValueError("upstream.base_url must be an http(s) URL")
        for key in ["token_timeout", "chat_timeout", "read_timeout"]:
            if result[key] <= 0:
                raise ValueError(f"upstream.{key} must be positive")

        return result

    def get_identity_config(self) -> dict[str, Any]:
        """Get the browser identity pool used for upstream requests.

        Returns:
            Identity configuration with user_agents, origin and referer.

        Raises:
            ValueError: If the user agent pool is missing or empty.
        """
        identity_config = self._require(
            "identity", ["user_agents", "origin", "referer"]
        )

        user_agents = identity_config["user_agents"]
        if not isinstance(user_agents, list) or not user_agents:
            raise ValueError("identity.user_agents must be a non-empty list")

        return identity_config

    def get_models_config(self) -> dict[str, Any]:
        """Get the model code table.

        Returns:
            Dictionary with the code -> model name table and the default code.

        Raises:
            ValueError: If the table is empty or the default code is unknown.
        """
        models_config = self._require("models", ["default", "table"])

        table = {str(code): name for code, name in models_config["table"].items()}
        if not table:
            raise ValueError("models.table must contain at least one model")

        default = str(models_config["default"])
        if default not in table:
            raise ValueError(
                f"models.default '{default}' is not a code in models.table"
            )

        return {"default": default, "table": table}

    def get_token_config(self) -> dict[str, Any]:
        """Get VQD token acquisition retry policy.

        Returns:
            Token configuration with max_attempts and backoff_step.

        Raises:
            ValueError: If retry parameters are missing or invalid.
        """
        token_config = self._require("token", ["max_attempts", "backoff_step"])

        if token_config["max_attempts"] < 1:
            raise ValueError("token.max_attempts must be at least 1")
        if token_config["backoff_step"] < 0:
            raise ValueError("token.backoff_step must be non-negative")

        return token_config

    def get_streaming_config(self) -> dict[str, Any]:
        """Get stream decoding configuration.

        Returns:
            Streaming configuration dictionary.

        Raises:
            ValueError: If the dialect is missing or unknown.
        """
        streaming_config = self._require("streaming", ["dialect"])

        if streaming_config["dialect"] not in VALID_DIALECTS:
            raise ValueError(
                f"streaming.dialect must be one of: {VALID_DIALECTS}"
            )

        return streaming_config

    def get_rate_limit_config(self) -> dict[str, Any]:
        """Get inbound rate limit configuration.

        Returns:
            Rate limit configuration with window_seconds and max_requests.

        Raises:
            ValueError: If rate limit parameters are missing or invalid.
        """
        rate_config = self._require(
            "rate_limit", ["window_seconds", "max_requests"]
        )

        if rate_config["window_seconds"] <= 0:
            raise ValueError("rate_limit.window_seconds must be positive")
        if rate_config["max_requests"] < 1:
            raise ValueError("rate_limit.max_requests must be at least 1")

        return rate_config

    def get_session_config(self) -> dict[str, Any]:
        """Get session handling configuration.

        Returns:
            Session configuration dictionary.
        """
        return self._require("sessions", ["enforce_alternation"])

    def get_server_config(self) -> dict[str, Any]:
        """Get HTTP server configuration.

        Returns:
            Server configuration with host, port and cors_origins.

        Raises:
            ValueError: If server parameters are missing or invalid.
        """
        server_config = self._require("server", ["host", "port", "cors_origins"])

        port = server_config["port"]
        if not isinstance(port, int) or not 0 < port < 65536:
            raise ValueError("server.port must be an integer between 1 and 65535")

        return server_config

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML.

        Returns:
            Logging configuration dictionary.
        """
        logging_config = {**self._config.get("logging", {})}
        level = str(logging_config.get("level", "INFO")).upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {VALID_LOG_LEVELS}")
        logging_config["level"] = level
        return logging_config
