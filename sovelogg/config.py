"""Configuration loading for Sovelogg."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class NodeConfig:
    name: str = "sovelogg"


@dataclass
class ServerConfig:
    """Configuration for the event log server."""

    host: str = "127.0.0.1"
    port: int = 3000
    db_path: str = "~/.sovelogg/events.db"
    timezone: str | None = None  # IANA name; None uses the system zone
    deduplicate_retries: bool = True
    max_batch_size: int = 500
    channel_queue_size: int = 16
    keepalive_seconds: float = 15.0


@dataclass
class ClientConfig:
    """Configuration for the client sync agent."""

    server_url: str = "http://127.0.0.1:3000"
    state_path: str = "~/.sovelogg/client.db"
    suppression_window_seconds: float = 1.0
    timeout: float = 10.0
    max_retries: int = 3
    reconnect_max_seconds: float = 60.0


@dataclass
class PredictionConfig:
    """Configuration for schedule predictions."""

    history_days: int = 7


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    prediction: PredictionConfig = field(default_factory=PredictionConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with SOVELOGG_ prefix."""
    return os.environ.get(f"SOVELOGG_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("NODE_NAME"):
        config.node.name = name

    # Server overrides
    if host := _get_env("HOST"):
        config.server.host = host
    if port := _get_env("PORT"):
        config.server.port = int(port)
    if db_path := _get_env("DB_PATH"):
        config.server.db_path = db_path
    if tz := _get_env("TIMEZONE"):
        config.server.timezone = tz
    if dedup := _get_env("DEDUPLICATE_RETRIES"):
        config.server.deduplicate_retries = _is_true(dedup)
    if max_batch := _get_env("MAX_BATCH_SIZE"):
        config.server.max_batch_size = int(max_batch)

    # Client overrides
    if server_url := _get_env("SERVER_URL"):
        config.client.server_url = server_url
    if state_path := _get_env("CLIENT_STATE_PATH"):
        config.client.state_path = state_path
    if window := _get_env("SUPPRESSION_WINDOW"):
        config.client.suppression_window_seconds = float(window)

    if history := _get_env("HISTORY_DAYS"):
        config.prediction.history_days = int(history)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "node" in data:
                config.node = NodeConfig(
                    name=data["node"].get("name", config.node.name)
                )

            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                    db_path=server_data.get("db_path", config.server.db_path),
                    timezone=server_data.get("timezone", config.server.timezone),
                    deduplicate_retries=server_data.get(
                        "deduplicate_retries", config.server.deduplicate_retries
                    ),
                    max_batch_size=server_data.get(
                        "max_batch_size", config.server.max_batch_size
                    ),
                    channel_queue_size=server_data.get(
                        "channel_queue_size", config.server.channel_queue_size
                    ),
                    keepalive_seconds=server_data.get(
                        "keepalive_seconds", config.server.keepalive_seconds
                    ),
                )

            if "client" in data:
                client_data = data["client"]
                config.client = ClientConfig(
                    server_url=client_data.get("server_url", config.client.server_url),
                    state_path=client_data.get("state_path", config.client.state_path),
                    suppression_window_seconds=client_data.get(
                        "suppression_window_seconds",
                        config.client.suppression_window_seconds,
                    ),
                    timeout=client_data.get("timeout", config.client.timeout),
                    max_retries=client_data.get(
                        "max_retries", config.client.max_retries
                    ),
                    reconnect_max_seconds=client_data.get(
                        "reconnect_max_seconds", config.client.reconnect_max_seconds
                    ),
                )

            if "prediction" in data:
                config.prediction = PredictionConfig(
                    history_days=data["prediction"].get(
                        "history_days", config.prediction.history_days
                    ),
                )

    return _apply_env_overrides(config)
