"""Configuration schema using Pydantic.

Single data model and defaults, persisted to ~/.brprelay/config.json and
overridable through BRPRELAY_* environment variables.
"""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RELAY_PATH = "brp-relay"


class ServerConfig(BaseModel):
    """HTTP/WebSocket listener configuration."""
    host: str = "127.0.0.1"
    port: int = 15702  # Standard BRP HTTP port


class RelayConfig(BaseModel):
    """Relay broker configuration."""
    enabled: bool = True
    path: str = DEFAULT_RELAY_PATH  # Duplex WebSocket path, without leading slash
    call_timeout_seconds: float = 30.0
    send_timeout_seconds: float = 5.0
    watch_buffer_size: int = Field(default=8, ge=1)
    max_frame_bytes: int = Field(default=10 * 1024 * 1024, ge=1)

    @property
    def route(self) -> str:
        return "/" + self.path.strip("/")


class PeerConfig(BaseModel):
    """Remote peer (duplex client) configuration."""
    url: str | None = None  # Full ws:// or wss:// URL; derived from base_url + path when unset
    base_url: str = "http://127.0.0.1:15702"
    path: str = DEFAULT_RELAY_PATH
    reconnect_delay_seconds: float = 1.0
    max_reconnect_delay_seconds: float = 10.0


class Config(BaseSettings):
    """Root configuration for brprelay."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    peer: PeerConfig = Field(default_factory=PeerConfig)

    model_config = SettingsConfigDict(
        env_prefix="BRPRELAY_",
        env_nested_delimiter="__",
    )
