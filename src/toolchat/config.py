"""Configuration module for toolchat using pydantic-settings."""

from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ToolchatSettings(BaseSettings):
    """Configuration snapshot for a toolchat session and the tool server.

    All settings can be overridden via environment variables with the
    TOOLCHAT_ prefix (or a local .env file). For example, TOOLCHAT_API_KEY
    sets api_key. Instances are frozen: the session reads them once at
    startup and passes them explicitly to every component.
    """

    # Model API
    api_key: SecretStr | None = None
    api_base: str = "https://api.deepseek.com/v1"
    model: str = "deepseek-chat"
    temperature: float = 0.7

    # Tool server RPC
    tools_addr: str = "http://127.0.0.1:50051"
    tool_timeout: float = 30.0
    max_tool_rounds: int = 8

    # Tool server (toolchat-tools)
    server_host: str = "127.0.0.1"
    server_port: int = 50051

    # Diagnostics
    verbose: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"

    model_config = SettingsConfigDict(
        env_prefix="TOOLCHAT_",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    @property
    def resolved_log_dir(self) -> Path:
        """Get the log directory as a Path."""
        return Path(self.log_dir)
