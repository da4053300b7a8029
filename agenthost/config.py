# agenthost/config.py
"""
Configuration for the agent host.

All configuration flows through this module. Values are loaded from
environment variables (and a ``.env`` file in the working directory) and
validated with Pydantic. Process-wide provider secrets live in
``ProviderSettings`` and are memoized by ``get_settings()`` so the token
resolver and the runtime see the same values; teardown clears the memo.
"""

from __future__ import annotations

import functools
from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


_ENV_FILE = Path(".env")

_MB = 1024 * 1024


class WatchdogConfig(BaseSettings):
    """Configuration for the periodic memory watchdog."""

    check_interval: float = Field(60.0, alias="AGENTHOST_MEMORY_CHECK_INTERVAL")
    warning_mb: int = Field(350, alias="AGENTHOST_MEMORY_WARNING_MB")
    critical_mb: int = Field(375, alias="AGENTHOST_MEMORY_CRITICAL_MB")
    # Advisory gc.collect() passes after warnings, bring-up steps and console rounds.
    gc_hints: bool = Field(True, alias="AGENTHOST_GC_HINTS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "WatchdogConfig":
        self.check_interval = max(1.0, float(self.check_interval))
        self.warning_mb = max(1, int(self.warning_mb))
        self.critical_mb = max(self.warning_mb, int(self.critical_mb))
        return self

    @property
    def warning_bytes(self) -> int:
        return self.warning_mb * _MB

    @property
    def critical_bytes(self) -> int:
        return self.critical_mb * _MB


class BringUpConfig(BaseSettings):
    """Configuration for sequential agent bring-up."""

    agent_start_delay: float = Field(2.0, alias="AGENTHOST_AGENT_START_DELAY")
    data_dir: Path = Field(Path("./data"), alias="AGENTHOST_DATA_DIR")
    characters_dir: Path = Field(Path("./characters"), alias="AGENTHOST_CHARACTERS_DIR")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "BringUpConfig":
        self.agent_start_delay = max(0.0, float(self.agent_start_delay))
        return self

    @property
    def database_path(self) -> Path:
        return self.data_dir / "cache.db"


class ServerConfig(BaseSettings):
    """Where the local direct client listens."""

    host: str = Field("127.0.0.1", alias="SERVER_HOST")
    port: int = Field(3001, alias="SERVER_PORT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_port(self) -> "ServerConfig":
        self.port = max(0, min(65535, int(self.port)))
        return self

    @property
    def base_url(self) -> str:
        host = "localhost" if self.host in {"0.0.0.0", "127.0.0.1"} else self.host
        return f"http://{host}:{self.port}"


class ConsoleConfig(BaseSettings):
    """Configuration for the interactive console loop."""

    enabled: bool = Field(True, alias="AGENTHOST_CONSOLE_ENABLED")
    rearm_delay: float = Field(0.1, alias="AGENTHOST_CONSOLE_REARM_DELAY")
    http_timeout: float = Field(120.0, alias="AGENTHOST_CONSOLE_HTTP_TIMEOUT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "ConsoleConfig":
        self.rearm_delay = max(0.0, float(self.rearm_delay))
        self.http_timeout = max(1.0, float(self.http_timeout))
        return self


class TwitterConfig(BaseSettings):
    """Credentials and cadence for the Twitter (X) platform client."""

    username: Optional[str] = Field(None, alias="TWITTER_USERNAME")
    access_token: Optional[str] = Field(None, alias="TWITTER_ACCESS_TOKEN")
    api_base: str = Field("https://api.twitter.com/2", alias="TWITTER_API_BASE")
    # Minutes between generated posts.
    post_interval_min: float = Field(90.0, alias="POST_INTERVAL_MIN")
    post_interval_max: float = Field(180.0, alias="POST_INTERVAL_MAX")

    model_config = {
        "env_file": _ENV_FILE,
        "extra": "ignore",
        "populate_by_name": True,
        "env_ignore_empty": True,
    }

    @model_validator(mode="after")
    def normalize_limits(self) -> "TwitterConfig":
        self.post_interval_min = max(1.0, float(self.post_interval_min))
        self.post_interval_max = max(self.post_interval_min, float(self.post_interval_max))
        if isinstance(self.access_token, str):
            self.access_token = self.access_token.strip() or None
        self.api_base = self.api_base.rstrip("/")
        return self


class LoggingConfig(BaseSettings):
    level: str = Field("INFO", alias="AGENTHOST_LOG_LEVEL")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_level(self) -> "LoggingConfig":
        self.level = self.level.strip().upper() or "INFO"
        return self


class ProviderSettings(BaseSettings):
    """Process-wide provider secrets, consulted after a character's own secrets."""

    openai_api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    claude_api_key: Optional[str] = Field(None, alias="CLAUDE_API_KEY")
    llamacloud_api_key: Optional[str] = Field(None, alias="LLAMACLOUD_API_KEY")
    together_api_key: Optional[str] = Field(None, alias="TOGETHER_API_KEY")
    xai_api_key: Optional[str] = Field(None, alias="XAI_API_KEY")
    redpill_api_key: Optional[str] = Field(None, alias="REDPILL_API_KEY")
    openrouter_api_key: Optional[str] = Field(None, alias="OPENROUTER_API_KEY")
    grok_api_key: Optional[str] = Field(None, alias="GROK_API_KEY")
    heurist_api_key: Optional[str] = Field(None, alias="HEURIST_API_KEY")
    groq_api_key: Optional[str] = Field(None, alias="GROQ_API_KEY")

    model_config = {
        "env_file": _ENV_FILE,
        "extra": "ignore",
        "populate_by_name": True,
        "env_ignore_empty": True,
    }

    def get(self, key: str) -> Optional[str]:
        """Look up a secret by its environment variable name."""
        for name, info in type(self).model_fields.items():
            if info.alias == key:
                value = getattr(self, name)
                return value or None
        return None


@functools.lru_cache(maxsize=1)
def get_settings() -> ProviderSettings:
    """Return the memoized process-wide provider settings."""
    return ProviderSettings()


class AgentHostConfig:
    """
    Master configuration that composes all subsystem configs.

    Every component receives its slice of config from here; nothing reads
    the environment on its own except ``get_settings()``.
    """

    def __init__(self) -> None:
        self.watchdog = WatchdogConfig()
        self.bringup = BringUpConfig()
        self.server = ServerConfig()
        self.console = ConsoleConfig()
        self.twitter = TwitterConfig()
        self.logging = LoggingConfig()

        self._resolve_paths()

    def _resolve_paths(self) -> None:
        """Resolve relative directories against the current working directory."""
        cwd = Path.cwd()

        def _resolve(p: Path) -> Path:
            if p.is_absolute():
                return p
            return (cwd / p).resolve()

        self.bringup.data_dir = _resolve(self.bringup.data_dir)
        self.bringup.characters_dir = _resolve(self.bringup.characters_dir)

    def __repr__(self) -> str:
        return (
            f"AgentHostConfig(port={self.server.port}, "
            f"memory={self.watchdog.warning_mb}/{self.watchdog.critical_mb}MB, "
            f"data_dir={self.bringup.data_dir})"
        )
