"""Configuration management for Ephileo."""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ephileo.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.ephileo/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"

PermissionLevelName = Literal["write-only", "read-and-write", "auto-accept"]


class ProviderConfig(BaseModel):
    """One OpenAI-compatible endpoint (exo, ollama, vLLM, ...)."""

    base_url: str
    model: str
    api_key: str = ""


def _default_providers() -> dict[str, ProviderConfig]:
    return {
        "ollama": ProviderConfig(base_url="http://127.0.0.1:11434/v1", model="llama3.2"),
    }


class AgentConfig(BaseModel):
    """Turn loop configuration."""

    max_turns: int = Field(default=20, ge=1)
    max_tokens: int = 4096
    request_timeout: float = 120.0


class ToolsConfig(BaseModel):
    """Tools configuration."""

    permission_level: PermissionLevelName = "write-only"
    shell_timeout: int = 30


class MemoryConfig(BaseModel):
    """Learning journal location."""

    dir: str = "./memory"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "WARNING"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Ephileo."""

    provider: str = "ollama"
    providers: dict[str, ProviderConfig] = Field(default_factory=_default_providers)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="EPHILEO_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            config = cls()
            config._anchor_memory_dir(Path.cwd())
            return config

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

        try:
            config = cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid config file {config_path}: {e}") from e
        config._anchor_memory_dir(config_path.parent)
        return config

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration, then apply the EPHILEO_* provider overrides."""
        config = cls.from_yaml(path)
        config._apply_env_overrides()
        return config

    def _anchor_memory_dir(self, base: Path) -> None:
        raw = Path(self.memory.dir).expanduser()
        if not raw.is_absolute():
            raw = base.resolve() / raw
        self.memory.dir = str(raw.resolve())

    def _apply_env_overrides(self) -> None:
        provider = os.environ.get("EPHILEO_PROVIDER")
        if provider:
            self.provider = provider

        base_url = os.environ.get("EPHILEO_BASE_URL")
        model = os.environ.get("EPHILEO_MODEL")
        api_key = os.environ.get("EPHILEO_API_KEY")
        if base_url is None and model is None and api_key is None:
            return
        active = self.providers.get(self.provider) or ProviderConfig(base_url="", model="")
        self.providers[self.provider] = ProviderConfig(
            base_url=base_url if base_url is not None else active.base_url,
            model=model if model is not None else active.model,
            api_key=api_key if api_key is not None else active.api_key,
        )

    def active_provider(self) -> ProviderConfig:
        """Return the selected provider entry."""
        provider = self.providers.get(self.provider)
        if provider is None:
            available = ", ".join(self.providers) or "(none)"
            raise ConfigurationError(
                f'Provider "{self.provider}" not found in config. Available: {available}'
            )
        return provider


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
