"""Configuration management for llmverse."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from llmverse.errors import ConfigurationError

OPENAI = "openai"
AZURE = "azure"
GOOGLE = "google"
MISTRAL = "mistral"
GROQ = "groq"
DEEPSEEK = "deepseek"
QWEN = "qwen"
CHATGLM = "chatglm"
LINGYIWANWU = "lingyiwanwu"

# name -> (default base url, default model)
PROVIDER_DEFAULTS: dict[str, tuple[str, str]] = {
    OPENAI: ("https://api.openai.com/v1", "gpt-4"),
    AZURE: ("", "gpt-4"),
    GOOGLE: ("https://generativelanguage.googleapis.com/v1beta/openai/", "gemini-1.5-pro-latest"),
    MISTRAL: ("https://api.mistral.ai/v1", "mistral-large-latest"),
    GROQ: ("https://api.groq.com/openai/v1", "llama3-70b-8192"),
    DEEPSEEK: ("https://api.deepseek.com/v1", "deepseek-chat"),
    QWEN: ("https://dashscope.aliyuncs.com/compatible-mode/v1", "qwen1.5-110b-chat"),
    CHATGLM: ("https://open.bigmodel.cn/api/paas/v4", "glm-3-turbo"),
    LINGYIWANWU: ("https://api.lingyiwanwu.com/v1", "yi-large"),
}
DEFAULT_AZURE_API_VERSION = "2024-02-01"


class ModelSettings(BaseModel):
    """Settings and capabilities of one generation provider."""

    name: str
    enabled: bool = True
    api_key: str = ""
    api_version: str = ""
    model: str = ""
    base_url: str = ""
    has_vision_support: bool = False
    has_tool_support: bool = False
    has_system_support: bool = True
    has_streaming_support: bool = True
    image_mode: Literal["url", "data_url"] = "url"

    @model_validator(mode="after")
    def _apply_provider_defaults(self) -> ModelSettings:
        if not self.enabled:
            return self
        if self.name not in PROVIDER_DEFAULTS:
            raise ValueError(f"unknown model name {self.name}")
        if not self.api_key:
            raise ValueError(f"{self.name} api_key is required")

        base_url, model = PROVIDER_DEFAULTS[self.name]
        if self.name == AZURE:
            if not self.base_url:
                raise ValueError("azure base_url is required")
            if not self.api_version:
                self.api_version = DEFAULT_AZURE_API_VERSION
        if not self.base_url:
            self.base_url = base_url
        if not self.model:
            self.model = model
        return self

    @property
    def has_image_generation(self) -> bool:
        return self.name == OPENAI


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="LLMVERSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Discord
    discord_bot_token: str = Field(default="", description="Discord bot token")
    discord_proxy: str | None = Field(default=None, description="Optional proxy for the Discord gateway")
    discord_allow_from: set[str] = Field(default_factory=set, description="Allowed sender ids or names")
    discord_allow_channels: set[str] = Field(default_factory=set, description="Allowed channel ids")

    # Logging
    enable_debug: bool = False
    log_level: str = "INFO"
    log_format: Literal["text", "json", "console"] = "text"

    # Generation
    history_max_size: int = Field(default=2048, ge=1, description="Token budget per conversation")
    output_max_size: int = Field(default=4096, ge=1, description="Maximum tokens per response")
    system_prompt: str = "You are a helpful AI assistant."
    temperature: float = 0.7
    default_model: str | None = None
    turn_timeout_seconds: float = Field(default=60.0, gt=0)
    history_dir: Path | None = None

    # Tools
    openweather_key: str | None = None
    imgur_client_id: str | None = None
    show_tool_results: bool = False

    # Delivery
    message_ceiling: int = Field(default=2000, ge=1)
    pacing_interval_seconds: float = Field(default=1.0, gt=0)
    settle_delay_seconds: float = Field(default=1.0, ge=0)

    models: list[ModelSettings] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_default_model(self) -> Settings:
        if self.default_model and self.get_model(self.default_model) is None:
            raise ValueError(f"default_model {self.default_model} is not an enabled model")
        return self

    def enabled_models(self) -> list[ModelSettings]:
        return [model for model in self.models if model.enabled]

    def model_names(self) -> list[str]:
        return sorted(model.name for model in self.enabled_models())

    def get_model(self, name: str) -> ModelSettings | None:
        for model in self.enabled_models():
            if model.name == name:
                return model
        return None

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.enable_debug else self.log_level.upper()


def load_settings(config_file: Path | None = None, *, env_file: Path | None = None) -> Settings:
    """Load settings from the environment, an env file and an optional JSON file.

    Values from the JSON file take precedence over environment variables.
    """
    overrides: dict[str, Any] = {}
    if config_file is not None:
        try:
            overrides = json.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"cannot read settings file {config_file}: {exc}") from exc
        if not isinstance(overrides, dict):
            raise ConfigurationError(f"settings file {config_file} must contain a JSON object")

    if env_file is not None:
        return Settings(_env_file=env_file, **overrides)  # type: ignore[call-arg]
    return Settings(**overrides)
