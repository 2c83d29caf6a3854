from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseModel):
    base_url: str = Field(
        "https://openrouter.ai/api/v1",
        description="Base URL of an OpenAI-compatible chat completions endpoint.",
    )
    api_key: SecretStr | None = Field(default=None, description="Bearer token sent to the model endpoint.")
    model: str = Field("meta-llama/llama-4-maverick:free", min_length=1, description="Default completion model.")
    temperature: float = Field(0.7, ge=0.0, le=2.0, description="Default sampling temperature.")
    max_tokens: int = Field(4000, ge=1, description="Default completion token limit.")
    timeout_seconds: float = Field(120.0, ge=1.0, description="Per-request timeout for model calls.")
    referer: str | None = Field(
        default=None,
        description="Optional HTTP-Referer header, used by OpenRouter for attribution.",
    )
    title: str | None = Field(default="Conductor Multi-Agent Pipeline", description="Optional X-Title header.")


class ToolServerSettings(BaseModel):
    id: str = Field(..., min_length=1, description="Stable identifier reported as the tool owner.")
    name: str = Field("", description="Human readable server name used in logs.")
    url: str = Field(..., min_length=1, description="Base URL of the tool server.")


class ToolTransportSettings(BaseModel):
    timeout_seconds: float = Field(15.0, ge=0.1, description="Per-request timeout for tool server calls.")
    discovery_retries: int = Field(1, ge=0, description="Retries for idempotent requests (initialize, tools/list).")
    retry_backoff_seconds: float = Field(0.5, ge=0.0, description="Initial backoff delay between retries.")
    retry_jitter_seconds: float = Field(0.25, ge=0.0, description="Maximum jitter added to retry backoff.")
    verify_ssl: bool = Field(True, description="Whether to verify SSL certificates when calling tool servers.")
    route_by_method: bool = Field(
        True,
        description="POST each JSON-RPC method to '<server url>/<method>' instead of the bare server URL.",
    )
    extra_headers: dict[str, str] = Field(default_factory=dict, description="Additional HTTP headers for tool calls.")


class VerifierSettings(BaseModel):
    max_result_chars: int = Field(1000, ge=100, description="Per-task result size included in verification prompts.")


class ObservabilitySettings(BaseModel):
    prometheus_enabled: bool = Field(True)
    json_logs: bool = Field(True)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")
    api_v1_prefix: str = Field("/api/v1")

    llm: LLMSettings = Field(default_factory=LLMSettings)  # type: ignore[arg-type]
    tool_servers: list[ToolServerSettings] = Field(
        default_factory=list,
        description="Tool servers queried during discovery, in priority order.",
    )
    tools: ToolTransportSettings = Field(default_factory=ToolTransportSettings)  # type: ignore[arg-type]
    verifier: VerifierSettings = Field(default_factory=VerifierSettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]

    frontend_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:4200", "http://127.0.0.1:4200"],
        description="Origins permitted to access the API via CORS.",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()
