"""
Configuration and settings for Mira Assistant.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(
        default_factory=lambda: os.environ.get("MIRA_HOST", "0.0.0.0")
    )
    port: int = Field(
        default_factory=lambda: int(os.environ.get("MIRA_PORT", "8080"))
    )
    cors_origins: list[str] = Field(default=["*"])


class LLMConfig(BaseModel):
    """Language model configuration."""

    backend: str = Field(
        default_factory=lambda: os.environ.get("MIRA_LLM_BACKEND", "openai")
    )
    # Unset model and host fall back to the chosen backend's own defaults
    model: Optional[str] = Field(
        default_factory=lambda: os.environ.get("MIRA_LLM_MODEL")
    )
    # OpenAI-compatible endpoint (LM Studio, vLLM, ...) or Ollama host
    host: Optional[str] = Field(
        default_factory=lambda: os.environ.get("MIRA_LLM_HOST")
    )
    api_key: str = Field(
        default_factory=lambda: os.environ.get("MIRA_LLM_API_KEY", "not-needed")
    )
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=300)


class ToolsConfig(BaseModel):
    """External services used by the built-in tools."""

    cloud_url: str = Field(
        default_factory=lambda: os.environ.get("MIRA_CLOUD_URL", "https://api.augmentos.org")
    )
    package_name: str = Field(
        default_factory=lambda: os.environ.get("MIRA_PACKAGE_NAME", "com.augmentos.miraai")
    )
    api_key: str = Field(
        default_factory=lambda: os.environ.get("MIRA_API_KEY", "")
    )
    serpapi_key: str = Field(
        default_factory=lambda: os.environ.get("MIRA_SERPAPI_KEY", "")
    )
    remote_tool_timeout_s: float = Field(default=40.0)
    fetch_remote_tools: bool = Field(default=True)


class Config(BaseModel):
    """Main configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration."""
    global _config
    _config = config
