"""Configuration management for testsmith."""

from __future__ import annotations

import shlex
import sys
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from testsmith.errors import ConfigurationError

DEFAULT_MODEL = "gemini:gemini-2.5-flash"
DEFAULT_HOME = Path.home() / ".local" / "lib" / "testsmith"
WORKER_MODULE = "testsmith.worker"


class Settings(BaseSettings):
    """Application settings, built once at startup and passed explicitly."""

    model_config = SettingsConfigDict(
        env_prefix="TESTSMITH_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Model
    api_key: str | None = Field(default=None, description="Credential for the generative backend")
    model: str = Field(default=DEFAULT_MODEL, description="Model in provider:model form")
    api_base: str | None = Field(default=None, description="Optional API base URL")
    max_tokens: int = Field(default=4096, ge=1)
    max_steps: int = Field(default=10, ge=1, description="Maximum tool rounds per chat turn")
    model_timeout_seconds: int = Field(default=90, ge=1)

    # External collaborators
    embedding_service_url: str | None = Field(default=None, description="Embedding service endpoint")
    embed_database_url: str | None = Field(default=None, description="Similarity store connection string")
    request_timeout_seconds: int = Field(default=30, ge=1)
    ollama_api_key: str | None = Field(default=None, description="Enables web_search through Ollama")
    ollama_api_base: str | None = Field(default=None)

    # Test generation
    go_binary: str = Field(default="go")
    command_timeout_seconds: int = Field(default=30, ge=1)
    max_test_attempts: int = Field(default=3, ge=1)
    neighbor_limit: int = Field(default=10, ge=1)

    # Processes
    work_dir: Path | None = Field(default=None, description="Root that tool paths resolve against")
    worker_dir: Path | None = Field(default=None, description="Working directory of the worker process")
    worker_command: str | None = Field(default=None, description="Override for the worker entry point")
    home: Path = Field(default=DEFAULT_HOME, description="State directory for logs")

    log_level: str = Field(default="INFO")

    @property
    def resolved_work_dir(self) -> Path:
        return (self.work_dir or Path.cwd()).expanduser().resolve()

    @property
    def resolved_worker_dir(self) -> Path:
        return (self.worker_dir or Path.cwd()).expanduser().resolve()

    def resolve_home(self) -> Path:
        return self.home.expanduser()

    def worker_argv(self) -> list[str]:
        if self.worker_command:
            return shlex.split(self.worker_command)
        return [sys.executable, "-m", WORKER_MODULE]

    def require_embedding_service_url(self) -> str:
        if not self.embedding_service_url:
            raise ConfigurationError("TESTSMITH_EMBEDDING_SERVICE_URL is not set")
        return self.embedding_service_url

    def require_embed_database_url(self) -> str:
        if not self.embed_database_url:
            raise ConfigurationError("TESTSMITH_EMBED_DATABASE_URL is not set")
        return self.embed_database_url

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("generative backend credential is not set")
        return self.api_key


def load_settings(work_dir: Path | None = None, **overrides: object) -> Settings:
    """Load settings from the environment and an optional .env file.

    Args:
        work_dir: Optional working-root override
        **overrides: Explicit values that win over the environment

    Returns:
        Settings instance
    """
    updates = {key: value for key, value in overrides.items() if value is not None}
    if work_dir is not None:
        updates["work_dir"] = work_dir
    return Settings(**updates)
