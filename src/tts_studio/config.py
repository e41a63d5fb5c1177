from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


CLOUD_VOICES: List[str] = ["alloy", "verse", "luna", "aria", "coral", "sage"]
CLOUD_FORMATS: List[str] = ["mp3", "wav", "opus", "aac"]


def _strip_quotes(s: str) -> str:
    s = (s or "").strip()
    if len(s) >= 2 and ((s[0] == s[-1]) and s[0] in ("'", '"')):
        s = s[1:-1].strip()
    return s


def _env_files() -> tuple[str, str]:
    """
    Allow running CLI commands from subdirectories (e.g. /workspace/scripts).
    We first check for a local .env, then fall back to the repo-root .env.
    """
    repo_root_env = str(Path(__file__).resolve().parents[2] / ".env")
    return (".env", repo_root_env)


class OpenAISettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    model: str = Field(default="gpt-4o-mini-tts", alias="OPENAI_TTS_MODEL")
    # Unset means "whatever httpx uses by default"; the forward is one-shot.
    timeout_seconds: Optional[float] = Field(default=None, alias="OPENAI_TIMEOUT_SECONDS")

    @field_validator("api_key", mode="before")
    @classmethod
    def _normalize_api_key(cls, v: object) -> Optional[str]:
        if v is None:
            return None
        s = _strip_quotes(str(v))
        return s or None

    @field_validator("model", mode="before")
    @classmethod
    def _normalize_model(cls, v: object) -> str:
        return _strip_quotes(str(v))

    @field_validator("base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, v: object) -> str:
        return _strip_quotes(str(v)).rstrip("/")

    @field_validator("timeout_seconds", mode="before")
    @classmethod
    def _normalize_timeout(cls, v: object) -> Optional[float]:
        if v is None:
            return None
        s = _strip_quotes(str(v))
        if not s:
            return None
        return float(s)


class UiSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    bind_host: str = Field(default="127.0.0.1", alias="UI_BIND_HOST")
    port: int = Field(default=3000, alias="UI_PORT")
    title: str = Field(default="Pro TTS Studio", alias="UI_TITLE")

    @field_validator("bind_host", "title", mode="before")
    @classmethod
    def _norm_str(cls, v: object) -> str:
        return _strip_quotes(str(v)).strip()


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Where the gateway (POST /api/tts) is reachable from the CLI.
    gateway_url: str = Field(default="http://127.0.0.1:3000", alias="TTS_STUDIO_URL")
    download_dir: str = Field(default=".", alias="TTS_STUDIO_DOWNLOAD_DIR")
    timeout_seconds: float = Field(default=60, alias="TTS_STUDIO_TIMEOUT_SECONDS")

    @field_validator("gateway_url", mode="before")
    @classmethod
    def _normalize_gateway_url(cls, v: object) -> str:
        return _strip_quotes(str(v)).rstrip("/")

    @field_validator("download_dir", mode="before")
    @classmethod
    def _norm_dir(cls, v: object) -> str:
        return _strip_quotes(str(v)) or "."


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    name: str = Field(default="tts-studio", alias="TTS_STUDIO_NAME")
    log_level: str = Field(default="INFO", alias="TTS_STUDIO_LOG_LEVEL")

    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    ui: UiSettings = Field(default_factory=UiSettings)
    client: ClientSettings = Field(default_factory=ClientSettings)
