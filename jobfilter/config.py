"""
Runtime settings for the filtering engine.

Settings are read from ``JOBFILTER_*`` environment variables (optionally
seeded from a ``.env`` file by ``env.load_env``); the OpenAI key and the Apify
token keep their conventional unprefixed names. Credentials are only enforced
when the component that needs them is built, via ``Settings.require``.
"""

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import (
    InvalidSettingError,
    MissingApifyTokenError,
    MissingDatabaseUrlError,
    MissingOpenAIKeyError,
)

ENV_PREFIX = "JOBFILTER_"
DEFAULT_DATABASE_URL = "sqlite:///data/jobfilter.db"
DEFAULT_MODEL = "gpt-5-nano"

_REQUIRED = {
    "database_url": MissingDatabaseUrlError,
    "openai_api_key": MissingOpenAIKeyError,
    "apify_token": MissingApifyTokenError,
}

# Fields read from unprefixed variables
_UNPREFIXED = {
    "openai_api_key": "OPENAI_API_KEY",
    "apify_token": "APIFY_TOKEN",
}


class Settings(BaseSettings):
    database_url: Optional[str] = DEFAULT_DATABASE_URL
    openai_api_key: Optional[str] = Field(
        None, validation_alias=AliasChoices("openai_api_key", "OPENAI_API_KEY")
    )
    model: str = DEFAULT_MODEL
    apify_token: Optional[str] = Field(
        None, validation_alias=AliasChoices("apify_token", "APIFY_TOKEN")
    )
    chunk_size: int = Field(5, ge=1)
    # 0 disables the overall deadline
    deadline_seconds: Optional[float] = Field(300.0, ge=0)
    strict_persistence: bool = False
    ping_timeout_seconds: float = Field(3.0, ge=0)
    retries: int = Field(5, ge=0)
    base_delay: float = Field(0.6, ge=0)
    max_delay: float = Field(8.0, ge=0)
    jitter_ratio: float = Field(0.4, ge=0, le=1)
    log_level: str = "INFO"
    log_dir: Path = Path("logs")

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )

    @field_validator("deadline_seconds")
    @classmethod
    def _zero_disables_deadline(cls, value: Optional[float]) -> Optional[float]:
        return value or None

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    def require(self, name: str) -> str:
        """Return a required setting or raise its configuration error."""
        value = getattr(self, name)
        if not value:
            raise _REQUIRED[name]()
        return value


def env_name(field_name: str) -> str:
    """Environment variable that feeds ``field_name``."""
    if field_name in _UNPREFIXED:
        return _UNPREFIXED[field_name]
    return f"{ENV_PREFIX}{field_name.upper()}"


def load_settings() -> Settings:
    """
    Build settings from the environment.

    Raises:
        InvalidSettingError: For the first variable that fails validation
    """
    try:
        return Settings()
    except ValidationError as e:
        first = e.errors()[0]
        field_name = str(first["loc"][0]) if first["loc"] else "settings"
        raise InvalidSettingError(env_name(field_name), first.get("input")) from e
