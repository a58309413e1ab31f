from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from rehearse.domain.constants import (
    CONSTRAINED_CACHE_MAX_ENTRIES,
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_CACHE_TTL_HOURS,
    DEFAULT_SESSION_CAPACITY,
    FULL_CONFIDENCE_REVIEWS,
    MAX_WEIGHT_DELTA,
    MIN_CONFIDENCE_TO_APPLY,
    MIN_REVIEWS_FOR_OPTIMIZATION,
    OPTIMIZER_HISTORY_WINDOW,
    TIER_DAILY_LIMITS,
)

StorageTier = Literal["volatile", "durable", "memory"]

CONFIG_FILES = [
    Path.home() / ".config/rehearse/config.toml",
    Path.home() / ".rehearse.toml",
]


class AppConfig(BaseSettings):
    """
    Configuration model for rehearse.
    Supports loading from:
    1. Environment variables (REHEARSE_*)
    2. Config file (~/.config/rehearse/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="REHEARSE_",
        toml_file=CONFIG_FILES,
        extra="ignore",
    )

    # Paths
    cache_dir: Path = Field(default_factory=lambda: Path.home() / ".cache/rehearse")

    # Session
    session_capacity: int = Field(default=DEFAULT_SESSION_CAPACITY, ge=1)
    tier_limits: dict[str, int] = Field(default_factory=lambda: dict(TIER_DAILY_LIMITS))

    # Local cache. Only "durable" survives a process restart
    storage_chain: list[StorageTier] = Field(default_factory=lambda: ["volatile", "durable", "memory"])
    cache_ttl_hours: float = Field(default=DEFAULT_CACHE_TTL_HOURS, gt=0)
    cache_max_entries: int = Field(default=DEFAULT_CACHE_MAX_ENTRIES, ge=1)
    constrained_cache_max_entries: int = Field(default=CONSTRAINED_CACHE_MAX_ENTRIES, ge=1)
    constrained_client: bool = False

    # Optimizer
    min_reviews_for_optimization: int = Field(default=MIN_REVIEWS_FOR_OPTIMIZATION, ge=1)
    max_weight_delta: float = Field(default=MAX_WEIGHT_DELTA, gt=0, lt=1)
    optimizer_history_window: int = Field(default=OPTIMIZER_HISTORY_WINDOW, ge=1)
    full_confidence_reviews: int = Field(default=FULL_CONFIDENCE_REVIEWS, ge=1)
    min_confidence_to_apply: float = Field(default=MIN_CONFIDENCE_TO_APPLY, ge=0, le=1)

    # Server
    host: str = "127.0.0.1"
    port: int = 8777

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # Earlier sources win: CLI overrides, then env, then the first existing file
        toml_file = None
        for f in CONFIG_FILES:
            if f.exists():
                toml_file = f
                break

        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        else:
            return (
                init_settings,
                env_settings,
            )

    @field_validator("cache_dir", mode="before")
    @classmethod
    def resolve_cache_dir(cls, v: Any) -> Path:
        return Path(v).expanduser().resolve()

    @field_validator("storage_chain")
    @classmethod
    def check_chain(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("storage_chain needs at least one tier")
        if len(set(v)) != len(v):
            raise ValueError(f"storage_chain lists a tier twice: {v}")
        return v

    @property
    def effective_cache_max_entries(self) -> int:
        if self.constrained_client:
            return min(self.cache_max_entries, self.constrained_cache_max_entries)
        return self.cache_max_entries


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/rehearse/config.toml (if exists)
    3. Environment variables (REHEARSE_*)
    4. cli_overrides (passed from Typer)
    """
    # Typer passes every option; None means "not given on the command line"
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
