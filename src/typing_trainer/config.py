"""Application configuration using pydantic-settings."""

import functools
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _find_project_root() -> Path:
    """Find project root by locating pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path(__file__).resolve().parent.parent.parent


class EngineConfig(BaseModel):
    """Tuning constants for the adaptive engine.

    Magnitudes are product-tuning parameters; only their shape (monotone,
    bounded, diminishing returns) is fixed by the engine.
    """

    # Mastery estimator
    gain_rate: float = Field(default=0.25, gt=0, le=1)
    loss_rate: float = Field(default=0.3, gt=0, le=1)
    hint_penalty: float = Field(default=0.1, ge=0, le=1)
    min_speed_factor: float = Field(default=0.25, gt=0)
    max_speed_factor: float = Field(default=1.5, gt=0)
    learning_threshold: float = Field(default=0.4, ge=0, le=1)
    mastered_threshold: float = Field(default=0.9, ge=0, le=1)
    mastered_streak: int = Field(default=3, ge=1)

    # Difficulty adapter
    struggle_latency_ratio: float = Field(default=2.0, gt=1)
    perfect_streak_threshold: int = Field(default=5, ge=1)
    struggle_streak_threshold: int = Field(default=3, ge=1)
    difficulty_increase_factor: float = Field(default=1.08, gt=1)
    difficulty_decrease_factor: float = Field(default=0.9, gt=0, lt=1)
    min_difficulty: float = Field(default=0.8, gt=0)
    max_difficulty: float = Field(default=5.0, gt=0)
    initial_difficulty: float = Field(default=1.0, gt=0)
    # Adjust difficulty from sentence summaries instead of single keystrokes
    per_sentence_difficulty: bool = False
    baseline_smoothing: float = Field(default=0.1, gt=0, le=1)
    baseline_min_ms: float = Field(default=200.0, ge=1)
    baseline_max_ms: float = Field(default=3000.0, ge=1)
    initial_baseline_ms: float = Field(default=1000.0, ge=1)

    # Review scheduler
    base_interval_seconds: float = Field(default=300.0, gt=0)
    growth_factor: float = Field(default=6.0, ge=1)
    min_interval_seconds: float = Field(default=60.0, gt=0)

    # Item selector
    recency_lockout_seconds: float = Field(default=30.0, ge=0)
    recent_sentence_limit: int = Field(default=15, ge=0)
    kanji_ready_count: int = Field(default=30, ge=0)
    weakest_weight_floor: float = Field(default=0.05, gt=0)

    @model_validator(mode="after")
    def _check_ranges(self) -> "EngineConfig":
        if self.min_difficulty > self.max_difficulty:
            raise ValueError("min_difficulty must not exceed max_difficulty")
        if not self.min_difficulty <= self.initial_difficulty <= self.max_difficulty:
            raise ValueError("initial_difficulty must lie within [min_difficulty, max_difficulty]")
        if self.baseline_min_ms > self.baseline_max_ms:
            raise ValueError("baseline_min_ms must not exceed baseline_max_ms")
        if self.min_speed_factor > self.max_speed_factor:
            raise ValueError("min_speed_factor must not exceed max_speed_factor")
        if self.learning_threshold > self.mastered_threshold:
            raise ValueError("learning_threshold must not exceed mastered_threshold")
        return self

    @property
    def base_interval(self) -> timedelta:
        return timedelta(seconds=self.base_interval_seconds)

    @property
    def min_interval(self) -> timedelta:
        return timedelta(seconds=self.min_interval_seconds)

    @property
    def recency_lockout(self) -> timedelta:
        return timedelta(seconds=self.recency_lockout_seconds)


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads from settings.yaml."""

    def get_field_value(self, field_name: str) -> tuple[Any, str, bool]:
        """Not used - we implement __call__ instead."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        """Load settings from YAML file."""
        yaml_path = _find_project_root() / "config" / "settings.yaml"
        if not yaml_path.exists():
            return {}

        with open(yaml_path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        # Flatten nested structure to match Settings field names
        flattened: dict[str, Any] = {}
        if 'server' in data:
            flattened['host'] = data['server'].get('host')
            flattened['port'] = data['server'].get('port')
        if 'storage' in data:
            flattened['data_dir'] = data['storage'].get('data_dir')
        if 'content' in data:
            flattened['sentences_path'] = data['content'].get('sentences_path')
        if 'selection' in data:
            flattened['rng_seed'] = data['selection'].get('rng_seed')
        if 'engine' in data:
            flattened['engine'] = data['engine']

        # Remove None values
        return {k: v for k, v in flattened.items() if v is not None}


class Settings(BaseSettings):
    """Application settings loaded from environment and config files."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    # Storage
    data_dir: Path | None = Field(default=None)

    # Content
    sentences_path: Path | None = Field(default=None)

    # Selection tie-breaking; None seeds from the OS
    rng_seed: int | None = Field(default=None)

    # Engine tuning
    engine: EngineConfig = Field(default_factory=EngineConfig)

    # Paths
    project_root: Path = Field(default_factory=_find_project_root)

    @property
    def state_dir(self) -> Path:
        d = self.data_dir or (self.project_root / "data" / "state")
        d.mkdir(parents=True, exist_ok=True)
        return d

    @property
    def sentences_file(self) -> Path:
        return self.sentences_path or (self.project_root / "config" / "sentences.yaml")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings sources to include YAML file.

        Priority order (highest to lowest):
        1. init_settings (arguments passed to Settings())
        2. env_settings (environment variables)
        3. dotenv_settings (.env file)
        4. YamlSettingsSource (settings.yaml)
        5. file_secret_settings
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSettingsSource(settings_cls),
            file_secret_settings,
        )


@functools.lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()


def load_sentence_catalog(path: Path) -> list[dict]:
    """Load the sentence catalogue from a YAML file."""
    if not path.exists():
        raise FileNotFoundError(f"Sentence catalogue not found: {path}")
    with open(path, encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    return data.get('sentences', [])
