"""Application configuration using pydantic-settings."""

import functools
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _find_project_root() -> Path:
    """Find project root by locating pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path(__file__).resolve().parent.parent.parent


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
        flattened = {}
        if 'server' in data:
            flattened['host'] = data['server'].get('host')
            flattened['port'] = data['server'].get('port')
        if 'personalization' in data:
            personalization = data['personalization']
            flattened['feed_batch_size'] = personalization.get('feed_batch_size')
            flattened['initial_feed_size'] = personalization.get('initial_feed_size')
        if 'sync' in data:
            sync = data['sync']
            flattened['sync_interval_seconds'] = sync.get('interval_seconds')
            flattened['teardown_timeout_seconds'] = sync.get('teardown_timeout_seconds')
            flattened['max_conflict_attempts'] = sync.get('max_conflict_attempts')
        if 'supabase' in data:
            flattened['supabase_url'] = data['supabase'].get('url')
            flattened['profiles_table'] = data['supabase'].get('profiles_table')
        if 'openai' in data:
            flattened['generation_model'] = data['openai'].get('generation_model')
            flattened['generation_batch_size'] = data['openai'].get('generation_batch_size')

        # Remove None values
        return {k: v for k, v in flattened.items() if v is not None}


class Settings(BaseSettings):
    """Application settings loaded from environment and config files."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Feed
    feed_batch_size: int = Field(default=4, ge=1)
    initial_feed_size: int = Field(default=8, ge=1)

    # Sync
    sync_interval_seconds: float = Field(default=300.0, gt=0)
    teardown_timeout_seconds: float = Field(default=5.0, gt=0)
    max_conflict_attempts: int = Field(default=3, ge=1)

    # Remote profile store (in-memory store is used when url is unset)
    supabase_url: str | None = Field(default=None)
    supabase_key: str | None = Field(default=None)
    profiles_table: str = Field(default="user_profiles")

    # Content generation (disabled when no key is configured)
    openai_api_key: str | None = Field(default=None)
    generation_model: str = Field(default="gpt-4o-mini")
    generation_batch_size: int = Field(default=12, ge=1)

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Paths
    project_root: Path = Field(default_factory=_find_project_root)

    @property
    def profile_cache_dir(self) -> Path:
        d = self.project_root / "data" / "profiles"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @property
    def remote_store_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

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
