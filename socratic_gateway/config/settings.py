from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SOCRATIC_", case_sensitive=False)

    env: str = "dev"
    log_level: str = "INFO"
    allowed_origins: str = Field(default="", description="Comma separated CORS origins")

    # Chat rate limiting, keyed by client address
    rate_limit_max_requests: int = 20
    rate_limit_window_seconds: float = 60.0
    rate_limit_prune_interval_seconds: float = 60.0
    rate_limit_max_keys: int = 10_000

    # Conversation API rate limiting, keyed by principal
    conversation_rate_limit_max_requests: int = 60
    conversation_rate_limit_window_seconds: float = 60.0

    auth_mode: str = "shared_secret"
    auth_shared_secret: str | None = None
    auth_allow_open: bool = False
    identity_verify_url: str | None = None
    identity_api_key: str | None = None
    identity_session_cookie: str = "__session"
    identity_timeout_s: float = 5.0

    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com"
    provider_timeout_s: float = 60.0
    stub_provider_enabled: bool = False

    max_tool_steps: int = 5
    max_output_tokens: int = 2048

    tavily_api_key: str | None = None
    tavily_base_url: str = "https://api.tavily.com"
    search_timeout_s: float = 10.0

    storage_backend: str = "memory"
    postgres_dsn: str | None = None

    metrics_enabled: bool = True

    @property
    def allowed_origin_set(self) -> frozenset[str]:
        return frozenset(item.strip() for item in self.allowed_origins.split(",") if item.strip())

    @property
    def auth_mode_normalized(self) -> str:
        return self.auth_mode.strip().lower()

    @property
    def storage_backend_normalized(self) -> str:
        return self.storage_backend.strip().lower()

    @property
    def provider_credentials(self) -> set[str]:
        """Providers whose credential (or enable flag) is present."""
        present: set[str] = set()
        if self.anthropic_api_key:
            present.add("anthropic")
        if self.openai_api_key:
            present.add("openai")
        if self.stub_provider_enabled:
            present.add("stub")
        return present


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
