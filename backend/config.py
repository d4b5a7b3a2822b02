"""Centralized configuration — all env vars in one place."""

import os


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self):
        self.cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
        self.git_sha: str = os.getenv("GIT_SHA", "unknown")
        self.environment: str = os.getenv("ENVIRONMENT", "local")

        # Remote data store (Supabase PostgREST)
        self.supabase_url: str | None = os.getenv("SUPABASE_URL")
        self.supabase_anon_key: str | None = os.getenv("SUPABASE_ANON_KEY")
        self.data_source_timeout: float = float(os.getenv("DATA_SOURCE_TIMEOUT_S", "10"))

        # Analytics cache
        self.cache_default_ttl_ms: int = int(os.getenv("ANALYTICS_CACHE_TTL_MS", "300000"))
        self.cache_max_entries: int = int(os.getenv("ANALYTICS_CACHE_MAX_ENTRIES", "100"))
        self.cache_sweep_interval_ms: int = int(
            os.getenv("ANALYTICS_CACHE_SWEEP_INTERVAL_MS", "60000")
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def validate(self) -> list[str]:
        """Return list of missing required env vars for report queries."""
        required = ["SUPABASE_URL", "SUPABASE_ANON_KEY"]
        return [var for var in required if not getattr(self, _attr_for(var))]


settings = Settings()


def _attr_for(env_var: str) -> str:
    """Map env var name to Settings attribute name."""
    mapping = {
        "SUPABASE_ANON_KEY": "supabase_anon_key",
    }
    return mapping.get(env_var, env_var.lower())
