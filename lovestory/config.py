"""Configuration settings for lovestory."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Client settings loaded from environment."""

    # Supabase
    supabase_url: str
    # New key system (preferred)
    supabase_publishable_key: str | None = None  # Client/public access
    supabase_secret_key: str | None = None  # Admin access, account purge only
    # Legacy keys (deprecated)
    supabase_anon_key: str | None = None
    supabase_service_role_key: str | None = None

    # Object storage
    storage_bucket: str = "memory-images"
    storage_cache_control: str = "3600"

    # Edge functions
    functions_path: str = "/functions/v1"
    functions_timeout: float = 10.0

    # Image attachments
    max_images_per_memory: int = 10
    max_image_bytes: int = 5 * 1024 * 1024  # 5MB
    allowed_image_types: list[str] = [
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
    ]

    class Config:
        env_prefix = "LOVESTORY_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    @property
    def public_key(self) -> str | None:
        return self.supabase_publishable_key or self.supabase_anon_key

    @property
    def admin_key(self) -> str | None:
        return self.supabase_secret_key or self.supabase_service_role_key

    @property
    def functions_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}{self.functions_path}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
