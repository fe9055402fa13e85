from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================
    environment: str = "dev"  # "dev", "prod"
    debug: bool = True

    # ==========================================================================
    # DATABASE
    # ==========================================================================
    database_url: str = "sqlite:///./veritas.db"

    # ==========================================================================
    # BLOB STORAGE
    # ==========================================================================
    storage_dir: str = "./storage/blobs"
    public_base_url: str = ""  # Falls back to the request base URL when empty
    upload_url_ttl: int = 3600  # Seconds an issued upload target stays valid
    max_upload_bytes: int = 20 * 1024 * 1024

    # ==========================================================================
    # AUTH
    # ==========================================================================
    session_ttl: int = 7 * 24 * 60 * 60  # 7 days
    session_header: str = "Authorization"  # "Bearer <token>"
    password_min_length: int = 8
    bcrypt_rounds: int = 12  # Work factor; higher = slower but more secure

    # ==========================================================================
    # ADMIN API KEY
    # ==========================================================================
    api_token: str = ""  # Protects /admin; optional in dev
    api_token_header: str = "X-API-Key"

    # ==========================================================================
    # SCORING WORKER
    # ==========================================================================
    scoring_delay_min: float = 2.0
    scoring_delay_max: float = 3.5
    scoring_max_workers: int = 32

    # ==========================================================================
    # RATE LIMITING
    # ==========================================================================
    rate_limit_requests: int = 60  # Max requests per window
    rate_limit_window: int = 60  # Window in seconds (60 = per minute)

    # ==========================================================================
    # CORS
    # ==========================================================================
    cors_origins: str = "*"  # Comma-separated origins, or "*" for all

    # ==========================================================================
    # LISTINGS
    # ==========================================================================
    recent_default_limit: int = 10
    dashboard_recent_limit: int = 20

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "prod"

    @property
    def cors_origins_list(self) -> List[str]:
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def scoring_delay_range(self) -> tuple[float, float]:
        return (self.scoring_delay_min, self.scoring_delay_max)


settings = Settings()
