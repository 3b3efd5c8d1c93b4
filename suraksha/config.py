from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================
    environment: str = "dev"  # "dev", "prod"
    debug: bool = True

    # ==========================================================================
    # DATABASE (persisted per-user history)
    # ==========================================================================
    database_url: str = "sqlite:///./suraksha.db"

    # ==========================================================================
    # OPENAI
    # ==========================================================================
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"  # must accept image input (sprite sheets, screenshots)
    openai_max_tokens: int = 1500  # Max tokens for LLM responses
    openai_timeout: float = 60.0  # Seconds before a model call is abandoned

    # ==========================================================================
    # API SECURITY
    # ==========================================================================
    api_token: str = ""  # Required in production, optional in dev
    api_token_header: str = "X-API-Key"
    session_header: str = "X-Session-Id"
    user_header: str = "X-User-Id"

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
    # SUBMISSIONS
    # ==========================================================================
    min_text_length: int = 20
    max_upload_mb: int = 25
    image_formats: str = "PNG,JPEG,GIF"
    qrcode_formats: str = "PNG,JPEG"

    # ==========================================================================
    # VIDEO
    # ==========================================================================
    video_keyframe_count: int = 5  # Frames per sprite sheet
    sprite_jpeg_quality: int = 90

    # ==========================================================================
    # HISTORY
    # ==========================================================================
    history_default_count: int = 5
    history_max_count: int = 50
    history_auto_delete_days: int = 0  # 0 = keep forever; advertised only, not enforced here

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
    def cors_origins_list(self) -> list:
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @property
    def image_formats_list(self) -> List[str]:
        return [fmt.strip().upper() for fmt in self.image_formats.split(",") if fmt.strip()]

    @property
    def qrcode_formats_list(self) -> List[str]:
        return [fmt.strip().upper() for fmt in self.qrcode_formats.split(",") if fmt.strip()]


settings = Settings()
