from typing import Optional
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    url: Optional[str] = Field(default=None, alias="DATABASE_URL")
    host: str = Field(default="localhost", alias="POSTGRES_HOST")
    port: int = Field(default=5432, alias="POSTGRES_DB_PORT")
    db_name: str = Field(default="medflash", alias="POSTGRES_DB_NAME")
    user: str = Field(default="postgres", alias="POSTGRES_DB_USER")
    password: str = Field(default="postgres", alias="POSTGRES_DB_PASSWORD")
    echo: bool = Field(default=False, alias="DATABASE_ECHO")

    @computed_field
    def connection_string(self) -> str:
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.db_name}"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    name: str = Field(default="medflash", alias="APP_NAME")
    version: str = Field(default="v1", alias="API_VERSION")
    port: int = Field(default=9000, alias="APP_PORT")
    mode: str = Field(default="prod", alias="MODE")
    jwt_secret: str = Field(alias="JWT_SECRET")
    token_lifetime_seconds: int = Field(
        default=3600, alias="JWT_TOKEN_LIFETIME_SECONDS"
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"], alias="CORS_ORIGINS"
    )

    @computed_field
    def is_production(self) -> bool:
        return self.mode != "dev"


class PipelineSettings(BaseSettings):
    """Limits of the PDF -> images -> flashcards pipeline."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    max_file_size_mb: int = Field(default=20, alias="MAX_FILE_SIZE_MB")
    max_pages: int = Field(default=50, alias="MAX_PAGES")
    density: int = Field(default=150, alias="RENDER_DENSITY")
    max_width: int = Field(default=1024, alias="IMAGE_MAX_WIDTH")
    quality: int = Field(default=80, ge=1, le=100, alias="IMAGE_QUALITY")
    batch_size: int = Field(default=5, ge=1, alias="OPTIMIZE_BATCH_SIZE")
    max_payload_bytes: int = Field(
        default=50 * 1024 * 1024, alias="MAX_PAYLOAD_BYTES"
    )
    generation_timeout_seconds: float = Field(
        default=180.0, alias="GENERATION_TIMEOUT_SECONDS"
    )
    rate_limit_window_seconds: float = Field(
        default=60.0, alias="RATE_LIMIT_WINDOW_SECONDS"
    )
    rate_limit_max_requests: int = Field(default=10, alias="RATE_LIMIT_MAX_REQUESTS")
    max_concurrent_requests_per_ip: int = Field(
        default=2, alias="MAX_CONCURRENT_REQUESTS_PER_IP"
    )
    rate_limit_sweep_seconds: float = Field(
        default=300.0, alias="RATE_LIMIT_SWEEP_SECONDS"
    )
    pdftoppm_path: str = Field(default="pdftoppm", alias="PDFTOPPM_PATH")
    output_language: str = Field(default="French", alias="OUTPUT_LANGUAGE")

    @computed_field
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=lambda: AppSettings())
    database: DatabaseSettings = Field(default_factory=lambda: DatabaseSettings())
    pipeline: PipelineSettings = Field(default_factory=lambda: PipelineSettings())

    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.0-flash", alias="GEMINI_MODEL")


settings = Settings()
