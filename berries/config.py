"""
Application configuration using Pydantic Settings.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


DEFAULT_CHART_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. When the user asks for a chart, a graph "
    "or a visual comparison of numbers, reply with ONLY a JSON object of the form "
    '{"chartType": "bar" | "line" | "pie", "title": string, '
    '"labels": [string, ...], "data": [number, ...]} '
    "where labels and data have the same length. "
    "For every other request, reply in plain text."
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Completion provider (OpenAI-compatible API, Groq by default)
    groq_api_key: str = ""
    llm_base_url: str = "https://api.groq.com/openai/v1"
    llm_model: str = "llama-3.1-8b-instant"
    llm_timeout_seconds: float = 30.0
    chart_system_prompt: str = DEFAULT_CHART_SYSTEM_PROMPT

    # Backend JWT signing
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expire_days: int = 1

    # PBKDF2 rounds for local account passwords
    password_hash_iterations: int = 100_000

    # Google OAuth Client ID used as the audience when verifying ID tokens
    google_oauth_client_id: str = ""

    # Persistence
    database_url: str = "sqlite:///./berries.db"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    cors_origins: str = "http://localhost:3000"

    # File Upload Configuration
    upload_dir: str = "uploads"
    max_file_size_mb: int = 10  # Maximum file size in MB
    allowed_file_extensions: str = ""  # Comma-separated list, empty allows any type

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra fields in .env file that aren't defined in Settings
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Convert comma-separated CORS origins to list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def allowed_file_extensions_list(self) -> List[str]:
        """Lower-cased extensions accepted by the upload endpoint."""
        return [
            ext.strip().lower()
            for ext in self.allowed_file_extensions.split(",")
            if ext.strip()
        ]


settings = Settings()
