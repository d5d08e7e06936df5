from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    # Hosted evals API
    evals_base_url: str = "https://api.openai.com"
    evals_api_key: str | None = None
    evals_api_prefix: str = "/v1"

    # HTTP client timeouts (seconds)
    evals_http_connect_timeout: float = 5.0
    evals_http_read_timeout: float = 60.0

    # Run polling
    evals_poll_interval: float = 5.0
    evals_poll_timeout: float = 3600.0
    evals_page_size: int = 100

    # Local run ledger
    evals_db_url: str = "sqlite+aiosqlite:///data/evalrun.db"

    # Logging
    evals_log_level: str = "info"
    evals_log_format: str = "console"  # "console" or "json"

    model_config = {"env_prefix": "", "case_sensitive": False, "env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
