from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/storebot.db"

    # Language model
    anthropic_api_key: str = ""
    llm_model: str = "claude-sonnet-4-5-20250929"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 500
    llm_max_retries: int = 2
    llm_max_retry_wait_seconds: float = 5.0
    history_window: int = 8

    # External catalog API (GraphQL admin endpoint per tenant domain)
    catalog_api_version: str = "2024-07"
    catalog_page_size: int = 50
    catalog_timeout_seconds: float = 30.0

    # Sync pipeline
    sync_batch_size: int = 50
    sync_workers: int = 2
    interactive_stale_hours: int = 24
    scheduled_stale_hours: int = 23
    stuck_job_minutes: int = 120
    sync_interval_minutes: int = 60
    auto_sync_on_chat: bool = True
    scheduler_enabled: bool = True
    cron_secret: str = "dev-cron-secret"

    default_error_message: str = (
        "I apologize, but I'm having trouble right now. "
        "Please try again in a moment."
    )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
