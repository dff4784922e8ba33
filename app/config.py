from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    clickup_api_base_url: str = "https://api.clickup.com/api/v2"
    clickup_api_token: str = ""
    http_timeout_seconds: float = 30.0
    default_delay_between_calls_ms: int = 500
    rate_limit_cooldown_seconds: float = 5.0
    checklist_delay_ms: int = 300
    rollback_delay_ms: int = 200
    max_action_depth: int = 3
    log_level: str = "INFO"


settings = Settings()
