from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    REDIS_URL: str = "redis://localhost:6379/0"
    APP_ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str | None = None

    # Owner tokens / URLs
    TOKEN_MIN_LENGTH: int = 8
    TOKEN_MAX_LENGTH: int = 16
    MAX_URL_LENGTH: int = 2048

    # Counter
    COUNTER_MAX_VALUE: int = 999_999_999
    COUNTER_VISIT_TTL: int = 86400
    COUNTER_DAILY_RETENTION_DAYS: int = 365

    # Like
    LIKE_MAX_VALUE: int = 999_999_999
    LIKE_USER_STATE_TTL: int = 86400

    # Ranking
    RANKING_MAX_ENTRIES: int = 1000
    RANKING_MAX_NAME_LENGTH: int = 50
    RANKING_MAX_SCORE: int = 999_999_999
    RANKING_SUBMIT_COOLDOWN: int = 60
    RANKING_DEFAULT_LIMIT: int = 10

    # BBS
    BBS_MAX_MESSAGES: int = 1000
    BBS_MESSAGES_PER_PAGE: int = 10
    BBS_MAX_MESSAGE_LENGTH: int = 1000
    BBS_MAX_AUTHOR_LENGTH: int = 50
    BBS_MAX_ICONS: int = 20
    BBS_MAX_SELECTS: int = 3
    BBS_MAX_SELECT_OPTIONS: int = 50
    BBS_MAX_SELECT_LABEL_LENGTH: int = 50
    BBS_POST_COOLDOWN: int = 10
    BBS_DEFAULT_TITLE: str = "BBS"

    # Auto-cleanup sweep
    CLEANUP_PROBABILITY: float = 0.01
    CLEANUP_RETENTION_DAYS: int = 365

    # Compensating writes / diagnostics
    ROLLBACK_ATTEMPTS: int = 2
    SLOW_OPERATION_MS: int = 1000

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
