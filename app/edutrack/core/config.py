from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "EDUTRACK-TRANSFERS"
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite+pysqlite:///./edutrack.db"
    LOG_LEVEL: str = "INFO"
    METRICS_ENABLED: bool = True
    TRANSFERS_LIST_MAX_PAGE_SIZE: int = 200
    AUDIT_TRAIL_MAX_PAGE_SIZE: int = 200
    STUCK_TRANSFER_DAYS: int = 7
    OPS_ENABLE_INTEGRITY_SCAN: bool = True

settings = Settings()
