from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Kiosk PIN Auth"
    API_V1_STR: str = "/api/v1"
    APP_ENV: str = "local"
    DATABASE_URL: str = "sqlite+aiosqlite:///./pinauth.db"
    SQL_ECHO: bool = False
    LOG_LEVEL: str = "INFO"

    # Секреты: перец для хэша PIN и ключ администратора
    PIN_PEPPER: str = ""
    ADMIN_KEY: str = ""

    PIN_MIN_LENGTH: int = 4
    PIN_MAX_LENGTH: int = 6
    PIN_MAX_ATTEMPTS: int = 5
    PIN_LOCKOUT_MINUTES: int = 15

    VERIFY_WINDOW_SECONDS: int = 300
    VERIFY_MAX_WINDOW_ATTEMPTS: int = 15

    SESSION_TTL_MINUTES: int = 30
    SESSION_REAP_INTERVAL_SECONDS: int = 300

    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"

settings = Settings()
