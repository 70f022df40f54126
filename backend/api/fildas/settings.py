from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./fildas.db"

    # Root of the document disk; Document/DocumentVersion rows store paths relative to it
    STORAGE_DIR: str = "storage/fildas_docs"
    MAX_UPLOAD_MB: int = 50

    JWT_SECRET: str = "change_me"
    JWT_ALG: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MIN: int = 60 * 24

    # Office -> PDF previews
    LIBREOFFICE_PATH: str = "soffice"
    CONVERSION_TIMEOUT: int = 120

    # Leave SMTP_USER empty to skip outgoing mail (in-app notifications still work)
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""
    SMTP_FROM_NAME: str = "FilDAS"

    APP_URL: str = "http://localhost:5173"
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="FILDAS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
