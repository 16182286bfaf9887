from pydantic_settings import BaseSettings
from pydantic import Field
import os
from pathlib import Path
import dotenv

# Always load apps/.env (relative to this file), regardless of where the process is started.
_APPS_DIR = Path(__file__).resolve().parents[1]
dotenv.load_dotenv(dotenv_path=_APPS_DIR / ".env", override=False)


class Settings(BaseSettings):
    GROQ_API_KEY: str = Field(default=os.getenv("GROQ_API_KEY", ""))
    GROQ_TEXT_MODEL: str = Field(default=os.getenv("GROQ_TEXT_MODEL", "llama-3.3-70b-versatile"))

    APP_HOST: str = Field(default=os.getenv("APP_HOST", "0.0.0.0"))
    APP_PORT: int = Field(default=int(os.getenv("APP_PORT", "8000")))
    FRONTEND_BASE_URL: str = Field(default=os.getenv("FRONTEND_BASE_URL", "http://localhost:3000"))
    LOG_LEVEL: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))

    # Firebase Admin SDK
    FIREBASE_CREDENTIALS_PATH: str = Field(
        default=os.getenv("FIREBASE_CREDENTIALS_PATH", str(_APPS_DIR / "serviceAccountKey.json"))
    )
    FIREBASE_STORAGE_BUCKET: str = Field(default=os.getenv("FIREBASE_STORAGE_BUCKET", ""))
    # Public API key; required for backend-driven password login.
    FIREBASE_WEB_API_KEY: str = Field(default=os.getenv("FIREBASE_WEB_API_KEY", ""))

    # PagSeguro checkout and notifications API
    PAGSEGURO_EMAIL: str = Field(default=os.getenv("PAGSEGURO_EMAIL", ""))
    PAGSEGURO_TOKEN: str = Field(default=os.getenv("PAGSEGURO_TOKEN", ""))
    PAGSEGURO_SANDBOX: bool = Field(
        default=(os.getenv("PAGSEGURO_SANDBOX", "true").strip().lower() == "true")
    )
    # Public base URL of this API; PagSeguro posts notifications to it.
    PUBLIC_API_URL: str = Field(default=os.getenv("PUBLIC_API_URL", "http://localhost:8000"))

    # Notifications older than this are removed by the daily cleanup job.
    NOTIFICATION_RETENTION_DAYS: int = Field(default=int(os.getenv("NOTIFICATION_RETENTION_DAYS", "30")))

    # How often the plan expiry job runs.
    PLAN_EXPIRY_CHECK_MINUTES: int = Field(default=int(os.getenv("PLAN_EXPIRY_CHECK_MINUTES", "60")))

    class Config:
        env_file = ".env"
        extra = "ignore"  # Ignore frontend keys like NEXT_PUBLIC_*


settings = Settings()
