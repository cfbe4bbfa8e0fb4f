from functools import lru_cache
from pydantic import BaseModel
import os
from dotenv import load_dotenv
load_dotenv()  # carga el archivo .env de la raíz

class Settings(BaseModel):
    app_name: str = os.getenv("APP_NAME", "ToolLend")
    env: str = os.getenv("APP_ENV", "dev")
    mongodb_uri: str = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
    db_name: str = os.getenv("DB_NAME", "toollend")
    jwt_secret: str = os.getenv("JWT_SECRET", "change-me")
    jwt_expires_hours: int = int(os.getenv("JWT_EXPIRES_HOURS", "8"))
    frontend_base_url: str = os.getenv("FRONTEND_BASE_URL", "http://localhost:5173")

    # Branding que viaja en las notificaciones
    app_url: str = os.getenv("APP_URL", "http://localhost:5173")
    logo_url: str = os.getenv("LOGO_URL", "http://localhost:5173/logo.png")

    # Acceso a Mongo: timeout por operación y reintentos ante fallos transitorios
    store_timeout_seconds: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "5"))
    store_max_retries: int = int(os.getenv("STORE_MAX_RETRIES", "2"))
    store_retry_backoff_seconds: float = float(os.getenv("STORE_RETRY_BACKOFF_SECONDS", "0.1"))

    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "100"))


@lru_cache
def get_settings() -> Settings:
    return Settings()
