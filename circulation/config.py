import os
from dataclasses import dataclass
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database settings
    data_file: str = os.getenv("LIBRARY_DB_FILE") or os.getenv("LIBRARY_DATA_FILE", "circulation.db")
    db_busy_timeout: float = float(os.getenv("DB_BUSY_TIMEOUT", "10"))

    # Circulation policy defaults, used while the settings row is unset
    default_loan_period_days: int = int(os.getenv("DEFAULT_LOAN_PERIOD_DAYS", "14"))
    default_fine_per_day: Decimal = Decimal(os.getenv("DEFAULT_FINE_PER_DAY", "1.00"))
    default_borrowing_limit: int = int(os.getenv("DEFAULT_BORROWING_LIMIT", "5"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Circulation")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
