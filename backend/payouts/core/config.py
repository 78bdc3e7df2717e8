from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Agent Payouts"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Database
    DATABASE_URL: str = "postgresql://payouts_user:payouts_pass@db:5432/payouts_db"
    DATABASE_ECHO: bool = False

    # Payout window evaluation uses wall-clock time in this zone
    PAYOUT_TIMEZONE: str = "Africa/Nairobi"

    # Actor id stamped on automatic transitions (auto-approve / auto-pay)
    SYSTEM_ACTOR_ID: str = "system"

    # Pagination for list endpoints
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Frontend origin allowed by CORS (optional)
    FRONTEND_URL: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
