import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional


def _split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip().lower() for part in value.split(",") if part.strip()]


@dataclass
class Settings:
    jwt_secret: str = "dev-secret-change-me"
    jwt_refresh_secret: str = "dev-refresh-secret-change-me"
    jwt_expires_min: int = 15
    jwt_refresh_expires_days: int = 7
    admin_emails: List[str] = field(default_factory=list)
    frontend_url: str = "*"
    log_level: str = "INFO"
    database_url: Optional[str] = None
    database_name: Optional[str] = None
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        secret = os.getenv("JWT_SECRET", cls.jwt_secret)
        return cls(
            jwt_secret=secret,
            # falls back to the access secret, like most deployments expect
            jwt_refresh_secret=os.getenv("JWT_REFRESH_SECRET", secret),
            jwt_expires_min=int(os.getenv("JWT_EXPIRES_MIN", "15")),
            jwt_refresh_expires_days=int(os.getenv("JWT_REFRESH_EXPIRES_DAYS", "7")),
            admin_emails=_split_csv(os.getenv("ADMIN_EMAILS")),
            frontend_url=os.getenv("FRONTEND_URL", "*"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            port=int(os.getenv("PORT", "8000")),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
