import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        jwt_secret: str,
        jwt_algorithm: str,
        access_token_expire_minutes: int,
        cors_origins: list[str],
        vapid_public_key: Optional[str],
        vapid_private_key: Optional[str],
        vapid_subject: str,
        push_timeout_secs: float,
        push_max_workers: int,
        currency_symbol: str,
        admin_emails: frozenset[str],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.access_token_expire_minutes = access_token_expire_minutes
        self.cors_origins = cors_origins
        self.vapid_public_key = vapid_public_key
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject
        self.push_timeout_secs = push_timeout_secs
        self.push_max_workers = push_max_workers
        self.currency_symbol = currency_symbol
        self.admin_emails = admin_emails

    @property
    def push_enabled(self) -> bool:
        return bool(self.vapid_public_key and self.vapid_private_key)


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    jwt_secret = os.getenv(
        "FINANCE_JWT_SECRET",
        "3c9a4b8f0e7d41c2a6f5b1e8d2c7a9f04b6e1d3c8a2f7e5b9d0c4a1f6e8b2d7c",
    )
    jwt_algorithm = os.getenv("FINANCE_JWT_ALGORITHM", "HS256")
    access_token_expire_minutes = int(
        os.getenv("FINANCE_ACCESS_TOKEN_EXPIRE_MINUTES", "1440")
    )
    cors_origins = [
        origin.strip()
        for origin in os.getenv("FINANCE_CORS_ORIGINS", "http://localhost:5173").split(
            ","
        )
        if origin.strip()
    ]
    vapid_public_key = os.getenv("VAPID_PUBLIC_KEY") or None
    vapid_private_key = os.getenv("VAPID_PRIVATE_KEY") or None
    vapid_subject = os.getenv("VAPID_SUBJECT", "mailto:admin@finance-tracker.local")
    push_timeout_secs = float(os.getenv("FINANCE_PUSH_TIMEOUT_SECS", "10"))
    push_max_workers = int(os.getenv("FINANCE_PUSH_MAX_WORKERS", "8"))
    currency_symbol = os.getenv("FINANCE_CURRENCY_SYMBOL", "₹")
    admin_emails = frozenset(
        email.strip().lower()
        for email in os.getenv("FINANCE_ADMIN_EMAILS", "").split(",")
        if email.strip()
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        jwt_secret=jwt_secret,
        jwt_algorithm=jwt_algorithm,
        access_token_expire_minutes=access_token_expire_minutes,
        cors_origins=cors_origins,
        vapid_public_key=vapid_public_key,
        vapid_private_key=vapid_private_key,
        vapid_subject=vapid_subject,
        push_timeout_secs=push_timeout_secs,
        push_max_workers=push_max_workers,
        currency_symbol=currency_symbol,
        admin_emails=admin_emails,
    )
