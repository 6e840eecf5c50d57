import os
import logging
from pydantic import BaseModel, Field
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _int_list(raw: str) -> List[int]:
    return [int(part) for part in raw.split(",") if part.strip()]


class LedgerSettings(BaseModel):
    # Concurrency: bounded whole-unit retries before ReservationConflict surfaces
    max_attempts: int = Field(default=int(os.getenv("RESERVATION_MAX_ATTEMPTS", "5")))
    retry_wait_max: float = Field(default=float(os.getenv("RESERVATION_RETRY_WAIT_MAX", "0.5")))

    # Approval workflow defaults for leave requests
    leave_approval_steps: int = Field(default=int(os.getenv("LEAVE_APPROVAL_STEPS", "1")))
    approver_ids: List[int] = Field(default_factory=lambda: _int_list(os.getenv("LEAVE_APPROVER_IDS", "")))

    # Entitlement totals used when a balance row is created lazily
    sick_paid_days: int = Field(default=int(os.getenv("SICK_PAID_DAYS", "15")))
    sick_unpaid_days: int = Field(default=int(os.getenv("SICK_UNPAID_DAYS", "15")))
    casual_paid_days: int = Field(default=int(os.getenv("CASUAL_PAID_DAYS", "5")))


class Config(BaseModel):
    app_name: str = "Leave Ledger"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./leave_ledger.db")

    # Ledger core
    ledger: LedgerSettings = LedgerSettings()

    version: str = "1.0.0"
    request_id_header: str = "X-Request-ID"
    actor_header: str = "X-User-ID"

    # CORS: comma-separated origins loaded from env.
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if o.strip()
        ]
    )

    # Rate limiting on decision endpoints
    rate_limit_enabled: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    rate_limit_per_minute: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))


settings = Config()

# --- Startup Validation ---
_logger = logging.getLogger(__name__)
if settings.ledger.max_attempts < 1:
    raise RuntimeError("FATAL: RESERVATION_MAX_ATTEMPTS must be at least 1.")
if settings.ledger.leave_approval_steps < 1:
    raise RuntimeError("FATAL: LEAVE_APPROVAL_STEPS must be at least 1.")
if settings.environment != "development" and not settings.ledger.approver_ids:
    _logger.warning("LEAVE_APPROVER_IDS is empty; no leave request can be approved with the default authorizer.")
