# backend/servicebook/config.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repository root


class Settings(BaseSettings):
    database_url: str
    redis_url: str

    log_level: str = "INFO"

    # Redis list consumed by the notification workers
    events_queue: str = "events:p2p"

    # Reminders: minutes before scheduled_at
    reminder_offsets_minutes: list[int] = [1440, 120]
    reminder_check_interval_seconds: int = 60
    reminder_checker_enabled: bool = True

    # Refund policy tiers: (hours_before_start, refund_percent), checked top-down
    refund_full_hours: int = 48
    refund_partial_hours: int = 24
    refund_partial_percent: int = 50

    # Consultations
    consultation_day_start: str = "09:00"
    consultation_day_end: str = "18:00"
    consultation_min_advance_hours: int = 2
    consultation_start_grace_minutes: int = 15
    consultation_cancel_notice_hours: int = 2
    consultation_auto_time: str = "10:00"
    consultation_auto_min_days: int = 1

    # Payment gateway (None = manual gateway)
    payment_gateway_url: str | None = None
    payment_gateway_api_key: str | None = None
    payment_gateway_timeout: float = 10.0

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # relative sqlite path -> absolute from repository root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()
