import re
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/bot.db"
    log_level: str = "INFO"

    # Operator (human CS) channel
    cs_number: str = ""
    auto_timeout_hours: int = 24
    rate_limit_min_ms: int = 0  # 0 = disabled

    # Outbound gateway
    gateway_stub: bool = True
    gateway_base_url: str = "http://127.0.0.1:9999"
    gateway_api_key: str = "change-me"
    gateway_timeout_seconds: float = 15.0

    # Background auto-timeout sweep
    sweep_enabled: bool = True
    sweep_interval_seconds: float = 15 * 60

    admin_user: Optional[str] = None
    admin_pass: Optional[str] = None

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("cs_number", mode="before")
    @classmethod
    def normalize_cs_number(cls, value: object) -> str:
        return re.sub(r"[^0-9]", "", str(value or ""))

    @property
    def auto_timeout_ms(self) -> int:
        return self.auto_timeout_hours * 60 * 60 * 1000


settings = Settings()
