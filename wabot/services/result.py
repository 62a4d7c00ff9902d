from dataclasses import asdict, dataclass
from typing import Optional


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    error: Optional[str] = None

    @staticmethod
    def success() -> "DeliveryResult":
        return DeliveryResult(ok=True)

    @staticmethod
    def failure(error: str) -> "DeliveryResult":
        return DeliveryResult(ok=False, error=error or "send_failed")


@dataclass(frozen=True)
class HandleResult:
    ok: bool
    duplicate: Optional[bool] = None
    handled: Optional[str] = None
    error: Optional[str] = None

    @staticmethod
    def processed(handled: str) -> "HandleResult":
        return HandleResult(ok=True, duplicate=False, handled=handled)

    @staticmethod
    def duplicated() -> "HandleResult":
        return HandleResult(ok=True, duplicate=True)

    @staticmethod
    def rejected(error: str) -> "HandleResult":
        return HandleResult(ok=False, error=error)

    def to_dict(self) -> dict:
        return {key: value for key, value in asdict(self).items() if value is not None}
