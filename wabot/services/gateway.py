"""Outbound transport to the WhatsApp gateway.

The bot only needs two calls: send a text to a user and forward a user's text to
the operator. Both report success as a DeliveryResult and never raise.
"""

from abc import ABC, abstractmethod

import httpx

from wabot.config import Settings
from wabot.logging_config import get_logger
from wabot.services.errors import GatewaySendFailure
from wabot.services.result import DeliveryResult

logger = get_logger("gateway")

SEND_PATH = "/messages/send"
FORWARD_HEADER_TEMPLATE = "📩 *Forward dari user {sender}*"


def preview(text: str, limit: int = 80) -> str:
    text = text or ""
    return text if len(text) <= limit else text[: limit - 3] + "..."


def format_forward(original_sender: str, text: str) -> str:
    return f"{FORWARD_HEADER_TEMPLATE.format(sender=original_sender)}\n{text}"


class OutboundGateway(ABC):
    @abstractmethod
    def send(self, to: str, text: str) -> DeliveryResult:
        """Send `text` to the chat identity `to`."""

    @abstractmethod
    def forward(self, operator: str, original_sender: str, text: str) -> DeliveryResult:
        """Relay a user's text to the operator channel."""


class StubGateway(OutboundGateway):
    """Logs instead of sending. Used until a real gateway is configured."""

    def send(self, to: str, text: str) -> DeliveryResult:
        logger.info("[STUB] send", extra={"context": {"to": to, "text_preview": preview(text)}})
        return DeliveryResult.success()

    def forward(self, operator: str, original_sender: str, text: str) -> DeliveryResult:
        logger.info(
            "[STUB] forward",
            extra={"context": {"operator": operator, "from": original_sender, "text_preview": preview(text)}},
        )
        return DeliveryResult.success()


class HttpGateway(OutboundGateway):
    def __init__(self, base_url: str, api_key: str, timeout_seconds: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def _post_message(self, to: str, text: str) -> None:
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    f"{self.base_url}{SEND_PATH}",
                    json={"to": to, "text": text},
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.TimeoutException as exc:
            raise GatewaySendFailure(f"timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise GatewaySendFailure(f"transport: {exc}") from exc

        if response.status_code >= 300:
            raise GatewaySendFailure(f"http_{response.status_code}: {response.text[:200]}")

    def send(self, to: str, text: str) -> DeliveryResult:
        try:
            self._post_message(to, text)
        except GatewaySendFailure as exc:
            logger.error("Gateway send failed", extra={"context": {"to": to, "error": str(exc)}})
            return DeliveryResult.failure(str(exc))
        logger.info("Gateway send ok", extra={"context": {"to": to}})
        return DeliveryResult.success()

    def forward(self, operator: str, original_sender: str, text: str) -> DeliveryResult:
        try:
            self._post_message(operator, format_forward(original_sender, text))
        except GatewaySendFailure as exc:
            logger.error(
                "Gateway forward failed",
                extra={"context": {"operator": operator, "from": original_sender, "error": str(exc)}},
            )
            return DeliveryResult.failure(str(exc))
        logger.info("Gateway forward ok", extra={"context": {"operator": operator, "from": original_sender}})
        return DeliveryResult.success()


def build_gateway(settings: Settings) -> OutboundGateway:
    if settings.gateway_stub:
        logger.warning("Gateway running in STUB mode, no WhatsApp messages will be sent (set GATEWAY_STUB=0)")
        return StubGateway()
    return HttpGateway(
        base_url=settings.gateway_base_url,
        api_key=settings.gateway_api_key,
        timeout_seconds=settings.gateway_timeout_seconds,
    )
