"""Inbound message processing: the single entry point for gateway traffic.

Order of checks for every event:
validate -> dedup -> operator command -> rate limit -> record interaction
(with inline auto-timeout) -> sensitive interception -> HUMAN forward -> BOT menu.

Gateway failures are written to the ledger and swallowed. StoreUnavailable aborts the
event: the dedup mark is released so the gateway's redelivery is processed again, and
the error propagates so the caller reports an internal error.
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import ValidationError

from wabot.config import Settings
from wabot.logging_config import get_logger
from wabot.models import DeliveryStatus, Direction, User
from wabot.schemas.inbound import InboundEvent
from wabot.services import menus, sensitive
from wabot.services.conversation_store import ConversationStore
from wabot.services.errors import InboundValidationError, StoreUnavailable
from wabot.services.gateway import OutboundGateway
from wabot.services.identity import is_valid_identity, normalize_identity
from wabot.services.rate_limit import RateLimiter
from wabot.services.result import DeliveryResult, HandleResult
from wabot.services.state_machine import Mode
from wabot.services.timeutils import Clock, normalize_timestamp, now_ms

logger = get_logger("inbound_service")

OPERATOR_COMMAND = re.compile(r"^#(close|boton)\s+(.+)$", re.IGNORECASE | re.DOTALL)

MSG_CS_COMMAND_INVALID = "Formatnya: #close <nomorUser> ya kak 😊"
MSG_CS_COMMAND_ACK = "Sip kak, mode BOT untuk user {target} sudah aktif lagi 😊"
MSG_ADMIN_NOTIFY_BOT = "Oke kak, botnya aku aktif lagi ya 😊\nKetik 0/menu buat lihat menu."
MSG_ADMIN_NOTIFY_HUMAN = "Siap kak, aku sambungkan ke CS ya. Setelah ini kakak bisa chat seperti biasa 😊"
MSG_ADMIN_TAKEOVER = "(SYSTEM) Admin takeover: user masuk mode HUMAN."
MSG_AUTO_TIMEOUT = "Auto-timeout: HUMAN -> BOT"


@dataclass(frozen=True)
class OperatorCommand:
    name: str
    target: str


@dataclass(frozen=True)
class Inbound:
    message_id: str
    identity: str
    text: str
    lower: str
    timestamp: int


def parse_operator_command(text: str) -> Optional[OperatorCommand]:
    """Parse `#close <identity>` / `#boton <identity>` (case-insensitive)."""
    match = OPERATOR_COMMAND.match(text.strip())
    if not match:
        return None
    return OperatorCommand(name=match.group(1).lower(), target=match.group(2).strip())


class InboundProcessor:
    def __init__(
        self,
        store: ConversationStore,
        gateway: OutboundGateway,
        settings: Settings,
        clock: Clock = now_ms,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.operator_identity = settings.cs_number
        self.auto_timeout_ms = settings.auto_timeout_ms
        self.rate_limiter = rate_limiter or RateLimiter(settings.rate_limit_min_ms)
        self._clock = clock

    # === entry point ===

    def handle(self, payload: dict) -> HandleResult:
        try:
            event = InboundEvent.model_validate(payload)
        except ValidationError as exc:
            logger.warning(
                "Invalid inbound payload",
                extra={"context": {"errors": exc.errors(include_url=False, include_input=False)}},
            )
            return HandleResult.rejected("invalid_payload")

        identity = normalize_identity(event.from_identity)
        if not is_valid_identity(identity):
            logger.warning("Invalid sender identity", extra={"context": {"message_id": event.message_id}})
            return HandleResult.rejected("invalid_from")

        inbound = Inbound(
            message_id=event.message_id,
            identity=identity,
            text=event.text,
            lower=event.text.lower(),
            timestamp=normalize_timestamp(event.timestamp, self._clock),
        )

        if not self.store.try_mark_processed(inbound.message_id):
            logger.info("Duplicate message ignored", extra={"context": {"message_id": inbound.message_id}})
            return HandleResult.duplicated()

        try:
            return self._process(inbound)
        except StoreUnavailable:
            self._release_mark(inbound.message_id)
            raise

    def _process(self, inbound: Inbound) -> HandleResult:
        identity = inbound.identity

        if self.operator_identity and identity == self.operator_identity:
            return HandleResult.processed(self._handle_operator(inbound))

        now = self._clock()
        if not self.rate_limiter.allow(identity, now):
            user = self.store.upsert_user(identity, now)
            self._log_inbound(user, inbound, {"kind": "RATE_LIMITED"})
            logger.warning("Rate limited (ignored for processing)", extra={"context": {"from": identity}})
            return HandleResult.processed("rate_limited")

        touch = self.store.touch_user(identity, now, self.auto_timeout_ms)
        user = touch.user
        self._log_inbound(user, inbound, None)

        if touch.timed_out:
            idle_ms = now - touch.previous.last_interaction_at
            self._log_system(user, MSG_AUTO_TIMEOUT, {"kind": "AUTO_TIMEOUT", "idle_ms": idle_ms})
            logger.info("AUTO_TIMEOUT: switched HUMAN -> BOT", extra={"context": {"from": identity, "idle_ms": idle_ms}})

        kind = sensitive.classify(inbound.text)
        if kind is not None:
            return HandleResult.processed(self._intercept_sensitive(user, inbound, kind))

        if user.is_human:
            self._forward_and_log(user, identity, inbound.text, {"kind": "HUMAN_FORWARD"})
            return HandleResult.processed("human_forward")

        return HandleResult.processed(self._dispatch_bot(user, inbound))

    def _release_mark(self, message_id: str) -> None:
        """Undo the dedup mark of an event that failed midway so its redelivery is processed."""
        try:
            self.store.release_processed(message_id)
        except StoreUnavailable as exc:
            logger.error(
                "Could not release processed mark; redelivery will be treated as duplicate",
                extra={"context": {"message_id": message_id, "error": str(exc)}},
            )
        else:
            logger.warning("Released processed mark after store failure", extra={"context": {"message_id": message_id}})

    # === branches ===

    def _handle_operator(self, inbound: Inbound) -> str:
        operator = self.store.upsert_user(inbound.identity, self._clock())
        command = parse_operator_command(inbound.text)

        if command is None:
            self._log_inbound(operator, inbound, {"kind": "CS_NON_COMMAND"})
            return "cs_ignored"

        target = normalize_identity(command.target)
        if not is_valid_identity(target):
            self._log_inbound(operator, inbound, {"kind": "CS_COMMAND_INVALID", "cmd": command.name})
            self._send_and_log(operator, self.operator_identity, MSG_CS_COMMAND_INVALID, {"kind": "CS_COMMAND_INVALID"})
            return "cs_command_invalid"

        # Unknown targets are created on the spot, including the operator's own identity.
        self.store.upsert_user(target, self._clock())
        self.store.set_mode(target, Mode.BOT)
        self._log_inbound(operator, inbound, {"kind": "CS_COMMAND", "cmd": command.name, "target": target})
        self._send_and_log(
            operator,
            self.operator_identity,
            MSG_CS_COMMAND_ACK.format(target=target),
            {"kind": "CS_COMMAND_ACK", "target": target},
        )
        logger.info("Operator command applied", extra={"context": {"cmd": command.name, "target": target}})
        return "cs_command"

    def _intercept_sensitive(self, user: User, inbound: Inbound, kind: sensitive.SensitiveKind) -> str:
        self._send_and_log(
            user, inbound.identity, sensitive.SENSITIVE_WARNING, {"kind": "SENSITIVE_WARNING", "sensitive": kind.value}
        )
        logger.warning("Sensitive content intercepted", extra={"context": {"from": inbound.identity, "kind": kind.value}})

        if user.is_human:
            self._forward_and_log(
                user, inbound.identity, sensitive.mask(inbound.text), {"kind": "SENSITIVE_MASKED", "sensitive": kind.value}
            )
            return "human_forward_sensitive"

        self._send_and_log(user, inbound.identity, menus.MAIN_MENU_TEXT, {"kind": "MENU_AFTER_SENSITIVE"})
        self.store.set_selected_step(inbound.identity, None)
        return "bot_sensitive"

    def _dispatch_bot(self, user: User, inbound: Inbound) -> str:
        resolution = menus.resolve(user.state, user.identity, inbound.text, inbound.lower)
        for action in resolution.actions:
            self._apply(user, action)
        return resolution.handled

    def _apply(self, user: User, action: menus.Action) -> None:
        if isinstance(action, menus.ReplyText):
            self._send_and_log(user, user.identity, action.text, action.meta)
        elif isinstance(action, menus.ForwardToOperator):
            self._forward_and_log(user, user.identity, action.text, action.meta)
        elif isinstance(action, menus.SetMode):
            self.store.set_mode(user.identity, action.mode)
        elif isinstance(action, menus.SetStep):
            self.store.set_selected_step(user.identity, action.step)
        else:
            raise TypeError(f"Unknown action: {action!r}")

    # === admin ===

    def admin_set_mode(self, identity: str, mode: str, notify_user: bool = False) -> User:
        wa = normalize_identity(identity)
        if not is_valid_identity(wa):
            raise InboundValidationError("invalid_identity")
        try:
            target_mode = Mode(str(mode or "").upper())
        except ValueError as exc:
            raise InboundValidationError("invalid_mode") from exc

        self.store.upsert_user(wa, self._clock())
        user = self.store.set_mode(wa, target_mode)
        self._log_system(
            user, f"Mode set to {target_mode.value} by admin", {"kind": "ADMIN_SET_MODE", "mode": target_mode.value}
        )

        if notify_user:
            if target_mode == Mode.BOT:
                self._send_and_log(user, wa, MSG_ADMIN_NOTIFY_BOT, {"kind": "ADMIN_NOTIFY_BOT"})
            else:
                self._send_and_log(user, wa, MSG_ADMIN_NOTIFY_HUMAN, {"kind": "ADMIN_NOTIFY_HUMAN"})
                self._forward_and_log(user, wa, MSG_ADMIN_TAKEOVER, {"kind": "ADMIN_TAKEOVER_NOTIFY"})

        logger.info("Admin set mode", extra={"context": {"identity": wa, "mode": target_mode.value}})
        return user

    def admin_send_message(self, identity: str, text: str) -> DeliveryResult:
        wa = normalize_identity(identity)
        clean = (text or "").strip()
        if not is_valid_identity(wa):
            raise InboundValidationError("invalid_identity")
        if not clean:
            raise InboundValidationError("empty_text")

        user = self.store.upsert_user(wa, self._clock())
        return self._send_and_log(user, wa, clean, {"kind": "ADMIN_MANUAL"})

    # === ledger helpers ===

    def _log_inbound(self, user: User, inbound: Inbound, meta: Optional[dict]) -> None:
        self.store.insert_message(
            user_id=user.id,
            direction=Direction.IN.value,
            external_message_id=inbound.message_id,
            from_identity=inbound.identity,
            text=inbound.text,
            timestamp=inbound.timestamp,
            meta=meta,
        )

    def _log_system(self, user: User, text: str, meta: dict) -> None:
        self.store.insert_message(
            user_id=user.id,
            direction=Direction.SYS.value,
            text=text,
            timestamp=self._clock(),
            meta=meta,
        )

    def _deliver(self, call: Callable[[], DeliveryResult], default_error: str) -> DeliveryResult:
        try:
            result = call()
        except Exception as exc:
            logger.error("Gateway call raised", extra={"context": {"error": str(exc)}})
            return DeliveryResult.failure(str(exc) or default_error)
        if not result.ok and not result.error:
            return DeliveryResult.failure(default_error)
        return result

    def _send_and_log(self, user: User, to: str, text: str, meta: Optional[dict]) -> DeliveryResult:
        result = self._deliver(lambda: self.gateway.send(to, text), "send_failed")
        self.store.insert_message(
            user_id=user.id,
            direction=Direction.OUT.value,
            to_identity=to,
            text=text,
            timestamp=self._clock(),
            status=(DeliveryStatus.SENT if result.ok else DeliveryStatus.FAILED).value,
            error=result.error,
            meta=meta,
        )
        return result

    def _forward_and_log(self, user: User, original_sender: str, text: str, meta: Optional[dict]) -> DeliveryResult:
        result = self._deliver(
            lambda: self.gateway.forward(self.operator_identity, original_sender, text), "forward_failed"
        )
        self.store.insert_message(
            user_id=user.id,
            direction=Direction.FWD.value,
            from_identity=original_sender,
            to_identity=self.operator_identity,
            text=text,
            timestamp=self._clock(),
            status=(DeliveryStatus.SENT if result.ok else DeliveryStatus.FAILED).value,
            error=result.error,
            meta=meta,
        )
        return result
