from unittest.mock import Mock

import pytest

from wabot.config import Settings
from wabot.services import menus, sensitive
from wabot.services.conversation_store import ConversationStore
from wabot.services.errors import InboundValidationError, StoreUnavailable
from wabot.services.inbound_service import (
    MSG_ADMIN_NOTIFY_BOT,
    MSG_ADMIN_NOTIFY_HUMAN,
    MSG_ADMIN_TAKEOVER,
    MSG_CS_COMMAND_INVALID,
    InboundProcessor,
    parse_operator_command,
)
from wabot.services.result import DeliveryResult
from wabot.services.state_machine import ConversationState, Mode

from tests.helpers import HOUR_MS, OPERATOR, USER, kinds, ledger


class TestScenarios:
    def test_menu_five_hands_off_to_operator(self, processor, gateway, store, make_event):
        result = processor.handle(make_event("5", message_id="m1"))

        assert result.ok is True
        assert result.handled == "menu_5"
        assert store.get_user(USER).mode == "HUMAN"
        gateway.send.assert_called_once_with(USER, menus.HANDOFF_TEXT)
        gateway.forward.assert_called_once()
        operator, sender, text = gateway.forward.call_args.args
        assert operator == OPERATOR
        assert sender == USER
        assert USER in text

    def test_human_mode_forwards_without_reply(self, processor, gateway, store, make_event):
        processor.handle(make_event("5", message_id="m1"))
        gateway.reset_mock()

        result = processor.handle(make_event("halo", message_id="m2"))

        assert result.handled == "human_forward"
        gateway.send.assert_not_called()
        gateway.forward.assert_called_once_with(OPERATOR, USER, "halo")
        assert store.get_user(USER).mode == "HUMAN"
        assert kinds(ledger(store, USER))[-1] == ("FWD", "HUMAN_FORWARD")

    def test_inline_timeout_reverts_before_menu(self, processor, gateway, store, clock, make_event):
        store.upsert_user(USER, clock.now - 10 * HOUR_MS)
        store.set_mode(USER, Mode.HUMAN)

        result = processor.handle(make_event("menu"))

        assert result.handled == "menu"
        assert store.get_user(USER).mode == "BOT"
        gateway.send.assert_called_once_with(USER, menus.MAIN_MENU_TEXT)
        gateway.forward.assert_not_called()
        assert kinds(ledger(store, USER)) == [
            ("IN", None),
            ("SYS", "AUTO_TIMEOUT"),
            ("OUT", "MENU"),
        ]

    def test_duplicate_event_is_noop(self, processor, gateway, store, make_event):
        first = processor.handle(make_event("menu", message_id="dup"))
        second = processor.handle(make_event("menu", message_id="dup"))

        assert first.duplicate is False
        assert second.ok is True
        assert second.duplicate is True
        assert second.handled is None
        assert gateway.send.call_count == 1
        assert len(ledger(store, USER)) == 2

    def test_password_in_bot_mode(self, processor, gateway, store, make_event):
        processor.handle(make_event("1"))
        assert store.get_user(USER).state == ConversationState.AWAITING_ORDER_NUMBER
        gateway.reset_mock()

        result = processor.handle(make_event("password: secret123"))

        assert result.handled == "bot_sensitive"
        assert [c.args for c in gateway.send.call_args_list] == [
            (USER, sensitive.SENSITIVE_WARNING),
            (USER, menus.MAIN_MENU_TEXT),
        ]
        gateway.forward.assert_not_called()
        assert store.get_user(USER).selected_step is None
        rows = ledger(store, USER)
        assert rows[-2].meta == {"kind": "SENSITIVE_WARNING", "sensitive": "PASSWORD"}
        assert rows[-1].meta == {"kind": "MENU_AFTER_SENSITIVE"}


class TestBotFlow:
    def test_order_number_flow(self, processor, gateway, store, make_event):
        assert processor.handle(make_event("1")).handled == "menu_1"
        result = processor.handle(make_event("ORD12345"))

        assert result.handled == "order_placeholder"
        assert store.get_user(USER).selected_step is None
        last = ledger(store, USER)[-1]
        assert last.meta == {"kind": "ORDER_PLACEHOLDER", "order_no": "ORD12345"}
        assert last.status == "SENT"

    def test_invalid_menu_number(self, processor, store, make_event):
        assert processor.handle(make_event("9")).handled == "invalid_menu"
        assert ledger(store, USER)[-1].meta == {"kind": "INVALID_MENU_NUMBER", "menu_no": 9}

    def test_fallback(self, processor, gateway, make_event):
        assert processor.handle(make_event("apa kabar")).handled == "fallback"
        gateway.send.assert_called_once_with(USER, menus.FALLBACK_TEXT)

    def test_identity_is_canonicalized(self, processor, store, make_event):
        processor.handle(make_event("menu", sender="+62 811-1222-333"))
        assert store.get_user(USER) is not None

    def test_inbound_row_uses_event_timestamp(self, processor, store, make_event):
        processor.handle(make_event("menu", timestamp=1_700_000_123))
        inbound = ledger(store, USER)[0]
        assert inbound.direction == "IN"
        assert inbound.timestamp == 1_700_000_123_000
        assert inbound.external_message_id is not None
        assert inbound.from_identity == USER

    def test_missing_timestamp_uses_clock(self, processor, store, clock, make_event):
        processor.handle(make_event("menu", timestamp="not-a-time"))
        assert ledger(store, USER)[0].timestamp == clock.now


class TestSensitiveInHumanMode:
    def test_masked_forward(self, processor, gateway, store, make_event):
        store.upsert_user(USER)
        store.set_mode(USER, Mode.HUMAN)

        result = processor.handle(make_event("kode otp 123456"))

        assert result.handled == "human_forward_sensitive"
        gateway.send.assert_called_once_with(USER, sensitive.SENSITIVE_WARNING)
        gateway.forward.assert_called_once_with(OPERATOR, USER, "kode otp ****56")
        rows = ledger(store, USER)
        assert rows[-1].meta == {"kind": "SENSITIVE_MASKED", "sensitive": "OTP"}
        # the raw inbound text stays on the IN row
        assert rows[0].text == "kode otp 123456"


class TestValidation:
    @pytest.mark.parametrize(
        "payload, code",
        [
            ({}, "invalid_payload"),
            ({"from": USER, "text": "hi"}, "invalid_payload"),
            ({"message_id": "", "from": USER}, "invalid_payload"),
            ({"message_id": "m1", "from": "abc"}, "invalid_from"),
            ({"message_id": "m1", "from": "12"}, "invalid_from"),
        ],
    )
    def test_rejected_without_side_effects(self, processor, gateway, store, payload, code):
        result = processor.handle(payload)

        assert result.ok is False
        assert result.error == code
        assert store.list_users()["total"] == 0
        gateway.send.assert_not_called()

    def test_rejected_event_is_not_marked(self, processor, store):
        processor.handle({"message_id": "m1", "from": "x"})
        assert store.try_mark_processed("m1") is True

    def test_alternate_field_names(self, processor, store):
        result = processor.handle({"externalMessageId": "e1", "fromIdentity": USER, "text": "menu"})
        assert result.handled == "menu"

    def test_numeric_sender(self, processor, store):
        result = processor.handle({"message_id": "m1", "from": 628111222333, "text": "menu"})
        assert result.ok is True
        assert store.get_user(USER) is not None


class TestOperatorCommands:
    def test_parse(self):
        command = parse_operator_command("#BotOn  +62 811 1222 333")
        assert command.name == "boton"
        assert command.target == "+62 811 1222 333"
        assert parse_operator_command("halo #close 123") is None

    def test_close_returns_user_to_bot(self, processor, gateway, store, make_event):
        store.upsert_user(USER)
        store.set_mode(USER, Mode.HUMAN)

        result = processor.handle(make_event(f"#close {USER}", sender=OPERATOR))

        assert result.handled == "cs_command"
        assert store.get_user(USER).mode == "BOT"
        gateway.send.assert_called_once()
        assert gateway.send.call_args.args[0] == OPERATOR
        assert USER in gateway.send.call_args.args[1]
        assert kinds(ledger(store, OPERATOR)) == [("IN", "CS_COMMAND"), ("OUT", "CS_COMMAND_ACK")]
        assert ledger(store, OPERATOR)[0].meta == {"kind": "CS_COMMAND", "cmd": "close", "target": USER}
        assert ledger(store, USER) == []

    def test_invalid_target(self, processor, gateway, store, make_event):
        result = processor.handle(make_event("#close abc", sender=OPERATOR))

        assert result.handled == "cs_command_invalid"
        gateway.send.assert_called_once_with(OPERATOR, MSG_CS_COMMAND_INVALID)
        assert kinds(ledger(store, OPERATOR)) == [("IN", "CS_COMMAND_INVALID"), ("OUT", "CS_COMMAND_INVALID")]

    def test_non_command_is_archived_only(self, processor, gateway, store, make_event):
        result = processor.handle(make_event("siap, sudah dibantu", sender=OPERATOR))

        assert result.handled == "cs_ignored"
        gateway.send.assert_not_called()
        gateway.forward.assert_not_called()
        assert kinds(ledger(store, OPERATOR)) == [("IN", "CS_NON_COMMAND")]

    def test_unknown_target_is_created(self, processor, store, make_event):
        processor.handle(make_event("#boton 628555000111", sender=OPERATOR))
        user = store.get_user("628555000111")
        assert user is not None
        assert user.mode == "BOT"

    def test_operator_targeting_itself(self, processor, store, make_event):
        result = processor.handle(make_event(f"#close {OPERATOR}", sender=OPERATOR))
        assert result.handled == "cs_command"
        assert store.get_user(OPERATOR).mode == "BOT"

    def test_operator_is_not_rate_limited(self, store, gateway, clock, make_event):
        settings = Settings(_env_file=None, cs_number=OPERATOR, rate_limit_min_ms=60_000)
        processor = InboundProcessor(store, gateway, settings, clock=clock)
        results = [processor.handle(make_event("ok", sender=OPERATOR)).handled for _ in range(3)]
        assert results == ["cs_ignored"] * 3


class TestRateLimit:
    @pytest.fixture
    def limited(self, store, gateway, clock):
        settings = Settings(_env_file=None, cs_number=OPERATOR, rate_limit_min_ms=1000)
        return InboundProcessor(store, gateway, settings, clock=clock)

    def test_burst_is_logged_not_processed(self, limited, gateway, store, make_event):
        assert limited.handle(make_event("menu")).handled == "menu"
        result = limited.handle(make_event("menu"))

        assert result.handled == "rate_limited"
        assert gateway.send.call_count == 1
        assert kinds(ledger(store, USER))[-1] == ("IN", "RATE_LIMITED")

    def test_allowed_after_interval(self, limited, clock, make_event):
        limited.handle(make_event("menu"))
        clock.advance(1000)
        assert limited.handle(make_event("menu")).handled == "menu"


class TestGatewayFailures:
    def test_failed_send_is_recorded(self, processor, gateway, store, make_event):
        gateway.send.return_value = DeliveryResult.failure("http_500: boom")

        result = processor.handle(make_event("menu"))

        assert result.ok is True
        assert result.handled == "menu"
        out = ledger(store, USER)[-1]
        assert out.status == "FAILED"
        assert out.error == "http_500: boom"

    def test_raising_gateway_is_contained(self, processor, gateway, store, make_event):
        gateway.send.side_effect = RuntimeError("socket closed")
        gateway.forward.side_effect = RuntimeError("socket closed")

        result = processor.handle(make_event("5"))

        assert result.handled == "menu_5"
        rows = ledger(store, USER)
        assert [(r.direction, r.status) for r in rows[1:]] == [("OUT", "FAILED"), ("FWD", "FAILED")]
        assert rows[-1].error == "socket closed"
        assert store.get_user(USER).mode == "HUMAN"

    def test_failure_without_reason_gets_default(self, processor, gateway, store, make_event):
        gateway.forward.return_value = DeliveryResult(ok=False)
        processor.handle(make_event("5"))
        assert ledger(store, USER)[-1].error == "forward_failed"


class TestStoreFailures:
    def test_outage_propagates(self, gateway, bot_settings, clock, make_event):
        store = Mock(spec=ConversationStore)
        store.try_mark_processed.side_effect = StoreUnavailable("db down")
        processor = InboundProcessor(store, gateway, bot_settings, clock=clock)

        with pytest.raises(StoreUnavailable):
            processor.handle(make_event("menu"))
        gateway.send.assert_not_called()

    def test_ledger_write_failure_propagates(self, store, gateway, bot_settings, clock, make_event, monkeypatch):
        processor = InboundProcessor(store, gateway, bot_settings, clock=clock)
        monkeypatch.setattr(store, "insert_message", Mock(side_effect=StoreUnavailable("db down")))

        with pytest.raises(StoreUnavailable):
            processor.handle(make_event("menu"))


class TestAdminOperations:
    def test_set_human_with_notify(self, processor, gateway, store):
        user = processor.admin_set_mode(USER, "human", notify_user=True)

        assert user.mode == "HUMAN"
        gateway.send.assert_called_once_with(USER, MSG_ADMIN_NOTIFY_HUMAN)
        gateway.forward.assert_called_once_with(OPERATOR, USER, MSG_ADMIN_TAKEOVER)
        assert kinds(ledger(store, USER)) == [
            ("SYS", "ADMIN_SET_MODE"),
            ("OUT", "ADMIN_NOTIFY_HUMAN"),
            ("FWD", "ADMIN_TAKEOVER_NOTIFY"),
        ]

    def test_set_bot_with_notify(self, processor, gateway, store):
        processor.admin_set_mode(USER, "HUMAN")
        processor.admin_set_mode(USER, "BOT", notify_user=True)
        gateway.send.assert_called_once_with(USER, MSG_ADMIN_NOTIFY_BOT)
        gateway.forward.assert_not_called()

    def test_set_mode_without_notify_is_silent(self, processor, gateway, store):
        processor.admin_set_mode(USER, "HUMAN")
        gateway.send.assert_not_called()
        assert ledger(store, USER)[0].meta == {"kind": "ADMIN_SET_MODE", "mode": "HUMAN"}

    def test_invalid_mode(self, processor, store):
        with pytest.raises(InboundValidationError) as exc_info:
            processor.admin_set_mode(USER, "robot")
        assert exc_info.value.code == "invalid_mode"
        assert store.get_user(USER) is None

    def test_invalid_identity(self, processor):
        with pytest.raises(InboundValidationError) as exc_info:
            processor.admin_set_mode("abc", "BOT")
        assert exc_info.value.code == "invalid_identity"

    def test_manual_send(self, processor, gateway, store):
        result = processor.admin_send_message(USER, "  Halo kak, pesanan sudah dikirim  ")

        assert result.ok is True
        gateway.send.assert_called_once_with(USER, "Halo kak, pesanan sudah dikirim")
        assert kinds(ledger(store, USER)) == [("OUT", "ADMIN_MANUAL")]

    def test_manual_send_empty_text(self, processor, gateway):
        with pytest.raises(InboundValidationError) as exc_info:
            processor.admin_send_message(USER, "   ")
        assert exc_info.value.code == "empty_text"
        gateway.send.assert_not_called()


class TestMarkReleaseOnStoreFailure:
    def test_redelivery_after_failure_is_processed(self, processor, store, gateway, make_event, monkeypatch):
        event = make_event("menu", message_id="retry-1")
        real_insert = store.insert_message
        monkeypatch.setattr(store, "insert_message", Mock(side_effect=StoreUnavailable("db down")))

        with pytest.raises(StoreUnavailable):
            processor.handle(event)

        monkeypatch.setattr(store, "insert_message", real_insert)
        result = processor.handle(event)

        assert result.duplicate is False
        assert result.handled == "menu"
        assert kinds(ledger(store, USER)) == [("IN", None), ("OUT", "MENU")]
        assert ledger(store, USER)[0].external_message_id == "retry-1"

    def test_failed_release_keeps_original_error(self, gateway, bot_settings, clock, make_event):
        store = Mock(spec=ConversationStore)
        store.try_mark_processed.return_value = True
        store.touch_user.side_effect = StoreUnavailable("db down")
        store.release_processed.side_effect = StoreUnavailable("still down")
        processor = InboundProcessor(store, gateway, bot_settings, clock=clock)

        with pytest.raises(StoreUnavailable, match="db down"):
            processor.handle(make_event("menu", message_id="retry-2"))
        store.release_processed.assert_called_once_with("retry-2")

    def test_duplicate_does_not_release(self, processor, store, make_event, monkeypatch):
        event = make_event("menu", message_id="dup-1")
        processor.handle(event)
        release = Mock()
        monkeypatch.setattr(store, "release_processed", release)

        assert processor.handle(event).duplicate is True
        release.assert_not_called()
