"""Process-wide service wiring, overridable in tests via app.dependency_overrides."""

from functools import lru_cache

from wabot.config import Settings, settings
from wabot.database import SessionLocal
from wabot.services.conversation_store import ConversationStore
from wabot.services.gateway import OutboundGateway, build_gateway
from wabot.services.inbound_service import InboundProcessor
from wabot.services.timeout_sweeper import TimeoutSweeper


def get_settings() -> Settings:
    return settings


@lru_cache
def get_store() -> ConversationStore:
    return ConversationStore(SessionLocal)


@lru_cache
def get_gateway() -> OutboundGateway:
    return build_gateway(settings)


@lru_cache
def get_processor() -> InboundProcessor:
    return InboundProcessor(get_store(), get_gateway(), settings)


@lru_cache
def get_sweeper() -> TimeoutSweeper:
    return TimeoutSweeper(get_store(), settings.auto_timeout_ms)
