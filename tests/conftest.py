import itertools
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import wabot.models  # noqa: F401
from wabot.config import Settings
from wabot.database import Base
from wabot.services.conversation_store import ConversationStore
from wabot.services.gateway import OutboundGateway
from wabot.services.inbound_service import InboundProcessor
from wabot.services.result import DeliveryResult

from tests.helpers import OPERATOR, USER, FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def store(session_factory, clock):
    return ConversationStore(session_factory, clock=clock)


@pytest.fixture
def gateway():
    """Mock gateway that reports every delivery as successful."""
    gateway = Mock(spec=OutboundGateway)
    gateway.send.return_value = DeliveryResult.success()
    gateway.forward.return_value = DeliveryResult.success()
    return gateway


@pytest.fixture
def bot_settings():
    return Settings(
        _env_file=None,
        cs_number=OPERATOR,
        auto_timeout_hours=1,
        rate_limit_min_ms=0,
        gateway_stub=True,
        admin_user="admin",
        admin_pass="secret",
    )


@pytest.fixture
def processor(store, gateway, bot_settings, clock):
    return InboundProcessor(store, gateway, bot_settings, clock=clock)


@pytest.fixture
def make_event():
    """Build inbound payloads with unique message ids."""
    counter = itertools.count(1)

    def _make(text, sender=USER, message_id=None, **extra):
        payload = {
            "message_id": message_id or f"m{next(counter)}",
            "from": sender,
            "text": text,
        }
        payload.update(extra)
        return payload

    return _make
