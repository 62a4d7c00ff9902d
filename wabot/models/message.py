from enum import Enum

from sqlalchemy import JSON, BigInteger, CheckConstraint, Column, ForeignKey, Index, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from wabot.database import Base


class Direction(str, Enum):
    IN = "IN"
    OUT = "OUT"
    FWD = "FWD"
    SYS = "SYS"


class DeliveryStatus(str, Enum):
    SENT = "SENT"
    FAILED = "FAILED"


class Message(Base):
    """Append-only ledger row. Never updated or deleted by the bot."""

    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint("direction IN ('IN', 'OUT', 'FWD', 'SYS')", name="ck_messages_direction"),
        Index("ix_messages_user_id_created_at", "user_id", "created_at"),
        Index("ix_messages_external_message_id", "external_message_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    direction = Column(Text, nullable=False)
    external_message_id = Column(Text)  # IN only
    from_identity = Column(Text)
    to_identity = Column(Text)
    text = Column(Text, nullable=False)
    timestamp = Column(BigInteger, nullable=False)  # event time, epoch ms
    status = Column(Text)  # OUT/FWD only
    error = Column(Text)
    meta = Column(JSON().with_variant(JSONB, "postgresql"))
    created_at = Column(BigInteger, nullable=False)

    user = relationship("User", back_populates="messages")
