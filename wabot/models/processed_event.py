from sqlalchemy import BigInteger, Column, Text

from wabot.database import Base


class ProcessedEvent(Base):
    __tablename__ = "processed_events"

    external_message_id = Column(Text, primary_key=True)
    processed_at = Column(BigInteger, nullable=False)
