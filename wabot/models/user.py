from sqlalchemy import BigInteger, CheckConstraint, Column, Integer, Text
from sqlalchemy.orm import relationship

from wabot.database import Base
from wabot.services.state_machine import ConversationState, Mode, state_from_columns


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("mode IN ('BOT', 'HUMAN')", name="ck_users_mode"),
        CheckConstraint("mode = 'BOT' OR selected_step IS NULL", name="ck_users_human_has_no_step"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    identity = Column(Text, nullable=False, unique=True)
    mode = Column(Text, nullable=False, default=Mode.BOT.value)
    selected_step = Column(Integer)
    last_interaction_at = Column(BigInteger, nullable=False)  # epoch ms
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)

    messages = relationship("Message", back_populates="user", passive_deletes=True)

    @property
    def state(self) -> ConversationState:
        return state_from_columns(self.mode, self.selected_step)

    @property
    def is_human(self) -> bool:
        return self.mode == Mode.HUMAN.value
