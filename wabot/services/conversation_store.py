"""Durable conversation state: users, the append-only message ledger and the
processed-event idempotency table.

Every public method is one transaction. SQLAlchemy failures surface as
StoreUnavailable and leave nothing half-written.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from wabot.database import SessionLocal
from wabot.logging_config import get_logger
from wabot.models import Message, ProcessedEvent, User
from wabot.services.errors import StoreUnavailable
from wabot.services.state_machine import (
    ConversationState,
    Mode,
    can_transition,
    columns_for_state,
    state_for_mode,
    state_for_step,
    transition,
)
from wabot.services.timeutils import Clock, now_ms

logger = get_logger("conversation_store")

LOCK_STRIPES = 64


@dataclass(frozen=True)
class UserSnapshot:
    identity: str
    mode: str
    selected_step: Optional[int]
    last_interaction_at: int

    @staticmethod
    def of(user: User) -> "UserSnapshot":
        return UserSnapshot(
            identity=user.identity,
            mode=user.mode,
            selected_step=user.selected_step,
            last_interaction_at=int(user.last_interaction_at or 0),
        )


@dataclass(frozen=True)
class TouchResult:
    user: User
    previous: Optional[UserSnapshot]
    timed_out: bool


class ConversationStore:
    def __init__(self, session_factory: sessionmaker = SessionLocal, clock: Clock = now_ms):
        self._session_factory = session_factory
        self._clock = clock
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    # === plumbing ===

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Store operation failed", extra={"context": {"error": str(exc)}})
            raise StoreUnavailable(str(exc)) from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _identity_lock(self, identity: str) -> threading.Lock:
        return self._locks[hash(identity) % LOCK_STRIPES]

    @staticmethod
    def _dialect_insert(db: Session, model):
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        return None

    @staticmethod
    def _select_user(db: Session, identity: str, for_update: bool = False) -> Optional[User]:
        query = db.query(User).filter(User.identity == identity).populate_existing()
        if for_update:
            query = query.with_for_update()
        return query.first()

    def _upsert(self, db: Session, identity: str, last_interaction_at: int) -> User:
        now = self._clock()
        stmt = self._dialect_insert(db, User)
        if stmt is not None:
            stmt = stmt.values(
                identity=identity,
                mode=Mode.BOT.value,
                selected_step=None,
                last_interaction_at=last_interaction_at,
                created_at=now,
                updated_at=now,
            ).on_conflict_do_update(
                index_elements=[User.identity],
                set_={"last_interaction_at": last_interaction_at, "updated_at": now},
            )
            db.execute(stmt)
        else:
            user = self._select_user(db, identity, for_update=True)
            if user is None:
                db.add(
                    User(
                        identity=identity,
                        mode=Mode.BOT.value,
                        last_interaction_at=last_interaction_at,
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                user.last_interaction_at = last_interaction_at
                user.updated_at = now
            db.flush()
        return self._select_user(db, identity)

    def _write_state(self, db: Session, identity: str, state: ConversationState) -> Optional[User]:
        """The only writer of mode/selected_step. Checks the move against the row's current state."""
        user = self._select_user(db, identity, for_update=True)
        if user is None:
            return None
        transition(user.state, state)
        mode, step = columns_for_state(state)
        db.execute(
            update(User)
            .where(User.identity == identity)
            .values(mode=mode.value, selected_step=step, updated_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        return self._select_user(db, identity)

    # === users ===

    def get_user(self, identity: str) -> Optional[User]:
        with self._transaction() as db:
            return self._select_user(db, identity)

    def upsert_user(self, identity: str, last_interaction_at: Optional[int] = None) -> User:
        """Create a BOT/idle user or bump last_interaction_at. Never touches mode or step."""
        at = last_interaction_at if last_interaction_at is not None else self._clock()
        with self._identity_lock(identity), self._transaction() as db:
            return self._upsert(db, identity, at)

    def touch_user(self, identity: str, now: int, idle_timeout_ms: int) -> TouchResult:
        """Record an inbound interaction and apply the HUMAN idle timeout in one step.

        The timeout is judged against the interaction time recorded before this call.
        """
        with self._identity_lock(identity), self._transaction() as db:
            existing = self._select_user(db, identity, for_update=True)
            previous = UserSnapshot.of(existing) if existing is not None else None
            self._upsert(db, identity, now)

            timed_out = (
                previous is not None
                and previous.mode == Mode.HUMAN.value
                and now - previous.last_interaction_at > idle_timeout_ms
            )
            if timed_out:
                self._write_state(db, identity, ConversationState.IDLE)

            return TouchResult(user=self._select_user(db, identity), previous=previous, timed_out=timed_out)

    def set_mode(self, identity: str, mode: Mode) -> Optional[User]:
        """Switch mode; the selected step is always cleared."""
        with self._identity_lock(identity), self._transaction() as db:
            return self._write_state(db, identity, state_for_mode(Mode(mode)))

    def set_selected_step(self, identity: str, step: Optional[int]) -> Optional[User]:
        """Set or clear the in-progress step. A HUMAN user never gets a step."""
        with self._identity_lock(identity), self._transaction() as db:
            user = self._select_user(db, identity, for_update=True)
            if user is None:
                return None
            if step is None and user.is_human:
                return user

            target = state_for_step(step)
            if not can_transition(user.state, target):
                logger.info(
                    "Step refused for user in HUMAN mode",
                    extra={"context": {"identity": identity, "step": step}},
                )
                return user
            return self._write_state(db, identity, target)

    def list_users(self, limit: int = 100, offset: int = 0) -> dict:
        with self._transaction() as db:
            rows = (
                db.query(User)
                .order_by(User.last_interaction_at.desc(), User.id.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )
            total = db.query(func.count(User.id)).scalar() or 0
            return {"rows": rows, "total": int(total), "limit": limit, "offset": offset}

    def sweep_timeouts(self, cutoff: int) -> int:
        """Return every HUMAN user idle since before `cutoff` to BOT in one statement."""
        mode, step = columns_for_state(ConversationState.IDLE)
        with self._transaction() as db:
            result = db.execute(
                update(User)
                .where(User.mode == Mode.HUMAN.value, User.last_interaction_at < cutoff)
                .values(mode=mode.value, selected_step=step, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    # === ledger ===

    def insert_message(
        self,
        *,
        user_id: int,
        direction: str,
        text: str,
        timestamp: int,
        external_message_id: Optional[str] = None,
        from_identity: Optional[str] = None,
        to_identity: Optional[str] = None,
        status: Optional[str] = None,
        error: Optional[str] = None,
        meta: Optional[dict] = None,
    ) -> Message:
        with self._transaction() as db:
            message = Message(
                user_id=user_id,
                direction=direction,
                external_message_id=external_message_id,
                from_identity=from_identity,
                to_identity=to_identity,
                text=text,
                timestamp=timestamp,
                status=status,
                error=error,
                meta=meta,
                created_at=self._clock(),
            )
            db.add(message)
            db.flush()
            return message

    def list_messages(self, identity: str, limit: int = 20, offset: int = 0) -> list[Message]:
        with self._transaction() as db:
            return (
                db.query(Message)
                .join(User, User.id == Message.user_id)
                .filter(User.identity == identity)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )

    # === idempotency ===

    def try_mark_processed(self, external_message_id: str) -> bool:
        """Insert-if-absent. True only for the call that performed the insert."""
        now = self._clock()
        try:
            with self._transaction() as db:
                stmt = self._dialect_insert(db, ProcessedEvent)
                if stmt is not None:
                    result = db.execute(
                        stmt.values(external_message_id=external_message_id, processed_at=now)
                        .on_conflict_do_nothing(index_elements=[ProcessedEvent.external_message_id])
                    )
                    return result.rowcount == 1
                db.add(ProcessedEvent(external_message_id=external_message_id, processed_at=now))
                db.flush()
                return True
        except StoreUnavailable as exc:
            if isinstance(exc.__cause__, IntegrityError):
                return False
            raise

    def release_processed(self, external_message_id: str) -> bool:
        """Forget a processed mark so a redelivery of the event is handled again."""
        with self._transaction() as db:
            result = db.execute(
                delete(ProcessedEvent).where(ProcessedEvent.external_message_id == external_message_id)
            )
            return result.rowcount == 1
