"""Per-user conversation state.

A user row stores `mode` and `selected_step`; everything else reads those columns as a
single ConversationState and writes them back through `columns_for_state`, so a HUMAN
row can never carry a step.
"""

from enum import Enum
from typing import Optional

from wabot.services.errors import InvalidTransitionError


class Mode(str, Enum):
    BOT = "BOT"
    HUMAN = "HUMAN"


class ConversationState(str, Enum):
    IDLE = "idle"
    AWAITING_ORDER_NUMBER = "awaiting_order_number"
    HUMAN_HANDOFF = "human_handoff"


# selected_step values stored on the user row
STEP_AWAITING_ORDER_NUMBER = 1

_STEP_STATES = {
    STEP_AWAITING_ORDER_NUMBER: ConversationState.AWAITING_ORDER_NUMBER,
}

# HUMAN -> AWAITING_ORDER_NUMBER is the one move that is never allowed
ALLOWED_MOVES: dict[ConversationState, frozenset[ConversationState]] = {
    ConversationState.IDLE: frozenset(ConversationState),
    ConversationState.AWAITING_ORDER_NUMBER: frozenset(ConversationState),
    ConversationState.HUMAN_HANDOFF: frozenset({ConversationState.IDLE, ConversationState.HUMAN_HANDOFF}),
}


def state_from_columns(mode: str, selected_step: Optional[int]) -> ConversationState:
    """HUMAN wins over any step; an unknown step reads as IDLE."""
    if mode == Mode.HUMAN.value:
        return ConversationState.HUMAN_HANDOFF
    if selected_step is None:
        return ConversationState.IDLE
    return _STEP_STATES.get(int(selected_step), ConversationState.IDLE)


def columns_for_state(state: ConversationState) -> tuple[Mode, Optional[int]]:
    if state == ConversationState.HUMAN_HANDOFF:
        return Mode.HUMAN, None
    if state == ConversationState.AWAITING_ORDER_NUMBER:
        return Mode.BOT, STEP_AWAITING_ORDER_NUMBER
    return Mode.BOT, None


def state_for_mode(mode: Mode) -> ConversationState:
    return ConversationState.HUMAN_HANDOFF if mode == Mode.HUMAN else ConversationState.IDLE


def state_for_step(step: Optional[int]) -> ConversationState:
    """BOT-side state for a selected step. Raises ValueError for steps the bot does not know."""
    if step is None:
        return ConversationState.IDLE
    try:
        return _STEP_STATES[int(step)]
    except KeyError:
        raise ValueError(f"Unknown selected_step: {step}") from None


def can_transition(current: ConversationState, target: ConversationState) -> bool:
    return target in ALLOWED_MOVES.get(current, frozenset())


def transition(current: ConversationState, target: ConversationState) -> ConversationState:
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    return target
