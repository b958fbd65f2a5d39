from __future__ import annotations

from typing import Dict, List

from ..domain.chat_models import SessionState

# Only one backend request may be in flight; every busy state returns to idle.
SESSION_TRANSITIONS: Dict[SessionState, List[SessionState]] = {
    SessionState.IDLE: [SessionState.GENERATING, SessionState.REFINING],
    SessionState.GENERATING: [SessionState.IDLE],
    SessionState.REFINING: [SessionState.IDLE],
}

BUSY_STATES = frozenset({SessionState.GENERATING, SessionState.REFINING})


def is_valid_transition(current: SessionState, target: SessionState) -> bool:
    return target in SESSION_TRANSITIONS.get(current, [])


def is_busy(state: SessionState) -> bool:
    return state in BUSY_STATES
