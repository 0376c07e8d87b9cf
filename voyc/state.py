"""Dictation lifecycle state machine."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from voyc.events import CallbackList

logger = logging.getLogger(__name__)

MAX_HISTORY = 100


class DictationState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    LISTENING = "listening"
    STOPPING = "stopping"
    PROCESSING = "processing"
    INJECTING = "injecting"
    ERROR = "error"


class TransitionReason(str, Enum):
    USER_TOGGLE = "user_toggle"
    HOTKEY = "hotkey"
    SILENCE_DETECTED = "silence_detected"
    STT_COMPLETE = "stt_complete"
    POSTPROCESS_COMPLETE = "postprocess_complete"
    INJECTION_COMPLETE = "injection_complete"
    ERROR = "error"
    ABORT = "abort"


S = DictationState

TRANSITIONS: dict[DictationState, frozenset[DictationState]] = {
    S.IDLE: frozenset({S.STARTING, S.ERROR}),
    S.STARTING: frozenset({S.LISTENING, S.IDLE, S.ERROR}),
    S.LISTENING: frozenset({S.STOPPING, S.PROCESSING, S.IDLE, S.ERROR}),
    S.STOPPING: frozenset({S.PROCESSING, S.IDLE, S.ERROR}),
    S.PROCESSING: frozenset({S.INJECTING, S.IDLE, S.ERROR}),
    S.INJECTING: frozenset({S.IDLE, S.ERROR}),
    S.ERROR: frozenset({S.IDLE}),
}


@dataclass(frozen=True)
class StateTransition:
    from_state: DictationState
    to_state: DictationState
    timestamp: float
    reason: TransitionReason
    error: str | None = None


TransitionCallback = Callable[[StateTransition], None]


def is_valid_transition(current: DictationState, target: DictationState) -> bool:
    return target in TRANSITIONS[current]


class DictationStateMachine:
    """
    Authoritative record of where the dictation pipeline is.

    Every change goes through :meth:`transition`, which validates the move
    against :data:`TRANSITIONS`. Rejected moves return ``False`` and leave
    state, history and observers untouched. The named helpers (``start``,
    ``stop``, ``mark_*``, ``reset``) check the current state first and only
    then request the transition.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_history: int = MAX_HISTORY,
    ) -> None:
        self._clock = clock
        self._state = DictationState.IDLE
        self._entered_at = clock()
        self._history: deque[StateTransition] = deque(maxlen=max_history)
        self._last_error: str | None = None
        self._observers: CallbackList[TransitionCallback] = CallbackList("state")

    @property
    def state(self) -> DictationState:
        return self._state

    @property
    def history(self) -> list[StateTransition]:
        return list(self._history)

    @property
    def last_error(self) -> str | None:
        """Detail of the transition that entered ``error``, while still in it."""
        return self._last_error if self._state == DictationState.ERROR else None

    @property
    def is_idle(self) -> bool:
        return self._state == DictationState.IDLE

    @property
    def is_listening(self) -> bool:
        return self._state == DictationState.LISTENING

    @property
    def is_processing(self) -> bool:
        return self._state in (
            DictationState.STOPPING,
            DictationState.PROCESSING,
            DictationState.INJECTING,
        )

    @property
    def can_start(self) -> bool:
        return self._state in (DictationState.IDLE, DictationState.ERROR)

    @property
    def can_stop(self) -> bool:
        return self._state == DictationState.LISTENING

    def time_in_state(self) -> float:
        """Seconds since the current state was entered."""
        return self._clock() - self._entered_at

    def subscribe(self, callback: TransitionCallback) -> Callable[[], None]:
        """Register an observer; the returned function unsubscribes it."""
        return self._observers.add(callback)

    def transition(
        self,
        target: DictationState,
        reason: TransitionReason,
        error: str | None = None,
    ) -> bool:
        current = self._state
        if not is_valid_transition(current, target):
            logger.debug("Rejected transition %s -> %s (%s)", current.value, target.value, reason.value)
            return False

        now = self._clock()
        record = StateTransition(
            from_state=current,
            to_state=target,
            timestamp=now,
            reason=reason,
            error=error,
        )
        self._state = target
        self._entered_at = now
        self._history.append(record)
        if target == DictationState.ERROR:
            self._last_error = error

        logger.debug("State %s -> %s (%s)", current.value, target.value, reason.value)
        self._observers.emit(record)
        return True

    def start(self, reason: TransitionReason = TransitionReason.USER_TOGGLE) -> bool:
        if self._state != DictationState.IDLE:
            return False
        return self.transition(DictationState.STARTING, reason)

    def mark_capture_started(self) -> bool:
        if self._state != DictationState.STARTING:
            return False
        return self.transition(DictationState.LISTENING, TransitionReason.USER_TOGGLE)

    def stop(self, reason: TransitionReason = TransitionReason.USER_TOGGLE) -> bool:
        if self._state != DictationState.LISTENING:
            return False
        return self.transition(DictationState.STOPPING, reason)

    def mark_capture_stopped(
        self, reason: TransitionReason = TransitionReason.SILENCE_DETECTED
    ) -> bool:
        if self._state not in (DictationState.LISTENING, DictationState.STOPPING):
            return False
        return self.transition(DictationState.PROCESSING, reason)

    def mark_stt_complete(
        self, reason: TransitionReason = TransitionReason.STT_COMPLETE
    ) -> bool:
        if self._state != DictationState.PROCESSING:
            return False
        return self.transition(DictationState.INJECTING, reason)

    def mark_complete(self) -> bool:
        if self._state != DictationState.INJECTING:
            return False
        return self.transition(DictationState.IDLE, TransitionReason.INJECTION_COMPLETE)

    def mark_error(self, message: str) -> bool:
        if self._state == DictationState.ERROR:
            return False
        return self.transition(DictationState.ERROR, TransitionReason.ERROR, message)

    def reset(self, reason: TransitionReason = TransitionReason.ABORT) -> bool:
        """Return to ``idle`` from any state. Already idle counts as success."""
        if self._state == DictationState.IDLE:
            return True
        return self.transition(DictationState.IDLE, reason)

    def dispose(self) -> None:
        self._observers.clear()
        self._history.clear()
