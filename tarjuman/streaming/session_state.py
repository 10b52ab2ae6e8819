# coding=utf-8
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet

from .errors import InvalidSessionTransition


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"


_ALLOWED: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.RECORDING}),
    SessionState.RECORDING: frozenset({SessionState.STOPPING}),
    SessionState.STOPPING: frozenset({SessionState.IDLE}),
}


@dataclass
class SessionStateMachine:
    """
    Recording lifecycle: idle -> recording -> stopping -> idle.

    `generation` increases on every entry into RECORDING so late pipeline
    results can be matched to the recording they came from.
    """

    state: SessionState = SessionState.IDLE
    generation: int = 0

    def can_transition(self, target: SessionState) -> bool:
        return target in _ALLOWED[self.state]

    def transition(self, target: SessionState) -> SessionState:
        if not self.can_transition(target):
            raise InvalidSessionTransition(self.state.value, target.value)
        self.state = target
        if target == SessionState.RECORDING:
            self.generation += 1
        return self.state

    @property
    def is_recording(self) -> bool:
        return self.state == SessionState.RECORDING

    @property
    def is_idle(self) -> bool:
        return self.state == SessionState.IDLE
