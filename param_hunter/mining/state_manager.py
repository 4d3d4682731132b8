"""
Session state machine with a cooperative continue check.
"""

import asyncio
from typing import Optional

from ..core.models import MiningSessionPhase, MiningSessionState
from .events import SessionEvents

PAUSE_POLL_INTERVAL = 0.1


class StateManager:
    """
    Tracks the lifecycle state and phase of one session.

    Terminal states are sticky: once completed, errored, canceled or timed
    out, further transitions are ignored.
    """

    def __init__(self, events: SessionEvents, poll_interval: float = PAUSE_POLL_INTERVAL):
        self.events = events
        self.poll_interval = poll_interval
        self._state = MiningSessionState.PENDING
        self._phase = MiningSessionPhase.IDLE

    @property
    def state(self) -> MiningSessionState:
        return self._state

    @property
    def phase(self) -> MiningSessionPhase:
        return self._phase

    async def continue_or_wait(self) -> bool:
        """
        Suspension point used between probes.

        Blocks while the session is paused and returns whether work may
        continue.
        """
        if not self.should_continue():
            return False

        while self.is_paused():
            await asyncio.sleep(self.poll_interval)

        return self.should_continue()

    def update_state(self, new_state: MiningSessionState,
                     phase: Optional[MiningSessionPhase] = None) -> bool:
        """Move to ``new_state``; returns False if the session already ended."""
        old_state = self._state
        if old_state.is_terminal:
            self.events.debug(
                f"[state_manager] Ignoring change to {new_state.value}, session is {old_state.value}"
            )
            return False

        self._state = new_state
        if phase is not None:
            self._phase = phase
        if new_state.is_terminal:
            self._phase = MiningSessionPhase.IDLE

        self.events.state_change(old_state, new_state, self._phase)
        self.events.debug(
            f"[state_manager] State changed from {old_state.value} to {new_state.value}"
            + (f" ({phase.value})" if phase is not None else "")
        )
        return True

    def pause(self) -> None:
        if self.is_running_or_learning():
            self.update_state(MiningSessionState.PAUSED)

    def resume(self) -> None:
        if self.is_paused():
            if self._phase == MiningSessionPhase.LEARNING:
                self.update_state(MiningSessionState.LEARNING)
            else:
                self.update_state(MiningSessionState.RUNNING)

    def cancel(self) -> None:
        if not self._state.is_terminal:
            self.update_state(MiningSessionState.CANCELED)

    def should_continue(self) -> bool:
        return not self._state.is_terminal

    def is_active(self) -> bool:
        return self.is_running_or_learning() or self.is_paused()

    def is_paused(self) -> bool:
        return self._state == MiningSessionState.PAUSED

    def is_running_or_learning(self) -> bool:
        return self._state in (MiningSessionState.RUNNING, MiningSessionState.LEARNING)
