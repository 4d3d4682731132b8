"""
Typed per-session event dispatch.

Every event kind has its own payload dataclass and listener slot, so
listeners never deal with string event names or loosely shaped arguments.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, ClassVar, Dict, List, Optional

from ..core.models import (
    Finding,
    MiningSessionPhase,
    MiningSessionState,
    RequestContext,
    RequestResponse,
)


class EventKind(str, Enum):
    """Kinds of events a mining session publishes."""
    PROGRESS = "progress"
    RESPONSE = "response"
    FINDING = "finding"
    LOG = "log"
    DEBUG = "debug"
    STATE_CHANGE = "state_change"
    ERROR = "error"
    TOTAL_ADJUSTED = "total_adjusted"


@dataclass(frozen=True)
class ProgressEvent:
    """Chunks completed out of the expected total."""
    kind: ClassVar[EventKind] = EventKind.PROGRESS
    completed: int
    total: int


@dataclass(frozen=True)
class ResponseEvent:
    """A probe response, omitted in performance mode."""
    kind: ClassVar[EventKind] = EventKind.RESPONSE
    parameters_sent: int
    context: RequestContext
    request_response: Optional[RequestResponse] = None


@dataclass(frozen=True)
class FindingEvent:
    kind: ClassVar[EventKind] = EventKind.FINDING
    finding: Finding


@dataclass(frozen=True)
class LogEvent:
    kind: ClassVar[EventKind] = EventKind.LOG
    message: str


@dataclass(frozen=True)
class DebugEvent:
    kind: ClassVar[EventKind] = EventKind.DEBUG
    message: str


@dataclass(frozen=True)
class StateChangeEvent:
    kind: ClassVar[EventKind] = EventKind.STATE_CHANGE
    old_state: MiningSessionState
    new_state: MiningSessionState
    phase: MiningSessionPhase


@dataclass(frozen=True)
class ErrorEvent:
    kind: ClassVar[EventKind] = EventKind.ERROR
    message: str


@dataclass(frozen=True)
class TotalAdjustedEvent:
    """The expected number of chunks changed."""
    kind: ClassVar[EventKind] = EventKind.TOTAL_ADJUSTED
    total: int


class SessionEvents:
    """Listener registry owned by one mining session."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._listeners: Dict[EventKind, List[Callable]] = {kind: [] for kind in EventKind}

    def subscribe(self, kind: EventKind, callback: Callable) -> Callable:
        """Register ``callback`` for one event kind and return it."""
        self._listeners[EventKind(kind)].append(callback)
        return callback

    def unsubscribe(self, kind: EventKind, callback: Callable) -> None:
        listeners = self._listeners[EventKind(kind)]
        if callback in listeners:
            listeners.remove(callback)

    def on_progress(self, callback: Callable[[ProgressEvent], None]) -> Callable:
        return self.subscribe(EventKind.PROGRESS, callback)

    def on_response(self, callback: Callable[[ResponseEvent], None]) -> Callable:
        return self.subscribe(EventKind.RESPONSE, callback)

    def on_finding(self, callback: Callable[[FindingEvent], None]) -> Callable:
        return self.subscribe(EventKind.FINDING, callback)

    def on_log(self, callback: Callable[[LogEvent], None]) -> Callable:
        return self.subscribe(EventKind.LOG, callback)

    def on_debug(self, callback: Callable[[DebugEvent], None]) -> Callable:
        return self.subscribe(EventKind.DEBUG, callback)

    def on_state_change(self, callback: Callable[[StateChangeEvent], None]) -> Callable:
        return self.subscribe(EventKind.STATE_CHANGE, callback)

    def on_error(self, callback: Callable[[ErrorEvent], None]) -> Callable:
        return self.subscribe(EventKind.ERROR, callback)

    def on_total_adjusted(self, callback: Callable[[TotalAdjustedEvent], None]) -> Callable:
        return self.subscribe(EventKind.TOTAL_ADJUSTED, callback)

    def publish(self, event) -> None:
        """Deliver ``event`` to the listeners of its kind."""
        for callback in list(self._listeners[event.kind]):
            try:
                callback(event)
            except Exception:
                self.logger.exception(f"Listener for {event.kind.value} events failed")

    def progress(self, completed: int, total: int) -> None:
        self.publish(ProgressEvent(completed=completed, total=total))

    def response(self, parameters_sent: int, context: RequestContext,
                 request_response: Optional[RequestResponse]) -> None:
        self.publish(ResponseEvent(parameters_sent, context, request_response))

    def finding(self, finding: Finding) -> None:
        self.logger.info(
            f"Found parameter {finding.parameter.name} ({finding.anomaly_kind.value})"
        )
        self.publish(FindingEvent(finding))

    def log(self, message: str) -> None:
        self.logger.info(message)
        self.publish(LogEvent(message))

    def debug(self, message: str) -> None:
        self.logger.debug(message)
        self.publish(DebugEvent(message))

    def state_change(self, old_state: MiningSessionState, new_state: MiningSessionState,
                     phase: MiningSessionPhase) -> None:
        self.publish(StateChangeEvent(old_state, new_state, phase))

    def error(self, message: str) -> None:
        self.logger.error(message)
        self.publish(ErrorEvent(message))

    def total_adjusted(self, total: int) -> None:
        self.publish(TotalAdjustedEvent(total))
