"""
Advisory event channel.

The pipeline never prints; it emits :class:`ProcessingEvent` values through
an :class:`EventEmitter`, which logs them and forwards them to an optional
consumer callback.  Emitting is fire-and-forget: nothing a consumer does can
change what the pipeline computes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, Mapping, Optional, Set, Union

logger = logging.getLogger(__name__)

Detail = Union[int, float, str, bool]


class EventCode(Enum):
    # soft warnings / errors
    LOW_LIGHT            = "LOW_LIGHT"
    OVEREXPOSED          = "OVEREXPOSED"
    WEAK_SIGNAL          = "WEAK_SIGNAL"
    PROCESSING_ERROR     = "PROCESSING_ERROR"
    CALLBACK_ERROR       = "CALLBACK_ERROR"
    # telemetry
    FINGER_DETECTED      = "FINGER_DETECTED"
    FINGER_LOST          = "FINGER_LOST"
    CALIBRATION_COMPLETE = "CALIBRATION_COMPLETE"
    CALIBRATION_EXPIRED  = "CALIBRATION_EXPIRED"
    ARRHYTHMIA_CONFIRMED = "ARRHYTHMIA_CONFIRMED"
    ARRHYTHMIA_CLEARED   = "ARRHYTHMIA_CLEARED"
    FRAME_DROPPED        = "FRAME_DROPPED"
    RESULT_DISCARDED     = "RESULT_DISCARDED"


@dataclass(frozen=True)
class ProcessingEvent:
    code:         EventCode
    message:      str
    timestamp_ms: float = 0.0
    level:        int = logging.INFO
    details:      Mapping[str, Detail] = field(default_factory=dict)


EventCallback = Callable[[ProcessingEvent], None]


class EventEmitter:
    """
    Log events and forward them to *on_event*.

    Parameters
    ----------
    on_event:
        Optional consumer.  Exceptions it raises are logged and dropped.
    """

    def __init__(self, on_event: Optional[EventCallback] = None) -> None:
        self.on_event = on_event
        self._active: Set[EventCode] = set()

    def emit(
        self,
        code: EventCode,
        message: str,
        timestamp_ms: float = 0.0,
        level: int = logging.INFO,
        **details: Detail,
    ) -> ProcessingEvent:
        event = ProcessingEvent(code, message, timestamp_ms, level, dict(details))
        logger.log(level, "%s: %s", code.value, message)
        if self.on_event is not None:
            try:
                self.on_event(event)
            except Exception:
                logger.exception("Event consumer failed on %s", code.value)
        return event

    def condition(
        self,
        code: EventCode,
        active: bool,
        message: str,
        timestamp_ms: float = 0.0,
        **details: Detail,
    ) -> Optional[ProcessingEvent]:
        """
        Edge-triggered warning.

        Emits *code* at WARNING only when *active* turns true; the warning is
        re-armed once the condition clears.
        """
        if not active:
            self._active.discard(code)
            return None
        if code in self._active:
            return None
        self._active.add(code)
        return self.emit(code, message, timestamp_ms, logging.WARNING, **details)

    def reset(self) -> None:
        self._active.clear()

    @property
    def active_conditions(self) -> FrozenSet[EventCode]:
        return frozenset(self._active)
