"""Stage reporting for one submission's progress events."""

from __future__ import annotations

import structlog

from src.core.hub import EventHub
from src.models.events import StageEvent, StageName, StageStatus

log = structlog.get_logger(__name__)


class StageReporter:
    """Emits the stage events of one correlation id through the hub.

    Once a terminal (`final` or `error`) event went out, later emissions are
    dropped so every correlation id ends with exactly one terminal event.
    """

    def __init__(self, hub: EventHub, correlation_id: str) -> None:
        self._hub = hub
        self.correlation_id = correlation_id
        self._terminal: StageEvent | None = None

    @property
    def finished(self) -> bool:
        return self._terminal is not None

    @property
    def terminal_event(self) -> StageEvent | None:
        return self._terminal

    def emit(
        self,
        stage: StageName | str,
        message: str,
        status: StageStatus,
        *,
        level: str = "info",
    ) -> StageEvent | None:
        stage_name = stage.value if isinstance(stage, StageName) else stage
        if self._terminal is not None:
            log.warning(
                "stage_event_after_terminal",
                correlation_id=self.correlation_id,
                stage=stage_name,
                terminal_stage=self._terminal.stage,
            )
            return None

        event = StageEvent(
            correlation_id=self.correlation_id,
            stage=stage_name,
            message=message,
            status=status,
            level=level,
        )
        if status.is_terminal:
            self._terminal = event
        self._hub.publish(event)
        log.debug("stage_event", correlation_id=self.correlation_id, stage=stage_name, status=status.value)
        return event

    def progress(self, stage: StageName | str, message: str) -> StageEvent | None:
        return self.emit(stage, message, StageStatus.in_progress)

    def done(self, stage: StageName | str, message: str, *, level: str = "info") -> StageEvent | None:
        return self.emit(stage, message, StageStatus.completed, level=level)

    def final(self, message: str) -> StageEvent | None:
        return self.emit(StageName.completed, message, StageStatus.final)

    def error(self, message: str, *, stage: StageName | str = StageName.error) -> StageEvent | None:
        return self.emit(stage, message, StageStatus.error)
