"""Drives one submitted task from `processing` to a terminal state.

The poller asks the image job API for the job's status every
`interval_s` seconds, at most `max_attempts` times:

- `completed` with a URL: announce the image, try to copy it into the file
  store, mark the task `completed` and emit the `final` event. A failed copy
  only degrades the result to the original image URL.
- `failed` (or `completed` without a URL): emit an `error` event and mark the
  task `failed`.
- anything else: keep waiting, emitting a rate-limited progress event.

Retryable query errors (transport, 5xx, 429) never end the loop; running out
of attempts does. A non-retryable rejection fails the task at once.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum

import structlog

from src.clients.base import FileStoreClient, ImageJobClient, JobState, JobStatus
from src.core.errors import ToolCallError
from src.core.stages import StageReporter
from src.db.task_store import TaskStore
from src.models.events import StageName
from src.models.task_models import TaskStatus

log = structlog.get_logger(__name__)


class PollState(str, Enum):
    polling = "polling"
    succeeded = "succeeded"
    failed = "failed"
    timed_out = "timed-out"
    # The task vanished from the store or the poller was cancelled.
    stopped = "stopped"


@dataclass(frozen=True)
class PollerConfig:
    interval_s: float = 5.0
    max_attempts: int = 120
    progress_every: int = 6


class TaskPoller:
    """Background state machine for one `(external_task_id, task_id, correlation_id)`."""

    def __init__(
        self,
        *,
        task_id: str,
        external_task_id: str,
        store: TaskStore,
        reporter: StageReporter,
        image_client: ImageJobClient,
        file_store: FileStoreClient,
        config: PollerConfig | None = None,
    ) -> None:
        self.task_id = task_id
        self.external_task_id = external_task_id
        self._store = store
        self._reporter = reporter
        self._images = image_client
        self._files = file_store
        self._config = config or PollerConfig()
        self.state = PollState.polling
        self.attempts = 0
        self._log = log.bind(
            task_id=task_id,
            external_task_id=external_task_id,
            correlation_id=reporter.correlation_id,
        )

    async def run(self) -> PollState:
        self._log.info("poller_started", max_attempts=self._config.max_attempts)
        try:
            state = await self._poll()
        except asyncio.CancelledError:
            self._finish_failed(StageName.cancelled, "Image generation was cancelled", PollState.stopped)
            self._log.info("poller_cancelled", attempts=self.attempts)
            raise
        except Exception as e:
            # Whatever broke, the task must not stay `processing`.
            self._log.error("poller_crashed", attempts=self.attempts, error=str(e), exc_info=True)
            state = self._finish_failed(StageName.error, f"Image generation failed: {e}", PollState.failed)
        self._log.info("poller_finished", state=state.value, attempts=self.attempts)
        return state

    async def _poll(self) -> PollState:
        cfg = self._config
        for attempt in range(1, cfg.max_attempts + 1):
            self.attempts = attempt
            if self._store.get(self.task_id) is None:
                self._log.warning("poller_task_missing")
                self.state = PollState.stopped
                return self.state

            try:
                status = await self._images.get_job_status(self.external_task_id)
            except ToolCallError as e:
                if not e.retryable:
                    self._log.error("poll_status_rejected", attempt=attempt, error=str(e))
                    return self._finish_failed(
                        StageName.error, f"Image generation failed: {e}", PollState.failed
                    )
                self._log.warning("poll_status_failed", attempt=attempt, error=str(e))
            else:
                outcome = await self._handle_status(status, attempt)
                if outcome is not None:
                    return outcome

            if attempt < cfg.max_attempts:
                await asyncio.sleep(cfg.interval_s)

        self._log.warning("poller_timed_out", attempts=cfg.max_attempts)
        waited = int((cfg.max_attempts - 1) * cfg.interval_s)
        return self._finish_failed(
            StageName.timeout,
            f"Image generation timed out after {cfg.max_attempts} checks (~{waited}s)",
            PollState.timed_out,
        )

    async def _handle_status(self, status: JobStatus, attempt: int) -> PollState | None:
        if status.status == JobState.completed:
            if status.url:
                return await self._complete(status.url)
            return self._finish_failed(
                StageName.error, "Image generation completed without an image URL", PollState.failed
            )

        if status.status == JobState.failed:
            reason = status.error or "the image service reported a failure"
            return self._finish_failed(StageName.error, f"Image generation failed: {reason}", PollState.failed)

        if attempt == 1 or attempt % self._config.progress_every == 0:
            elapsed = int((attempt - 1) * self._config.interval_s)
            self._reporter.progress(StageName.processing, f"Generating image... ({elapsed}s elapsed)")
        return None

    async def _complete(self, image_url: str) -> PollState:
        reporter = self._reporter
        reporter.done(StageName.image_completed, "Image generated")
        reporter.progress(StageName.storing_file, "Storing image in file store")

        result_url, result_locator = image_url, None
        try:
            stored = await self._files.store(image_url)
        except ToolCallError as e:
            # The generated image is still usable; keep its original URL.
            self._log.warning("file_store_failed", error=str(e))
            reporter.done(
                StageName.storing_file,
                "Could not store image, using the original image URL",
                level="warning",
            )
        else:
            result_url, result_locator = stored.locator, stored.name
            reporter.done(StageName.storing_file, f"Stored image as {stored.name}")

        self._store.update_status(
            self.task_id,
            TaskStatus.completed,
            result_url=result_url,
            result_locator=result_locator,
        )
        reporter.final("Image ready")
        self.state = PollState.succeeded
        return self.state

    def _finish_failed(self, stage: StageName, message: str, state: PollState) -> PollState:
        self._store.update_status(self.task_id, TaskStatus.failed)
        self._reporter.error(message, stage=stage)
        self.state = state
        return state
