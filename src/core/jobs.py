"""Submission handling: validate, start the external job, hand off to a poller."""

from __future__ import annotations

import structlog

from src.clients.base import ClientFactory
from src.core.background import BackgroundTasks
from src.core.credentials import MISSING_CONNECTION_STRING, AtxpAccount
from src.core.errors import CredentialError, InputValidationError, TaskCreationError, ToolCallError
from src.core.hub import EventHub
from src.core.poller import PollerConfig, TaskPoller
from src.core.stages import StageReporter
from src.db.task_store import TaskStore
from src.models.events import StageName
from src.models.task_models import Task, TaskStatus

log = structlog.get_logger(__name__)


class SubmissionOrchestrator:
    """Turns one submitted text into a registered task with a running poller."""

    def __init__(
        self,
        *,
        store: TaskStore,
        hub: EventHub,
        background: BackgroundTasks,
        client_factory: ClientFactory,
        poller_config: PollerConfig | None = None,
    ) -> None:
        self._store = store
        self._hub = hub
        self._background = background
        self._clients = client_factory
        self._poller_config = poller_config or PollerConfig()

    async def submit(self, text: str | None, connection_string: str | None) -> Task:
        """Start generating an image for `text`; returns without waiting for it.

        Raises:
            InputValidationError: empty text (nothing is created, no event).
            CredentialError: missing or malformed connection string.
            TaskCreationError: the image service refused to start the job.
        """
        text = (text or "").strip()
        if not text:
            raise InputValidationError("Text is required")
        if not connection_string:
            raise CredentialError(MISSING_CONNECTION_STRING)
        AtxpAccount.from_connection_string(connection_string)

        task = Task(text=text)
        reporter = StageReporter(self._hub, task.correlation_id)
        bound = log.bind(task_id=task.id, correlation_id=task.correlation_id)
        bound.info("submission_received", text_length=len(text))

        reporter.progress(StageName.initializing, "Initializing image generation")
        reporter.progress(StageName.creating_clients, "Connecting to ATXP services")
        image_client, file_store = self._clients.for_connection(connection_string)

        reporter.progress(StageName.starting_async_generation, "Starting image generation")
        try:
            external_task_id = await image_client.create_job(text)
        except ToolCallError as e:
            bound.error("task_creation_failed", error=str(e))
            reporter.error(f"Failed to start image generation: {e}")
            raise TaskCreationError(f"Failed to start image generation: {e}") from e

        task = task.model_copy(
            update={"external_task_id": external_task_id, "status": TaskStatus.processing}
        )
        self._store.add(task)
        reporter.done(StageName.task_started, f"Image generation started (task {external_task_id})")

        poller = TaskPoller(
            task_id=task.id,
            external_task_id=external_task_id,
            store=self._store,
            reporter=reporter,
            image_client=image_client,
            file_store=file_store,
            config=self._poller_config,
        )
        self._background.spawn(f"poller:{task.id}", poller.run())
        bound.info("submission_accepted", external_task_id=external_task_id)
        return task
