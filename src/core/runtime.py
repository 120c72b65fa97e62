"""Process-scoped state: built once at startup, torn down on shutdown."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from src.clients.atxp import AtxpClientFactory
from src.clients.base import ClientFactory
from src.core.background import BackgroundTasks
from src.core.hub import EventHub
from src.core.jobs import SubmissionOrchestrator
from src.core.poller import PollerConfig
from src.core.settings import Settings
from src.db.task_store import TaskStore

log = structlog.get_logger(__name__)


@dataclass
class Runtime:
    settings: Settings
    store: TaskStore
    hub: EventHub
    background: BackgroundTasks
    clients: ClientFactory
    orchestrator: SubmissionOrchestrator

    async def shutdown(self) -> None:
        await self.background.drain(self.settings.SHUTDOWN_GRACE_S)
        self.hub.close()
        await self.clients.aclose()
        log.info("runtime_shutdown_complete")


def build_runtime(settings: Settings, *, client_factory: ClientFactory | None = None) -> Runtime:
    store = TaskStore()
    hub = EventHub(max_buffer=settings.SUBSCRIBER_QUEUE_SIZE)
    background = BackgroundTasks()
    clients = client_factory or AtxpClientFactory(
        image_url=settings.IMAGE_MCP_URL,
        filestore_url=settings.FILESTORE_MCP_URL,
        timeout_s=settings.TOOL_TIMEOUT_S,
        on_payment=hub.publish,
    )
    orchestrator = SubmissionOrchestrator(
        store=store,
        hub=hub,
        background=background,
        client_factory=clients,
        poller_config=PollerConfig(
            interval_s=settings.POLL_INTERVAL_S,
            max_attempts=settings.POLL_MAX_ATTEMPTS,
            progress_every=settings.PROGRESS_EVERY_N_POLLS,
        ),
    )
    return Runtime(
        settings=settings,
        store=store,
        hub=hub,
        background=background,
        clients=clients,
        orchestrator=orchestrator,
    )
