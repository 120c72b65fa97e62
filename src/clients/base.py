"""Interfaces of the outbound image-job and file-store collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class JobState(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    unknown = "unknown"

    @classmethod
    def parse(cls, raw: object) -> JobState:
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.unknown


@dataclass(frozen=True)
class JobStatus:
    status: JobState
    url: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class StoredFile:
    locator: str
    name: str


class ImageJobClient(ABC):
    """Async image generation job API."""

    @abstractmethod
    async def create_job(self, prompt: str) -> str:
        """Start a generation job and return its external task id."""

    @abstractmethod
    async def get_job_status(self, external_task_id: str) -> JobStatus:
        """Return the current state of a generation job."""


class FileStoreClient(ABC):
    """Durable storage for generated results."""

    @abstractmethod
    async def store(self, url: str) -> StoredFile:
        """Persist the resource at `url` and return where it now lives."""


class ClientFactory(ABC):
    """Builds collaborator clients authenticated with one connection string."""

    @abstractmethod
    def for_connection(self, connection_string: str) -> tuple[ImageJobClient, FileStoreClient]:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
