"""Event vocabulary broadcast on the progress stream.

Three event kinds share the stream and are discriminated on `type`:

- `stage`: one phase of a submission's processing
- `payment`: a billing side-effect of an outbound tool call
- `connected`: greeting sent only to a freshly subscribed client

Events are validated when constructed, so a malformed payload fails at the
producer rather than when the hub serializes it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StageStatus(str, Enum):
    pending = "pending"
    in_progress = "in-progress"
    completed = "completed"
    error = "error"
    final = "final"

    @property
    def is_terminal(self) -> bool:
        return self in (StageStatus.error, StageStatus.final)


class StageName(str, Enum):
    initializing = "initializing"
    creating_clients = "creating-clients"
    starting_async_generation = "starting-async-generation"
    generating_image = "generating-image"
    task_started = "task-started"
    processing = "processing"
    image_completed = "image-completed"
    storing_file = "storing-file"
    completed = "completed"
    error = "error"
    timeout = "timeout"
    cancelled = "cancelled"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class StageEvent(_WireModel):
    type: Literal["stage"] = "stage"
    correlation_id: str = Field(..., min_length=1, alias="correlationId")
    stage: str = Field(..., min_length=1)
    message: str
    status: StageStatus
    level: Literal["info", "warning"] = "info"
    timestamp: datetime = Field(default_factory=_utcnow)


class PaymentEvent(_WireModel):
    type: Literal["payment"] = "payment"
    account_id: str = Field(..., alias="accountId")
    resource_url: str = Field(..., alias="resourceUrl")
    resource_name: str = Field(default="", alias="resourceName")
    network: str
    currency: str
    amount: str
    iss: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)


class ConnectedEvent(_WireModel):
    type: Literal["connected"] = "connected"
    message: str = "Connected to progress stream"
    timestamp: datetime = Field(default_factory=_utcnow)


ProgressEvent = Annotated[
    Union[StageEvent, PaymentEvent, ConnectedEvent],
    Field(discriminator="type"),
]

progress_event_adapter: TypeAdapter[ProgressEvent] = TypeAdapter(ProgressEvent)


def parse_event(raw: str | bytes) -> StageEvent | PaymentEvent | ConnectedEvent:
    """Decode one serialized event back into its model (used by clients/tests)."""
    return progress_event_adapter.validate_json(raw)
