"""Pydantic models for background jobs."""

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shared.models.knowledge_base import utc_now


class JobState(str, Enum):
    CREATED = "created"
    RETRY = "retry"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class IndexFilePayload(BaseModel):
    """Payload of an index-file job. Serialized with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    file_id: str = Field(alias="fileId")
    user_id: str = Field(alias="userId")


class JobOptions(BaseModel):
    priority: int = 0
    retry_limit: int = 3
    retry_delay_seconds: float = 30
    expire_in_seconds: float = 60 * 60


class Job(BaseModel):
    """A queued unit of work and its retry bookkeeping."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    data: dict[str, Any]
    options: JobOptions = JobOptions()
    state: JobState = JobState.CREATED
    retry_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    start_after: datetime = Field(default_factory=utc_now)
    last_error: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now - self.created_at > timedelta(seconds=self.options.expire_in_seconds)
