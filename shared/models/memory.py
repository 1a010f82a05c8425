"""Pydantic models for vector memory items and similarity search.

Hierarchy:
  MemoryItem        : one embedded, independently retrievable text fragment.
  OwnerScope        : (owner_type, owner_id) pair that a query may read.
  MemorySearchQuery : backend-independent description of a ranked search.
  RetrievedMemory   : one search hit as handed to the prompt formatter.
  RetrievalResult   : the full answer of a retrieval call.
"""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from shared.models.knowledge_base import utc_now

# Internal control tags are prefixed so they can be told apart from user tags
INTERNAL_TAG_PREFIX = "__"
LOW_PRIORITY_TAG = "__low_priority"
LOW_PRIORITY_PENALTY = 0.15


class OwnerType(str, Enum):
    USER = "user"
    CHARACTER = "character"
    RELATIONSHIP = "relationship"


class SourceType(str, Enum):
    MESSAGE = "message"
    FILE = "file"
    MANUAL = "manual"


class VisibilityPolicy(str, Enum):
    NORMAL = "normal"
    SENSITIVE = "sensitive"
    EXCLUDE_FROM_RAG = "exclude_from_rag"


class FeedbackAction(str, Enum):
    EXCLUDE = "exclude"
    LOWER_PRIORITY = "lower_priority"
    RESTORE = "restore"


class MemoryItem(BaseModel):
    """An embedded text fragment.

    The embedding is either None (item is not retrievable) or exactly as long
    as the configured target dimensionality.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_type: OwnerType
    owner_id: str
    source_type: SourceType
    source_id: str | None = None
    content: str
    embedding: list[float] | None = None
    tags: list[str] = []
    visibility_policy: VisibilityPolicy = VisibilityPolicy.NORMAL
    created_at: datetime = Field(default_factory=utc_now)


class OwnerScope(BaseModel):
    """One branch of the ownership OR in a search.

    For RELATIONSHIP scopes, required_tag names the character the
    relationship record must be tagged with.
    """

    owner_type: OwnerType
    owner_id: str
    required_tag: str | None = None


class MemorySearchQuery(BaseModel):
    """Everything a store engine needs to run the ranked similarity search.

    Attributes:
        embedding:           Query vector.
        scopes:              Ownership branches, OR-ed together.
        user_id:             User whose archived conversations and paused files are excluded.
        tag_filters:         Every tag listed must be present on an item.
        min_score:           Floor applied to the penalized similarity.
        low_priority_tag:    Tag that triggers the penalty.
        low_priority_penalty: Subtracted from similarity (added to distance).
        limit:               Maximum number of results.
    """

    embedding: list[float]
    scopes: list[OwnerScope]
    user_id: str
    tag_filters: list[str] = []
    min_score: float = 0.0
    low_priority_tag: str = LOW_PRIORITY_TAG
    low_priority_penalty: float = LOW_PRIORITY_PENALTY
    limit: int


class RetrievedMemory(BaseModel):
    id: str
    content: str
    source_type: SourceType
    source_id: str | None = None
    source_file_name: str | None = None
    similarity: float
    tags: list[str] | None = None


class RetrievalResult(BaseModel):
    memories: list[RetrievedMemory]
    query: str
    top_k: int
