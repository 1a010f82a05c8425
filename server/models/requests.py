from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from shared.models.memory import FeedbackAction
from shared.models.rag import RagOverrides


class _CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UpdateFileRequest(_CamelRequest):
    action: Literal["pause", "resume", "reindex", "updateTags"]
    tags: list[str] | None = None


class FeedbackRequest(_CamelRequest):
    action: FeedbackAction


class RetrieveRequest(_CamelRequest):
    """A retrieval for one chat turn.

    rag_mode and tag_filters are the request-level overrides; conversation and
    character_rag_mode carry the stored settings they take precedence over.
    """

    query: str
    character_id: str | None = None
    top_k: int | None = None
    rag_mode: str | None = None
    tag_filters: list[str] | None = None
    conversation: RagOverrides | None = None
    character_rag_mode: str | None = None
    system_prompt: str | None = None
