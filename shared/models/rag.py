"""Pydantic models for RAG mode resolution."""

from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RagMode(str, Enum):
    HEAVY = "heavy"
    LIGHT = "light"
    IGNORE = "ignore"


class RagOverrides(BaseModel):
    """RAG settings carried by a request or stored on a conversation.

    Values are kept as loose strings: they come from user input and are
    validated during resolution, not at parse time.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    rag_mode: str | None = None
    tag_filters: list[str] | None = None
    enabled: bool | None = None


class GlobalRagSettings(BaseModel):
    enabled: bool = True
    tag_filters: list[str] = []


class EffectiveRagConfig(BaseModel):
    rag_mode: RagMode
    tag_filters: list[str] | None = None
    enabled: bool = True
