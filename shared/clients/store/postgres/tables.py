"""SQLAlchemy Core table definitions for the postgres store.

conversations and messages belong to the chat layer. They are declared here
only so the archived-conversation exclusion can reference them.
"""

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, MetaData, String, Table, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID


class StoreTables:
    """All tables of one store, bound to a fixed embedding dimensionality."""

    def __init__(self, dimensions: int):
        self.metadata = MetaData()

        self.conversations = Table(
            "conversations",
            self.metadata,
            Column("id", UUID(as_uuid=False), primary_key=True),
            Column("user_id", UUID(as_uuid=False), nullable=False, index=True),
            Column("is_archived", Boolean, nullable=False, server_default="false"),
        )

        self.messages = Table(
            "messages",
            self.metadata,
            Column("id", UUID(as_uuid=False), primary_key=True),
            Column("conversation_id", UUID(as_uuid=False), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True),
        )

        self.knowledge_base_files = Table(
            "knowledge_base_files",
            self.metadata,
            Column("id", UUID(as_uuid=False), primary_key=True),
            Column("user_id", UUID(as_uuid=False), nullable=False, index=True),
            Column("character_id", UUID(as_uuid=False), nullable=True, index=True),
            Column("file_name", String(255), nullable=False),
            Column("file_type", String(100), nullable=True),
            Column("file_size_bytes", Integer, nullable=False, server_default="0"),
            Column("storage_path", Text, nullable=False),
            Column("status", String(20), nullable=False, server_default="pending"),
            Column("tags", JSONB, nullable=False, server_default="[]"),
            Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
            Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
        )

        self.memory_items = Table(
            "memory_items",
            self.metadata,
            Column("id", UUID(as_uuid=False), primary_key=True),
            Column("owner_type", String(20), nullable=False),
            Column("owner_id", UUID(as_uuid=False), nullable=False),
            Column("source_type", String(20), nullable=False),
            Column("source_id", UUID(as_uuid=False), nullable=True),
            Column("content", Text, nullable=False),
            Column("embedding", Vector(dimensions), nullable=True),
            Column("tags", JSONB, nullable=False, server_default="[]"),
            Column("visibility_policy", String(20), nullable=False, server_default="normal"),
            Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
            Index("ix_memory_items_owner", "owner_type", "owner_id"),
            Index("ix_memory_items_source", "source_type", "source_id"),
        )
