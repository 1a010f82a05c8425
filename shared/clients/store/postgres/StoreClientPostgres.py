from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import and_, case, delete, func, insert, literal, not_, or_, select, text, update
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from shared.clients.store.StoreClientInterface import StoreClientInterface
from shared.clients.store.postgres.tables import StoreTables
from shared.exceptions import StoreError
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.knowledge_base import FileStatus, KnowledgeBaseFile, utc_now
from shared.models.memory import (
    MemoryItem,
    MemorySearchQuery,
    OwnerType,
    RetrievedMemory,
    SourceType,
    VisibilityPolicy,
)


class StoreClientPostgres(StoreClientInterface):
    """PostgreSQL + pgvector store on an async SQLAlchemy engine (asyncpg driver).

    Every public operation runs in its own transaction. SQLAlchemy errors are
    re-raised as StoreError.
    """

    def __init__(self, helper_config: HelperConfig, dimensions: int):
        super().__init__(helper_config=helper_config, dimensions=dimensions)
        self._database_url = self.get_config_val("DATABASE_URL", val_type="string")
        self._pool_size = self.get_config_val("POOL_SIZE", default=5, val_type="number")
        self._create_schema = self.get_config_val("CREATE_SCHEMA", default=True, val_type="bool")
        self._engine: AsyncEngine | None = None
        self.tables = StoreTables(dimensions)

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Postgres"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="DATABASE_URL", val_type="string"),
        ]

    def is_booted(self) -> bool:
        return self._engine is not None

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        """Create the connection pool and, unless disabled, the pgvector extension and tables."""
        self._engine = create_async_engine(self._database_url, pool_size=int(self._pool_size), pool_pre_ping=True)
        if self._create_schema:
            async with self._transaction() as conn:
                await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
                await conn.run_sync(self.tables.metadata.create_all)
            self.logging.info("Postgres store schema ensured (%d dimensions).", self.dimensions)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncConnection]:
        if self._engine is None:
            raise RuntimeError("Store not initialised. Call boot() before using it.")
        try:
            async with self._engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            raise StoreError(f"Postgres store operation failed: {exc}") from exc

    ##########################################
    ############### CONVERTERS ###############
    ##########################################

    @staticmethod
    def _row_to_file(row: RowMapping) -> KnowledgeBaseFile:
        return KnowledgeBaseFile.model_validate(dict(row))

    @staticmethod
    def _row_to_item(row: RowMapping) -> MemoryItem:
        data = dict(row)
        if data.get("embedding") is not None:
            data["embedding"] = [float(v) for v in data["embedding"]]
        return MemoryItem.model_validate(data)

    @staticmethod
    def _item_to_row(item: MemoryItem) -> dict:
        return {
            "id": item.id,
            "owner_type": item.owner_type.value,
            "owner_id": item.owner_id,
            "source_type": item.source_type.value,
            "source_id": item.source_id,
            "content": item.content,
            "embedding": item.embedding,
            "tags": item.tags,
            "visibility_policy": item.visibility_policy.value,
            "created_at": item.created_at,
        }

    ##########################################
    ########## KNOWLEDGE BASE FILES ##########
    ##########################################

    async def create_file(self, file: KnowledgeBaseFile) -> KnowledgeBaseFile:
        files = self.tables.knowledge_base_files
        values = file.model_dump()
        values["status"] = file.status.value
        async with self._transaction() as conn:
            result = await conn.execute(insert(files).values(**values).returning(files))
            return self._row_to_file(result.mappings().one())

    async def get_file(self, file_id: str, user_id: str | None = None) -> KnowledgeBaseFile | None:
        files = self.tables.knowledge_base_files
        stmt = select(files).where(files.c.id == file_id)
        if user_id is not None:
            stmt = stmt.where(files.c.user_id == user_id)
        async with self._transaction() as conn:
            row = (await conn.execute(stmt.limit(1))).mappings().first()
        return self._row_to_file(row) if row else None

    async def list_files(
        self,
        user_id: str | None = None,
        character_id: str | None = None,
        status: FileStatus | None = None,
    ) -> list[KnowledgeBaseFile]:
        files = self.tables.knowledge_base_files
        stmt = select(files)
        if user_id is not None:
            stmt = stmt.where(files.c.user_id == user_id)
        if character_id is not None:
            stmt = stmt.where(files.c.character_id == character_id)
        if status is not None:
            stmt = stmt.where(files.c.status == status.value)
        async with self._transaction() as conn:
            rows = (await conn.execute(stmt.order_by(files.c.created_at))).mappings().all()
        return [self._row_to_file(row) for row in rows]

    async def update_file_status(self, file_id: str, status: FileStatus) -> KnowledgeBaseFile | None:
        return await self._update_file(file_id, status=status.value)

    async def update_file_tags(self, file_id: str, tags: list[str]) -> KnowledgeBaseFile | None:
        return await self._update_file(file_id, tags=list(tags))

    async def _update_file(self, file_id: str, **values) -> KnowledgeBaseFile | None:
        files = self.tables.knowledge_base_files
        stmt = (
            update(files)
            .where(files.c.id == file_id)
            .values(**values, updated_at=utc_now())
            .returning(files)
        )
        async with self._transaction() as conn:
            row = (await conn.execute(stmt)).mappings().first()
        return self._row_to_file(row) if row else None

    async def delete_file(self, file_id: str) -> bool:
        files = self.tables.knowledge_base_files
        async with self._transaction() as conn:
            result = await conn.execute(delete(files).where(files.c.id == file_id))
        return result.rowcount > 0

    ##########################################
    ############## MEMORY ITEMS ##############
    ##########################################

    def _source_clause(self, source_type: SourceType, source_id: str):
        items = self.tables.memory_items
        return and_(items.c.source_type == source_type.value, items.c.source_id == source_id)

    async def replace_source_memory_items(self, source_type: SourceType, source_id: str, items: list[MemoryItem]) -> int:
        table = self.tables.memory_items
        async with self._transaction() as conn:
            await conn.execute(delete(table).where(self._source_clause(source_type, source_id)))
            if items:
                await conn.execute(insert(table), [self._item_to_row(item) for item in items])
        return len(items)

    async def delete_memory_items_by_source(self, source_type: SourceType, source_id: str) -> int:
        table = self.tables.memory_items
        async with self._transaction() as conn:
            result = await conn.execute(
                delete(table).where(self._source_clause(source_type, source_id)).returning(table.c.id)
            )
            return len(result.all())

    async def count_memory_items_by_source(self, source_type: SourceType, source_id: str) -> int:
        table = self.tables.memory_items
        stmt = select(func.count()).select_from(table).where(self._source_clause(source_type, source_id))
        async with self._transaction() as conn:
            return (await conn.execute(stmt)).scalar_one()

    async def count_owner_memory_items(self, owner_type: OwnerType, owner_id: str, source_type: SourceType) -> int:
        table = self.tables.memory_items
        stmt = select(func.count()).select_from(table).where(
            table.c.owner_type == owner_type.value,
            table.c.owner_id == owner_id,
            table.c.source_type == source_type.value,
        )
        async with self._transaction() as conn:
            return (await conn.execute(stmt)).scalar_one()

    async def get_memory_item(self, item_id: str) -> MemoryItem | None:
        table = self.tables.memory_items
        async with self._transaction() as conn:
            row = (await conn.execute(select(table).where(table.c.id == item_id))).mappings().first()
        return self._row_to_item(row) if row else None

    async def update_memory_item(
        self,
        item_id: str,
        visibility_policy: VisibilityPolicy | None = None,
        tags: list[str] | None = None,
    ) -> MemoryItem | None:
        table = self.tables.memory_items
        values: dict = {}
        if visibility_policy is not None:
            values["visibility_policy"] = visibility_policy.value
        if tags is not None:
            values["tags"] = list(tags)
        if not values:
            return await self.get_memory_item(item_id)
        stmt = update(table).where(table.c.id == item_id).values(**values).returning(table)
        async with self._transaction() as conn:
            row = (await conn.execute(stmt)).mappings().first()
        return self._row_to_item(row) if row else None

    ##########################################
    ################ SEARCH ##################
    ##########################################

    def _build_search_statement(self, query: MemorySearchQuery):
        items = self.tables.memory_items
        files = self.tables.knowledge_base_files
        conversations = self.tables.conversations
        messages = self.tables.messages

        distance = items.c.embedding.cosine_distance(query.embedding)
        penalty = case(
            (items.c.tags.contains([query.low_priority_tag]), literal(query.low_priority_penalty)),
            else_=literal(0.0),
        )
        similarity = (literal(1.0) - distance - penalty).label("similarity")

        scope_clauses = []
        for scope in query.scopes:
            clause = and_(items.c.owner_type == scope.owner_type.value, items.c.owner_id == scope.owner_id)
            if scope.required_tag is not None:
                clause = and_(clause, items.c.tags.contains([scope.required_tag]))
            scope_clauses.append(clause)

        archived_message_ids = (
            select(messages.c.id)
            .join(conversations, messages.c.conversation_id == conversations.c.id)
            .where(conversations.c.user_id == query.user_id, conversations.c.is_archived.is_(True))
        )
        paused_file_ids = select(files.c.id).where(
            files.c.user_id == query.user_id, files.c.status == FileStatus.PAUSED.value
        )

        source_file = files.alias("source_file")
        stmt = (
            select(
                items.c.id,
                items.c.content,
                items.c.source_type,
                items.c.source_id,
                items.c.tags,
                source_file.c.file_name.label("source_file_name"),
                similarity,
            )
            .select_from(
                items.outerjoin(
                    source_file,
                    and_(items.c.source_type == SourceType.FILE.value, items.c.source_id == source_file.c.id),
                )
            )
            .where(
                items.c.embedding.is_not(None),
                items.c.visibility_policy != VisibilityPolicy.EXCLUDE_FROM_RAG.value,
                or_(*scope_clauses),
                not_(and_(
                    items.c.source_type == SourceType.MESSAGE.value,
                    items.c.source_id.is_not(None),
                    items.c.source_id.in_(archived_message_ids),
                )),
                not_(and_(
                    items.c.source_type == SourceType.FILE.value,
                    items.c.source_id.is_not(None),
                    items.c.source_id.in_(paused_file_ids),
                )),
                literal(1.0) - distance - penalty >= query.min_score,
            )
            .order_by(distance + penalty)
            .limit(query.limit)
        )
        if query.tag_filters:
            stmt = stmt.where(items.c.tags.contains(list(query.tag_filters)))
        return stmt

    async def search_memories(self, query: MemorySearchQuery) -> list[RetrievedMemory]:
        if not query.scopes or query.limit <= 0:
            return []
        stmt = self._build_search_statement(query)
        async with self._transaction() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [
            RetrievedMemory(
                id=row["id"],
                content=row["content"],
                source_type=row["source_type"],
                source_id=row["source_id"],
                source_file_name=row["source_file_name"],
                similarity=float(row["similarity"]),
                tags=row["tags"],
            )
            for row in rows
        ]
