"""Statement-level tests for the postgres store; no database connection is opened."""

import pytest
from sqlalchemy.dialects import postgresql

from shared.clients.store.StoreClientManager import StoreClientManager
from shared.clients.store.postgres.StoreClientPostgres import StoreClientPostgres
from shared.models.memory import LOW_PRIORITY_TAG, MemorySearchQuery, OwnerScope, OwnerType
from conftest import CHARACTER_ID, DIMENSIONS, USER_ID


@pytest.fixture
def postgres_store(helper_config, monkeypatch) -> StoreClientPostgres:
    monkeypatch.setenv("STORE_POSTGRES_DATABASE_URL", "postgresql+asyncpg://kb:kb@localhost:5432/kb")
    return StoreClientPostgres(helper_config, DIMENSIONS)


def _compile(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def _clauses(stmt) -> tuple[str, str, str]:
    """Split the compiled search into its select list, WHERE and ORDER BY parts."""
    sql = _compile(stmt)
    select_clause, _, rest = sql.partition("\nFROM ")
    _, _, rest = rest.partition("\nWHERE ")
    where_clause, _, order_clause = rest.partition(" ORDER BY ")
    return select_clause, where_clause, order_clause


def _query(**overrides) -> MemorySearchQuery:
    fields = {
        "embedding": [1.0, 0.0, 0.0, 0.0],
        "scopes": [
            OwnerScope(owner_type=OwnerType.USER, owner_id=USER_ID),
            OwnerScope(owner_type=OwnerType.CHARACTER, owner_id=CHARACTER_ID),
            OwnerScope(owner_type=OwnerType.RELATIONSHIP, owner_id=USER_ID, required_tag=CHARACTER_ID),
        ],
        "user_id": USER_ID,
        "min_score": 0.5,
        "limit": 4,
    }
    fields.update(overrides)
    return MemorySearchQuery(**fields)


class TestConfiguration:

    def test_requires_database_url(self, helper_config, monkeypatch):
        monkeypatch.delenv("STORE_POSTGRES_DATABASE_URL", raising=False)

        with pytest.raises(ValueError, match="STORE_POSTGRES_DATABASE_URL"):
            StoreClientPostgres(helper_config, DIMENSIONS)

    def test_manager_selects_engine(self, helper_config, rag_config, monkeypatch):
        monkeypatch.setenv("STORE_ENGINE", "postgres")
        monkeypatch.setenv("STORE_POSTGRES_DATABASE_URL", "postgresql+asyncpg://kb:kb@localhost:5432/kb")

        client = StoreClientManager(helper_config, rag_config).get_client()

        assert isinstance(client, StoreClientPostgres)
        assert client.is_booted() is False

    def test_vector_column_matches_dimensions(self, postgres_store):
        assert postgres_store.tables.memory_items.c.embedding.type.dim == DIMENSIONS


class TestSearchStatement:

    def test_ranked_search_shape(self, postgres_store):
        sql = _compile(postgres_store._build_search_statement(_query()))

        assert "<=>" in sql
        assert "CASE WHEN" in sql
        assert "memory_items.visibility_policy !=" in sql
        assert "conversations.is_archived IS true" in sql
        assert "knowledge_base_files.status =" in sql
        assert "LEFT OUTER JOIN knowledge_base_files AS source_file" in sql
        assert "ORDER BY" in sql and "LIMIT" in sql

    def test_penalty_applies_to_score_floor_and_order(self, postgres_store):
        select_clause, where_clause, order_clause = _clauses(postgres_store._build_search_statement(_query()))

        assert select_clause.count("CASE WHEN") == 1
        # penalty in the floor check plus the relationship scope tag
        assert where_clause.count("CASE WHEN") == 1
        assert where_clause.count("@>") == 2
        assert order_clause.count("CASE WHEN") == 1
        assert "<=>" in order_clause

    def test_tag_filters_add_containment(self, postgres_store):
        _, where_clause, _ = _clauses(postgres_store._build_search_statement(_query(tag_filters=["places"])))

        assert where_clause.count("@>") == 3

    def test_penalty_parameters(self, postgres_store):
        compiled = postgres_store._build_search_statement(_query()).compile(dialect=postgresql.dialect())

        assert [LOW_PRIORITY_TAG] in compiled.params.values()
        assert 0.5 in compiled.params.values()

    @pytest.mark.asyncio
    async def test_empty_scope_skips_the_database(self, postgres_store):
        assert await postgres_store.search_memories(_query(scopes=[])) == []
        assert await postgres_store.search_memories(_query(limit=0)) == []
