from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from study_scheduler.container import create_services, engine_lifespan


@pytest.fixture
def db_manager():
    manager = MagicMock()
    manager.connect = AsyncMock()
    manager.create_indexes = AsyncMock()
    manager.disconnect = AsyncMock()
    return manager


def test_create_services_shares_store_and_analytics(store, clock):
    services = create_services(store, clock)

    assert services.dependency_graph.store is store
    assert services.recurring.store is store
    assert services.scheduler.analytics is services.analytics
    assert services.scheduler.clock is clock


@pytest.mark.asyncio
async def test_engine_lifespan_connects_seeds_and_disconnects(db_manager, store):
    with patch("study_scheduler.container.MongoStudyStore", return_value=store):
        async with engine_lifespan(db_manager, start_sweep=False) as services:
            assert services.store is store
            db_manager.connect.assert_awaited_once()
            db_manager.create_indexes.assert_awaited_once()
            assert len(store.rows("recurring_patterns")) == 4

    db_manager.disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_engine_lifespan_disconnects_on_error(db_manager, store):
    with patch("study_scheduler.container.MongoStudyStore", return_value=store):
        with pytest.raises(RuntimeError):
            async with engine_lifespan(db_manager, start_sweep=False):
                raise RuntimeError("boom")

    db_manager.disconnect.assert_awaited_once()
