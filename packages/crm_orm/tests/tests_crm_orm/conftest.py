from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from crm_orm import EntityManager
from crm_orm import db as db_module
from crm_orm.mapper import RDBMapper

from .models import build_metadata

DATABASE_URL = "sqlite+aiosqlite:///:memory:"  # in-memory DB for tests


@pytest.fixture
def metadata():
    return build_metadata()


@pytest.fixture
def mapper():
    """Mapper double: coroutine methods become AsyncMocks, the rest MagicMocks."""
    return MagicMock(spec=RDBMapper)


@pytest.fixture
def mock_em(metadata, mapper):
    """Entity manager wired to the mapper double; nothing reaches a database."""
    return EntityManager(None, metadata, mapper=mapper, legacy_params_merge=True)


@pytest_asyncio.fixture(scope="function")
async def init_test_db():
    """Initialize the test database engine."""
    db_module.init_db(DATABASE_URL, echo=False)
    yield
    await db_module.close_db()


@pytest_asyncio.fixture()
async def db_session(init_test_db):  # noqa: ARG001
    """Provide a database session for tests."""
    async for session in db_module.get_db():
        yield session


@pytest_asyncio.fixture()
async def em(db_session, metadata):
    """Entity manager on the in-memory database with every table created."""
    manager = EntityManager(db_session, metadata)
    await manager.create_schema()
    return manager
