import json

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from evalrun.core.database import Base
from evalrun.services.client import EvalsClient
from evalrun.services.ledger import LedgerService
from tests.mocks import fake_evals_api


@pytest.fixture(autouse=True)
def reset_fake_api():
    fake_evals_api.reset()
    yield
    fake_evals_api.reset()


@pytest_asyncio.fixture
async def evals_client():
    """EvalsClient wired to the fake evals API via in-process ASGITransport."""
    transport = ASGITransport(app=fake_evals_api.app)
    http_client = httpx.AsyncClient(transport=transport, base_url="http://fake-evals")
    client = EvalsClient(
        base_url="http://fake-evals",
        api_key=fake_evals_api.API_KEY,
        http_client=http_client,
        page_size=2,
    )
    yield client
    await http_client.aclose()


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine for tests."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def ledger(db_engine):
    """LedgerService backed by the in-memory engine."""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    return LedgerService(session_factory=session_factory)


SENTIMENT_ITEMS = [
    {"input": "I loved every minute of it", "label": "positive"},
    {"input": "Worst purchase I have made", "label": "negative"},
    {"input": "It arrived on Tuesday [flip]", "label": "positive"},
    {"input": "Absolutely fantastic support", "label": "positive"},
    {"input": "Broke after two days [flip]", "label": "negative"},
]


@pytest.fixture
def items_file(tmp_path):
    """Five labeled sentiment items; two are answered wrongly by the fake model."""
    path = tmp_path / "sentiment.jsonl"
    path.write_text("".join(json.dumps({"item": item}) + "\n" for item in SENTIMENT_ITEMS))
    return path
