import pytest
import pytest_asyncio
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport

from vsend.main import app
from vsend.api.endpoints import get_services
from vsend.core.config import Settings
from vsend.db.session import create_engine, create_session_factory, init_models
from vsend.services.container import build_services
from vsend.tests.support import WEBHOOK_SECRET, Clock, FakeGateway, make_user

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'wallet.db'}",
        PIN_HASH_ITERATIONS=1000,
        STORE_RETRY_BACKOFF=0.0,
        PAYSTACK_SECRET_KEY=WEBHOOK_SECRET,
    )

@pytest.fixture
def clock() -> Clock:
    return Clock()

@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()

@pytest_asyncio.fixture(loop_scope="function")
async def services(test_settings, clock, gateway):
    # A file database lets concurrent requests use separate connections
    engine = create_engine(test_settings.DATABASE_URL)
    await init_models(engine)
    yield build_services(create_session_factory(engine), test_settings, gateway=gateway, clock=clock)
    await gateway.aclose()
    await engine.dispose()

@pytest_asyncio.fixture(loop_scope="function")
async def client(services) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_services] = lambda: services

    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(loop_scope="function")
async def sender(services):
    return await make_user(services, "0241234567", "Ama", "Owusu", balance="500.00")

@pytest_asyncio.fixture(loop_scope="function")
async def recipient(services):
    return await make_user(services, "0551234567", "Kofi", "Mensah", balance="50.00")
