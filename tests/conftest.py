import os
import tempfile

# Must run before anything imports allgood.core.config
_DB_DIR = tempfile.mkdtemp(prefix="allgood-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["STRIPE_LIVE_MODE"] = "false"
os.environ["STRIPE_TEST_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_TEST_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STATS_PASSWORD"] = "letmein"
os.environ["ZOHO_INVOICING_ENABLED"] = "false"
os.environ["SMTP_PASSWORD"] = ""
os.environ["LOG_DIR"] = ""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from allgood.core.config import settings
from allgood.core.context import build_app_context
from allgood.db.base import Base, import_models
from allgood.db.session import AsyncSessionLocal, engine
from allgood.main import app


@pytest_asyncio.fixture
async def db():
    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def ctx():
    app.state.ctx = build_app_context(settings)
    return app.state.ctx


@pytest_asyncio.fixture
async def client(db, ctx):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

