# tests/conftest.py
import asyncio
import sys

import pytest
import pytest_asyncio
import httpx

from app.presence.main import app
from app.presence.api.utilities.limiter import limiter
from app.presence.models.db_models import User

# This is the crucial fix for Windows asyncio issues with pytest.
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest.fixture
def instructor_user() -> User:
    return User(user_id="I001", full_name="Dr. Ada Lovelace", role="Instructor")

@pytest.fixture
def student_user() -> User:
    return User(user_id="S001", full_name="Test Student", role="Student")

@pytest.fixture
def api_app():
    """The FastAPI app with rate limiting disabled; overrides are cleared after each test."""
    limiter.enabled = False
    yield app
    app.dependency_overrides.clear()
    limiter.enabled = True

@pytest_asyncio.fixture
async def api_client(api_app):
    # ASGITransport does not run the lifespan; storage is replaced through dependency overrides.
    transport = httpx.ASGITransport(app=api_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test/api/v1") as client:
        yield client
