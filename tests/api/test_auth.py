import pytest
from datetime import timedelta

from fastapi import Depends, FastAPI
import httpx

from app.presence.api.auth import get_current_user, create_access_token
from app.presence.config.config import settings
from app.presence.models.db_models import User


@pytest.fixture
def secured_app(monkeypatch):
    monkeypatch.setattr(settings, "SECRET_KEY", "test-secret")
    app = FastAPI()

    @app.get("/me")
    async def me(user: User = Depends(get_current_user)):
        return user

    return app

async def _get_me(app: FastAPI, headers: dict) -> httpx.Response:
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        return await client.get("/me", headers=headers)

@pytest.mark.asyncio
async def test_valid_token_yields_user(secured_app):
    token = create_access_token({"sub": "S001", "name": "Test Student", "role": "Student"}, timedelta(minutes=5))

    response = await _get_me(secured_app, {"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json() == {"user_id": "S001", "full_name": "Test Student", "role": "Student"}

@pytest.mark.asyncio
async def test_expired_token_is_rejected(secured_app):
    token = create_access_token({"sub": "S001", "role": "Student"}, timedelta(minutes=-1))

    response = await _get_me(secured_app, {"Authorization": f"Bearer {token}"})

    assert response.status_code == 401

@pytest.mark.asyncio
async def test_token_without_role_is_rejected(secured_app):
    token = create_access_token({"sub": "S001"}, timedelta(minutes=5))

    response = await _get_me(secured_app, {"Authorization": f"Bearer {token}"})

    assert response.status_code == 401

@pytest.mark.asyncio
async def test_token_signed_with_another_key_is_rejected(secured_app, monkeypatch):
    token = create_access_token({"sub": "S001", "role": "Student"}, timedelta(minutes=5))
    monkeypatch.setattr(settings, "SECRET_KEY", "rotated-secret")

    response = await _get_me(secured_app, {"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
