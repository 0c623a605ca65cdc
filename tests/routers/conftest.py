from typing import AsyncIterator

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from rehearsal.config import Settings
from rehearsal.container import Services
from rehearsal.deps import get_app_settings
from rehearsal.routers import admin, payments, reservations
from rehearsal.scheduler import Scheduler


@pytest_asyncio.fixture
async def client(settings: Settings, repo, settings_store, gateway, dispatcher) -> AsyncIterator[AsyncClient]:
    app = FastAPI()
    app.include_router(reservations.router)
    app.include_router(payments.router)
    app.include_router(admin.router)
    app.state.services = Services(
        settings=settings,
        repo=repo,
        settings_store=settings_store,
        gateway=gateway,
        dispatcher=dispatcher,
        scheduler=Scheduler(),
    )
    app.dependency_overrides[get_app_settings] = lambda: settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
