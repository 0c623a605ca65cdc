from rehearsal.main import request_id_middleware
from rehearsal.utils.request_id import bound_request_id, generate_request_id, get_request_id, set_request_id
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
import pytest


def test_request_id_set_and_get() -> None:
    set_request_id("req-abc")
    assert get_request_id() == "req-abc"
    set_request_id(None)
    assert get_request_id() is None


def test_generate_request_id_with_prefix() -> None:
    assert generate_request_id()
    assert generate_request_id("payment-poll").startswith("payment-poll-")


def test_bound_request_id_restores_previous_value() -> None:
    set_request_id("outer")
    with bound_request_id("inner") as value:
        assert value == "inner"
        assert get_request_id() == "inner"
    assert get_request_id() == "outer"
    set_request_id(None)


def _echo_app() -> FastAPI:
    app = FastAPI()

    @app.get("/rid")
    async def rid() -> dict[str, str | None]:
        return {"request_id": get_request_id()}

    app.middleware("http")(request_id_middleware)
    return app


@pytest.mark.asyncio
@pytest.mark.parametrize("incoming", [None, "req-custom-123"])
async def test_middleware_binds_and_echoes_request_id(incoming: str | None) -> None:
    headers = {"X-Request-ID": incoming} if incoming else {}
    async with AsyncClient(transport=ASGITransport(app=_echo_app()), base_url="http://test") as client:
        resp = await client.get("/rid", headers=headers)

    assert resp.status_code == 200
    echoed = resp.headers["X-Request-ID"]
    assert echoed
    assert resp.json()["request_id"] == echoed
    if incoming:
        assert echoed == incoming
    assert get_request_id() is None
