"""HTTP surface: health and the read-only catalog."""
import httpx
import pytest

from storebot.main import app

from conftest import make_product


@pytest.fixture
async def client(runtime):
    # Lifespan is not run: the test runtime is attached directly
    app.state.runtime = runtime
    app.state.bot_running = False
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http:
        yield http
    del app.state.runtime


async def test_health_reports_session_counters(client, runtime):
    runtime.session.states.set("1001", "selecting_payment_method", {"product_id": "ebook1"})

    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["bot"] is False
    assert body["active_wizards"] == 1
    assert body["pending_polls"] == 0


async def test_products_never_expose_links(client, runtime):
    await runtime.store.save_products([make_product("ebook1", links=["https://secret/1"])])

    response = await client.get("/products")
    assert response.status_code == 200
    [product] = response.json()
    assert product["id"] == "ebook1"
    assert product["stock"] == 1
    assert "links" not in product

    response = await client.get("/products/ebook1")
    assert response.status_code == 200
    assert "secret" not in response.text


async def test_unknown_product_is_404(client):
    response = await client.get("/products/nope")
    assert response.status_code == 404
    assert response.json()["detail"] == "Resource not found"
