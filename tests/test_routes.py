import json
import random

import pytest
from fastapi.testclient import TestClient
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from conftest import CHICKEN_STIR_FRY_HTML, NO_RECIPE_HTML, FakeRenderer
from core.limiter import limiter
from logic.recipe_parser import TextRecipeExtractor
from logic.web_scraper import EXTRACTION_EMPTY_MESSAGE, RecipeScraper, get_scraper
from main import app

GUACAMOLE_REPLY = json.dumps({"name": "Guacamole", "ingredients": ["2 avocados", "1 lime"], "confidence": 80})


@pytest.fixture
def make_client(registry, fast_rate_limiter, sleep_recorder):
    renderers = []

    def _make(*responses, replies=(GUACAMOLE_REPLY,)):
        renderer = FakeRenderer(*responses)
        renderers.append(renderer)
        scraper = RecipeScraper(
            renderer=renderer,
            rate_limiter=fast_rate_limiter,
            registry=registry,
            text_extractor=TextRecipeExtractor(llm=FakeListChatModel(responses=list(replies))),
            sleep=sleep_recorder,
            rng=random.Random(0),
        )
        app.dependency_overrides[get_scraper] = lambda: scraper
        return TestClient(app), renderer

    limiter.enabled = False
    yield _make
    limiter.enabled = True
    app.dependency_overrides.clear()


def test_parse_recipe(make_client):
    client, _ = make_client(CHICKEN_STIR_FRY_HTML)
    response = client.post("/api/v1/recipes/parse", json={"url": "https://example.com/recipe"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["name"] == "Chicken Stir Fry"
    assert body["data"]["instructions"] == "Cook chicken\n\nAdd peppers"
    assert body["data"]["extraction_method"] == "json_ld"
    assert body["attempts"] == 1
    assert body["images"][0]["role"] == "gallery"


def test_parse_invalid_url_is_bad_request(make_client):
    client, renderer = make_client(CHICKEN_STIR_FRY_HTML)
    response = client.post("/api/v1/recipes/parse", json={"url": "not-a-url"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid URL format"
    assert renderer.calls == []


def test_parse_without_recipe_is_unprocessable(make_client):
    client, _ = make_client(NO_RECIPE_HTML)
    response = client.post("/api/v1/recipes/parse", json={"url": "https://example.com/about"})
    assert response.status_code == 422
    assert response.json()["detail"] == EXTRACTION_EMPTY_MESSAGE


def test_parse_rejects_out_of_range_attempts(make_client):
    client, _ = make_client(CHICKEN_STIR_FRY_HTML)
    response = client.post("/api/v1/recipes/parse", json={"url": "https://example.com/recipe", "max_attempts": 9})
    assert response.status_code == 422


def test_parse_text(make_client):
    client, _ = make_client()
    response = client.post("/api/v1/recipes/parse-text", json={"text": "Mash 2 avocados with 1 lime #guac"})

    assert response.status_code == 200
    body = response.json()
    assert body["data"]["name"] == "Guacamole"
    assert body["confidence"] == 80
    assert body["context"] == "social_media"


def test_parse_text_too_long(make_client):
    client, _ = make_client()
    response = client.post("/api/v1/recipes/parse-text", json={"text": "a" * 10001})
    assert response.status_code == 400
    assert "too long" in response.json()["detail"]


def test_parse_text_incomplete_recipe(make_client):
    client, _ = make_client(replies=(json.dumps({"name": "Something", "ingredients": []}),))
    response = client.post("/api/v1/recipes/parse-text", json={"text": "something vague"})
    assert response.status_code == 422


def test_parse_text_model_failure(make_client):
    client, _ = make_client(replies=("Sorry, I can't help with that.",))
    response = client.post("/api/v1/recipes/parse-text", json={"text": "some recipe text"})
    assert response.status_code == 422


def test_parse_text_malformed_instructions(make_client):
    reply = json.dumps({"name": "Soup", "ingredients": ["water"], "instructions": 5})
    client, _ = make_client(replies=(reply,))
    response = client.post("/api/v1/recipes/parse-text", json={"text": "Boil water for soup"})
    assert response.status_code == 200
    assert response.json()["data"]["instructions"] == ""


def test_validate_url(make_client):
    client, _ = make_client()
    response = client.post("/api/v1/recipes/validate-url", json={"url": "https://www.seriouseats.com/pasta"})
    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is True
    assert body["supported"] is True
    assert body["domain"] == "seriouseats.com"

    assert client.post("/api/v1/recipes/validate-url", json={}).status_code == 400

    invalid = client.post("/api/v1/recipes/validate-url", json={"url": "nope"}).json()
    assert invalid["success"] is False
    assert invalid["valid"] is False


def test_supported_domains(make_client):
    client, _ = make_client()
    body = client.get("/api/v1/recipes/supported-domains").json()
    assert body["data"]["total_sites"] == 6
    assert body["data"]["supported_sites"][-1]["name"] == "Generic Recipe Sites"
    assert "Microdata" in body["data"]["parsing_methods"]


def test_parser_health(make_client):
    client, renderer = make_client()
    response = client.get("/api/v1/recipes/health")
    assert response.status_code == 200
    assert response.json()["data"]["browser"] == "ready"

    renderer.start_error = RuntimeError("Browser could not launch")
    response = client.get("/api/v1/recipes/health")
    assert response.status_code == 503
    assert response.json()["data"]["status"] == "unhealthy"
    assert response.json()["data"]["error"] == "Browser could not launch"


def test_service_health(make_client):
    client, _ = make_client()
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
