from recipe_chat.app.core.config import Settings
from recipe_chat.app.db import models
from recipe_chat.app.schemas.chat import CHAT_MESSAGE_MAX_CHARS
from recipe_chat.app.schemas.intent import IntentType

from conftest import auth_header

GARLIC_PASTA = "Title: Quick Garlic Pasta\nIngredients:\n- pasta\n- 3 cloves garlic\nSteps:\n1. Cook the pasta"


def use_intent(classifier, intent, confidence=0.95):
    classifier.intent = intent
    classifier.confidence = confidence


def confirm(client, token, recipe, group_id=None):
    payload = {"confirm_recipe": dict(recipe)}
    if group_id:
        payload["confirm_recipe"]["group_id"] = group_id
    return client.post("/chat", json=payload, headers=auth_header(token))


def test_overlong_message_rejected_before_any_model_call(client, user_token, classifier, embedder):
    response = client.post(
        "/chat", json={"message": "a" * 10001}, headers=auth_header(user_token)
    )
    assert CHAT_MESSAGE_MAX_CHARS == 10000
    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "validation_error"
    assert any(d["field"] == "body.message" for d in body["details"])
    assert classifier.calls == []
    assert embedder.calls == []


def test_message_bounds_come_from_settings(monkeypatch):
    monkeypatch.setenv("CHAT_MESSAGE_MAX_CHARS", "500")
    monkeypatch.setenv("STORE_MESSAGE_MAX_CHARS", "900")
    settings = Settings(_env_file=None)
    assert settings.chat_message_max_chars == 500
    assert settings.store_message_max_chars == 900
    assert Settings(_env_file=None, CHAT_MESSAGE_MAX_CHARS=10000).chat_message_max_chars == 10000


def test_empty_message_rejected(client, user_token, classifier):
    response = client.post("/chat", json={"message": "   "}, headers=auth_header(user_token))
    assert response.status_code == 422
    assert classifier.calls == []


def test_low_confidence_returns_clarification(client, user_token, classifier):
    use_intent(classifier, IntentType.SEARCH_RECIPE, 0.55)
    response = client.post("/chat", json={"message": "make chicken curry"}, headers=auth_header(user_token))
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["needs_clarification"] is True
    assert body["intent"] == "search_recipe"
    assert body["confidence"] == 0.55
    assert '"make"' in body["message"]
    assert body["rate_limit"] == {
        "limit": 10,
        "remaining": 9,
        "reset": body["rate_limit"]["reset"],
    }
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"


def test_rate_limited_request_runs_nothing_downstream(client, user_token, other_user_token, classifier, embedder, transport):
    use_intent(classifier, IntentType.SEARCH_RECIPE, 0.5)
    for _ in range(10):
        assert client.post("/chat", json={"message": "pasta?"}, headers=auth_header(user_token)).status_code == 200
    assert len(classifier.calls) == 10

    response = client.post("/chat", json={"message": "pasta?"}, headers=auth_header(user_token))
    assert response.status_code == 429
    assert response.json()["detail"] == "Rate limit exceeded. Please try again later."
    assert int(response.headers["Retry-After"]) >= 1
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert len(classifier.calls) == 10
    assert embedder.calls == []
    assert transport.requests == []

    assert client.post("/chat", json={"message": "pasta?"}, headers=auth_header(other_user_token)).status_code == 200


def test_store_then_confirm_persists_recipe(client, db_session, user_token, classifier, embedder):
    use_intent(classifier, IntentType.STORE_RECIPE)
    response = client.post("/chat", json={"message": GARLIC_PASTA}, headers=auth_header(user_token))
    body = response.json()
    assert body["success"] is True
    assert body["needs_review"] is True
    assert body["recipe"] is None
    draft = body["pending_recipe"]
    assert draft["title"] == "Quick Garlic Pasta"
    assert draft["ingredients"] == ["pasta", "3 cloves garlic"]
    assert draft["steps"] == ["Cook the pasta"]
    assert draft["contributor_name"] == "Ada"
    assert db_session.query(models.Recipe).count() == 0
    assert embedder.calls == []

    classifier.calls.clear()
    saved = confirm(client, user_token, draft).json()
    assert saved["success"] is True
    assert saved["intent"] == "store_recipe"
    assert saved["recipe"]["title"] == "Quick Garlic Pasta"
    assert saved["recipe"]["user_id"] == "user-1"
    assert "Recipe saved successfully" in saved["message"]
    assert classifier.calls == []
    assert len(embedder.calls) == 1
    assert embedder.calls[0].startswith("Title: Quick Garlic Pasta\nIngredients: pasta, 3 cloves garlic")

    row = db_session.get(models.Recipe, saved["recipe"]["id"])
    assert row.embedding
    assert row.group.owner_id == "user-1"


def test_incomplete_recipe_is_never_stored(client, db_session, user_token, classifier, embedder):
    use_intent(classifier, IntentType.STORE_RECIPE)
    response = client.post(
        "/chat", json={"message": "Title: Salad\nIngredients:\n- lettuce\n- tomato"}, headers=auth_header(user_token)
    )
    body = response.json()
    assert body["success"] is False
    assert body["needs_clarification"] is True
    assert "steps" in body["message"]
    assert body["pending_recipe"]["steps"] == []
    assert db_session.query(models.Recipe).count() == 0
    assert embedder.calls == []


def test_intent_only_store_message_gets_guidance(client, user_token, classifier, transport):
    use_intent(classifier, IntentType.STORE_RECIPE)
    body = client.post("/chat", json={"message": "I want to save a recipe"}, headers=auth_header(user_token)).json()
    assert body["success"] is True
    assert "paste" in body["message"].lower()
    assert body["pending_recipe"] is None
    assert transport.requests == []


def test_confirm_rejects_incomplete_recipe(client, user_token, embedder):
    response = confirm(client, user_token, {"title": "Salad", "ingredients": ["lettuce"], "steps": []})
    assert response.status_code == 422
    assert embedder.calls == []


def test_search_ranks_saved_recipes(client, user_token, classifier):
    confirm(client, user_token, {"title": "Chocolate Cake", "ingredients": ["flour", "cocoa", "sugar"], "steps": ["Bake"]})
    confirm(
        client,
        user_token,
        {"title": "Garlic Pasta", "ingredients": ["pasta", "garlic"], "steps": ["Boil pasta"], "tags": ["italian"]},
    )

    use_intent(classifier, IntentType.SEARCH_RECIPE)
    body = client.post("/chat", json={"message": "garlic pasta"}, headers=auth_header(user_token)).json()
    titles = [r["title"] for r in body["recipes"]]
    assert titles[0] == "Garlic Pasta"
    assert "Chocolate Cake" not in titles
    assert "Found 1 recipe" in body["message"]


def test_generate_request_is_answered_by_search(client, user_token, classifier):
    confirm(client, user_token, {"title": "Vegan Curry", "ingredients": ["chickpeas", "curry paste"], "steps": ["Simmer"]})
    use_intent(classifier, IntentType.GENERATE_RECIPE)
    body = client.post("/chat", json={"message": "vegan curry"}, headers=auth_header(user_token)).json()
    assert body["intent"] == "generate_recipe"
    assert [r["title"] for r in body["recipes"]] == ["Vegan Curry"]


def test_search_with_no_matches(client, user_token, classifier):
    use_intent(classifier, IntentType.SEARCH_RECIPE)
    body = client.post("/chat", json={"message": "find lasagna"}, headers=auth_header(user_token)).json()
    assert body["recipes"] == []
    assert "couldn't find any recipes" in body["message"]


def test_other_users_recipes_are_not_searchable(client, user_token, other_user_token, classifier):
    confirm(client, user_token, {"title": "Garlic Pasta", "ingredients": ["pasta", "garlic"], "steps": ["Boil"]})
    use_intent(classifier, IntentType.SEARCH_RECIPE)
    body = client.post("/chat", json={"message": "garlic pasta"}, headers=auth_header(other_user_token)).json()
    assert body["recipes"] == []


def test_cannot_confirm_into_someone_elses_group(client, user_token, other_user_token, embedder):
    saved = confirm(client, user_token, {"title": "Toast", "ingredients": ["bread"], "steps": ["Toast"]}).json()
    group_id = saved["recipe"]["group_id"]
    embedder.calls.clear()

    body = confirm(client, other_user_token, {"title": "Sneaky", "ingredients": ["x"], "steps": ["y"]}, group_id).json()
    assert body["success"] is False
    assert body["message"] == "That recipe group was not found."
    assert embedder.calls == []


def test_chat_history_recorded_and_cleared(client, user_token, classifier):
    use_intent(classifier, IntentType.SEARCH_RECIPE, 0.3)
    client.post("/chat", json={"message": "curry"}, headers=auth_header(user_token))

    history = client.get("/chat/history", headers=auth_header(user_token)).json()
    assert [h["role"] for h in history] == ["user", "assistant"]
    assert history[0]["message"] == "curry"

    assert client.delete("/chat/history", headers=auth_header(user_token)).status_code == 204
    assert client.get("/chat/history", headers=auth_header(user_token)).json() == []


def test_classifier_outage_degrades_to_clarification(client, user_token, classifier):
    classifier.error = True
    body = client.post("/chat", json={"message": "find pasta"}, headers=auth_header(user_token)).json()
    assert body["success"] is True
    assert body["needs_clarification"] is True
    assert body["intent"] is None
