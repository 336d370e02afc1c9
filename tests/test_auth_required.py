from jose import jwt


def test_auth_required_missing_header(client):
    response = client.get("/recipes")
    assert response.status_code == 401
    assert response.json()["detail"] in {"Not authenticated", "Invalid or expired token"}


def test_auth_invalid_token(client):
    response = client.get("/recipes", headers={"Authorization": "Bearer not-a-real-token"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"


def test_token_without_subject_rejected(client, auth_settings):
    token = jwt.encode({"email": "nobody@example.com"}, auth_settings.auth_secret_key, algorithm=auth_settings.auth_algorithm)
    response = client.get("/recipes", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_chat_requires_auth_before_rate_limit(client, classifier):
    response = client.post("/chat", json={"message": "find pasta"})
    assert response.status_code == 401
    assert classifier.calls == []


def test_health_is_public(client):
    assert client.get("/health").json() == {"status": "ok"}
