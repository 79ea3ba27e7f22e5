from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

ENV_TO_CLEAR = (
    "SUPABASE_URL",
    "NEXT_PUBLIC_SUPABASE_URL",
    "SUPABASE_PROJECT_URL",
    "SUPABASE_ANON_KEY",
    "NEXT_PUBLIC_SUPABASE_ANON_KEY",
    "SUPABASE_API_KEY",
    "SUPABASE_DB_POOL_URL",
    "UPSTASH_REDIS_URL",
    "VERCEL",
    "VERCEL_ENV",
    "LOCAL_REQUIRE_EMAIL_CONFIRMATION",
    "PASSWORD_RESET_REDIRECT_URL",
    "SESSION_COOKIE_SECURE",
    "WELLNESS_BACKEND",
)


@pytest.fixture
def app_env(tmp_path, monkeypatch):
    for name in ENV_TO_CLEAR:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FLASK_SECRET_KEY", "testing-secret")
    monkeypatch.setenv("FLASK_ENV", "development")
    monkeypatch.setenv("LOCAL_DATABASE_URI", f"sqlite:///{tmp_path / 'sessions.db'}")
    monkeypatch.setenv("STORAGE_DATA_DIR", str(tmp_path / "data"))
    yield tmp_path


@pytest.fixture
def local_app(app_env, monkeypatch):
    from wellness import create_app

    monkeypatch.setenv("WELLNESS_BACKEND", "local")
    app = create_app()
    app.config["TESTING"] = True
    yield app


@pytest.fixture
def client(local_app):
    return local_app.test_client()


SIGNUP_FORM = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "password": "Sunrise#2024",
    "confirm_password": "Sunrise#2024",
    "date_of_birth": "1990-12-10",
    "gender": "female",
    "accept_terms": "on",
}


@pytest.fixture
def signup_form():
    return dict(SIGNUP_FORM)


@pytest.fixture
def signed_in_client(client, signup_form):
    response = client.post("/auth/signup", data=signup_form)
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/dashboard")
    return client
