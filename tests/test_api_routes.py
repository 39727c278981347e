"""
tests/test_api_routes.py -- Integration tests through the full ASGI stack.

These tests exercise FastAPI routing -> session middleware -> auth dependency
helpers -> guard -> stores -> response model serialization. One TestClient
keeps a cookie jar, so switching users means logging out and back in, exactly
as a browser would.

Coverage:
  - Registration: 201 + immediate login, 422 with every field, 409 per field
  - Login: by username or email, generic 401 with no-store, session id rotation
  - Logout: session destroyed, protected routes answer 401 again
  - Rate limiting: login and register answer 429 once their limits are spent
  - Albums: public listing, owner-only mutation (403 for others), likes
  - Movies: login-to-read, ratings once per user, owner-only delete
  - Anonymous browser requests redirect to /login with a relative next
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from conftest import TEST_PASSWORD, login, register
from core.config import get_settings

SESSION_COOKIE = "sid"

MOVIE = {
    "title": "Heat",
    "genre": "Crime",
    "release_date": "1995-12-15",
    "description": "A cat and mouse story in Los Angeles.",
}


def _logout(client: TestClient) -> None:
    assert client.post("/api/v1/auth/logout").status_code == 200


class TestRegistration:
    def test_register_logs_in(self, client: TestClient) -> None:
        resp = register(client, "alice", "alice@example.com")
        assert resp.status_code == 201, resp.text
        assert resp.json()["username"] == "alice"
        assert resp.headers["Cache-Control"] == "no-store"

        me = client.get("/api/v1/auth/me")
        assert me.status_code == 200
        assert me.json()["email"] == "alice@example.com"

    def test_session_cookie_flags(self, client: TestClient) -> None:
        resp = register(client, "alice")
        cookie = resp.headers["set-cookie"].lower()
        assert f"{SESSION_COOKIE}=" in cookie
        assert "httponly" in cookie
        assert "samesite=lax" in cookie

    def test_every_invalid_field_reported(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/register",
            json={"username": "a", "email": "nope", "password": "short", "confirm_password": "other"},
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert [f["field"] for f in error["fields"]] == ["username", "email", "password", "confirm_password"]
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_mismatch_creates_nothing(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "username": "alice",
                "email": "alice@example.com",
                "password": TEST_PASSWORD,
                "confirm_password": "Different123!",
            },
        )
        assert resp.status_code == 422
        assert login(client, "alice").status_code == 401

    def test_duplicate_email_conflict(self, client: TestClient) -> None:
        register(client, "alice", "alice@example.com")
        _logout(client)
        resp = register(client, "alice2", "ALICE@example.com")
        assert resp.status_code == 409
        fields = resp.json()["error"]["fields"]
        assert [(f["field"], f["code"]) for f in fields] == [("email", "taken")]

    def test_duplicate_username_conflict(self, client: TestClient) -> None:
        register(client, "alice", "alice@example.com")
        _logout(client)
        resp = register(client, "Alice", "new@example.com")
        assert resp.status_code == 409
        assert [f["field"] for f in resp.json()["error"]["fields"]] == ["username"]

    @pytest.mark.parametrize(
        "field, payload",
        [
            (
                "password",
                '{"username": "bob", "email": "bob@example.com",'
                ' "password": "Password123\\ud800", "confirm_password": "Password123\\ud800"}',
            ),
            (
                "email",
                '{"username": "bob", "email": "b\\ud800@example.com",'
                ' "password": "Password123!", "confirm_password": "Password123!"}',
            ),
        ],
        ids=["password", "email"],
    )
    def test_unencodable_text_is_422(self, client: TestClient, field: str, payload: str) -> None:
        """A lone surrogate escape is valid JSON but cannot be stored or hashed."""
        resp = client.post(
            "/api/v1/auth/register",
            content=payload,
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 422
        assert [f["field"] for f in resp.json()["error"]["fields"]] == [field]
        assert login(client, "bob").status_code == 401


class TestLogin:
    def test_login_by_username_and_email(self, client: TestClient) -> None:
        register(client, "alice", "alice@example.com")
        _logout(client)
        assert login(client, "alice").status_code == 200
        _logout(client)
        resp = login(client, "Alice@Example.com")
        assert resp.status_code == 200
        assert resp.json()["username"] == "alice"
        assert resp.headers["Cache-Control"] == "no-store"

    def test_bad_credentials_are_generic(self, client: TestClient) -> None:
        register(client, "alice", "alice@example.com")
        _logout(client)
        wrong_password = login(client, "alice", "WrongPass999!")
        unknown_user = login(client, "nobody", TEST_PASSWORD)
        assert wrong_password.status_code == unknown_user.status_code == 401
        assert wrong_password.json() == unknown_user.json()
        assert wrong_password.json()["error"]["code"] == "bad_credentials"
        assert wrong_password.headers["Cache-Control"] == "no-store"
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_login_rotates_session_id(self, client: TestClient) -> None:
        register(client, "alice")
        _logout(client)
        client.get("/api/v1/albums")  # obtain an anonymous session
        anonymous_id = client.cookies.get(SESSION_COOKIE)
        assert anonymous_id

        login(client, "alice")

        assert client.cookies.get(SESSION_COOKIE) != anonymous_id
        fixated = TestClient(client.app, cookies={SESSION_COOKIE: anonymous_id})
        assert fixated.get("/api/v1/auth/me").status_code == 401

    def test_missing_fields_are_just_bad_credentials(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/login", json={})
        assert resp.status_code == 401


class TestLogout:
    def test_logout_ends_session(self, client: TestClient) -> None:
        register(client, "alice")
        logged_in_id = client.cookies.get(SESSION_COOKIE)
        _logout(client)
        assert client.get("/api/v1/auth/me").status_code == 401
        stale = TestClient(client.app, cookies={SESSION_COOKIE: logged_in_id})
        assert stale.get("/api/v1/auth/me").status_code == 401

    def test_logout_when_anonymous(self, client: TestClient) -> None:
        assert client.post("/api/v1/auth/logout").status_code == 200


class TestRateLimiting:
    @pytest.fixture
    def limited(self, monkeypatch):
        """Enable the shared limiter with low per-route limits for one test."""
        settings = get_settings().model_copy(update={"login_rate_limit": "2/minute", "register_rate_limit": "1/minute"})
        monkeypatch.setattr("api.limiter.get_settings", lambda: settings)
        monkeypatch.setattr(limiter, "enabled", True)
        limiter.reset()
        yield
        limiter.reset()

    def test_login_attempts_are_limited(self, client: TestClient, limited) -> None:
        codes = [login(client, "nobody", "WrongPass999!").status_code for _ in range(4)]
        assert codes == [401, 401, 429, 429]

    def test_limited_response_uses_error_envelope(self, client: TestClient, limited) -> None:
        for _ in range(2):
            login(client, "nobody", "WrongPass999!")
        resp = login(client, "nobody", "WrongPass999!")
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"

    def test_registration_is_limited(self, client: TestClient, limited) -> None:
        assert register(client, "alice").status_code == 201
        _logout(client)
        assert register(client, "bob").status_code == 429
        assert login(client, "bob").status_code == 401


class TestAlbums:
    def _create(self, client: TestClient, title: str = "Blue") -> int:
        resp = client.post("/api/v1/albums", json={"title": title, "artist": "Joni Mitchell", "release_year": 1971})
        assert resp.status_code == 201, resp.text
        return resp.json()["id"]

    def test_listing_is_public(self, client: TestClient) -> None:
        resp = client.get("/api/v1/albums")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_anonymous_create_is_401(self, client: TestClient) -> None:
        resp = client.post("/api/v1/albums", json={"title": "Blue", "artist": "Joni"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthenticated"

    def test_anonymous_mutation_of_missing_album_is_401(self, client: TestClient) -> None:
        assert client.patch("/api/v1/albums/9999", json={"title": "x"}).status_code == 401
        resp = client.delete("/api/v1/albums/9999")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthenticated"

    def test_anonymous_browser_redirects_to_login(self, client: TestClient) -> None:
        resp = client.get("/api/v1/albums/mine", headers={"Accept": "text/html"})
        assert resp.status_code == 303
        assert resp.headers["location"] == "/login?next=/api/v1/albums/mine"

    def test_owner_can_edit_and_delete(self, client: TestClient) -> None:
        register(client, "alice")
        album_id = self._create(client)
        resp = client.patch(f"/api/v1/albums/{album_id}", json={"genre": "Folk"})
        assert resp.status_code == 200
        assert resp.json()["genre"] == "Folk"
        assert client.delete(f"/api/v1/albums/{album_id}").status_code == 204
        assert client.get(f"/api/v1/albums/{album_id}").status_code == 404

    def test_other_user_is_forbidden(self, client: TestClient) -> None:
        alice_id = register(client, "alice").json()["user_id"]
        album_id = self._create(client)
        _logout(client)
        register(client, "bob")

        assert client.patch(f"/api/v1/albums/{album_id}", json={"title": "Mine now"}).status_code == 403
        resp = client.delete(f"/api/v1/albums/{album_id}")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

        album = client.get(f"/api/v1/albums/{album_id}").json()
        assert album["title"] == "Blue"
        assert album["owner_user_id"] == alice_id

    def test_owner_field_is_ignored_on_update(self, client: TestClient) -> None:
        alice_id = register(client, "alice").json()["user_id"]
        album_id = self._create(client)
        resp = client.patch(f"/api/v1/albums/{album_id}", json={"title": "Blue (Remaster)", "owner_user_id": 999})
        assert resp.status_code == 200
        assert resp.json()["owner_user_id"] == alice_id

    def test_invalid_album_is_422(self, client: TestClient) -> None:
        register(client, "alice")
        resp = client.post("/api/v1/albums", json={"title": "", "artist": "x", "release_year": 1800})
        assert resp.status_code == 422
        assert {f["field"] for f in resp.json()["error"]["fields"]} == {"title", "release_year"}

    def test_mine_and_likes(self, client: TestClient) -> None:
        register(client, "alice")
        album_id = self._create(client)
        _logout(client)
        register(client, "bob")

        assert client.get("/api/v1/albums/mine").json() == []
        resp = client.post(f"/api/v1/albums/{album_id}/like")
        assert resp.json() == {"album_id": album_id, "liked": True, "like_count": 1}
        assert client.post(f"/api/v1/albums/{album_id}/like").json()["like_count"] == 1
        listed = client.get("/api/v1/albums").json()
        assert listed[0]["liked_by_me"] is True
        resp = client.delete(f"/api/v1/albums/{album_id}/like")
        assert resp.json() == {"album_id": album_id, "liked": False, "like_count": 0}

    def test_like_missing_album_is_404(self, client: TestClient) -> None:
        register(client, "alice")
        assert client.post("/api/v1/albums/9999/like").status_code == 404

    def test_sorting(self, client: TestClient) -> None:
        register(client, "alice")
        for title in ("Rumours", "Abbey Road"):
            self._create(client, title)
        titles = [a["title"] for a in client.get("/api/v1/albums?sort=title&dir=asc").json()]
        assert titles == ["Abbey Road", "Rumours"]


class TestMovies:
    def test_listing_requires_login(self, client: TestClient) -> None:
        assert client.get("/api/v1/movies").status_code == 401

    def test_create_rate_and_detail(self, client: TestClient) -> None:
        register(client, "alice")
        movie_id = client.post("/api/v1/movies", json=MOVIE).json()["id"]
        _logout(client)
        register(client, "bob")

        resp = client.post(f"/api/v1/movies/{movie_id}/ratings", json={"value": 4})
        assert resp.status_code == 201
        again = client.post(f"/api/v1/movies/{movie_id}/ratings", json={"value": 1})
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "already_rated"

        detail = client.get(f"/api/v1/movies/{movie_id}").json()
        assert detail["rating_count"] == 1
        assert detail["average_rating"] == 4.0
        assert detail["has_rated"] is True

    def test_rating_out_of_range(self, client: TestClient) -> None:
        register(client, "alice")
        movie_id = client.post("/api/v1/movies", json=MOVIE).json()["id"]
        assert client.post(f"/api/v1/movies/{movie_id}/ratings", json={"value": 6}).status_code == 422

    def test_movie_validation(self, client: TestClient) -> None:
        register(client, "alice")
        resp = client.post("/api/v1/movies", json={**MOVIE, "title": "X", "description": "short"})
        assert resp.status_code == 422
        assert {f["field"] for f in resp.json()["error"]["fields"]} == {"title", "description"}

    def test_anonymous_mutation_of_missing_movie_is_401(self, client: TestClient) -> None:
        assert client.patch("/api/v1/movies/9999", json={"genre": "Drama"}).status_code == 401
        assert client.delete("/api/v1/movies/9999").status_code == 401
        resp = client.delete("/api/v1/movies/9999", headers={"Accept": "text/html"})
        assert resp.status_code == 303

    def test_owner_gets_404_for_missing_movie(self, client: TestClient) -> None:
        register(client, "alice")
        assert client.delete("/api/v1/movies/9999").status_code == 404

    def test_non_owner_cannot_delete(self, client: TestClient) -> None:
        register(client, "alice")
        movie_id = client.post("/api/v1/movies", json=MOVIE).json()["id"]
        _logout(client)
        register(client, "bob")
        assert client.delete(f"/api/v1/movies/{movie_id}").status_code == 403
        assert client.patch(f"/api/v1/movies/{movie_id}", json={"genre": "Drama"}).status_code == 403
        assert client.get(f"/api/v1/movies/{movie_id}").json()["genre"] == "Crime"


class TestProfile:
    def test_profile_counts(self, client: TestClient) -> None:
        register(client, "alice")
        client.post("/api/v1/movies", json=MOVIE)
        client.post("/api/v1/albums", json={"title": "Blue", "artist": "Joni Mitchell"})
        resp = client.get("/api/v1/auth/profile")
        assert resp.status_code == 200
        data = resp.json()
        assert (data["movie_count"], data["album_count"], data["rating_count"]) == (1, 1, 0)
        assert data["recent_movies"][0]["title"] == "Heat"

    def test_profile_requires_login(self, client: TestClient) -> None:
        assert client.get("/api/v1/auth/profile").status_code == 401


def test_end_to_end_scenario(client: TestClient) -> None:
    """Register, fail a login, own a resource, get refused as someone else, log out."""
    assert register(client, "alice", "alice@example.com").status_code == 201
    _logout(client)
    assert login(client, "alice", "wrong-password").status_code == 401
    assert client.get("/api/v1/auth/me").status_code == 401
    alice_id = login(client, "alice@example.com").json()["user_id"]

    created = client.post("/api/v1/albums", json={"title": "Blue", "artist": "Joni Mitchell"}).json()
    assert created["owner_user_id"] == alice_id
    album_id = created["id"]
    _logout(client)

    register(client, "bob")
    assert client.delete(f"/api/v1/albums/{album_id}").status_code == 403
    _logout(client)

    assert client.get("/api/v1/auth/me").status_code == 401
    assert client.delete(f"/api/v1/albums/{album_id}").status_code == 401
    assert client.get(f"/api/v1/albums/{album_id}").status_code == 200
