from dataclasses import replace
from datetime import datetime

from fastapi.testclient import TestClient

from todo_sync.main import create_app

AUTH = "/api/v1/auth"
TODOS = "/api/v1/todos"


def assert_todo_shape(todo: dict):
    for key in ["id", "owner_id", "title", "completed", "status_emoji", "is_new", "created_at", "updated_at"]:
        assert key in todo
    assert isinstance(todo["id"], str)
    assert isinstance(todo["completed"], bool)
    datetime.fromisoformat(todo["created_at"].replace("Z", "+00:00"))
    datetime.fromisoformat(todo["updated_at"].replace("Z", "+00:00"))


class TestHealth:
    def test_health_check(self, client):
        res = client.get("/")
        assert res.status_code == 200
        data = res.json()
        assert data["message"] == "Healthy"
        assert data["backend"] == "memory"


class TestAuthApi:
    def test_sign_up_and_me(self, client):
        res = client.post(f"{AUTH}/sign-up", json={"email": "jane@example.com", "password": "secret1"})
        assert res.status_code == 201
        body = res.json()
        assert body["token_type"] == "bearer"
        assert body["access_token"]
        user = body["user"]
        assert user["email"] == "jane@example.com"
        assert user["short_name"] == "jane"

        assert client.get(f"{AUTH}/me").status_code == 401
        me = client.get(f"{AUTH}/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.status_code == 200
        assert me.json()["id"] == user["id"]

    def test_sign_up_password_confirmation_mismatch(self, client):
        res = client.post(
            f"{AUTH}/sign-up",
            json={"email": "jane@example.com", "password": "secret1", "password_confirmation": "secret2"},
        )
        assert res.status_code == 422
        assert res.json()["error"] == "ValidationError"

    def test_invalid_email_is_validation_error(self, client):
        res = client.post(f"{AUTH}/sign-in", json={"email": "nope", "password": "secret1"})
        assert res.status_code == 422
        body = res.json()
        assert body["error"] == "ValidationError"
        assert body["message"] == "Please enter a valid email address"

    def test_wrong_password_is_401(self, app, signed_in_client):
        signed_in_client.post(f"{AUTH}/sign-out")
        del signed_in_client.headers["Authorization"]
        res = signed_in_client.post(f"{AUTH}/sign-in", json={"email": "jane@example.com", "password": "wrong-1"})
        assert res.status_code == 401
        assert res.json() == {
            "error": "AuthError",
            "message": "Incorrect password",
            "detail": "Please verify your email and password, or try signing in with a different method.",
        }
        assert len(app.state.services.sessions) == 0

    def test_sign_in_returns_new_token(self, signed_in_client):
        old = signed_in_client.headers.pop("Authorization")
        res = signed_in_client.post(f"{AUTH}/sign-in", json={"email": "jane@example.com", "password": "secret1"})
        assert res.status_code == 200
        assert f"Bearer {res.json()['access_token']}" != old
        assert res.json()["user"]["email"] == "jane@example.com"

    def test_anonymous_then_sign_out(self, client):
        res = client.post(f"{AUTH}/anonymous")
        assert res.status_code == 200
        assert res.json()["user"]["display_text"] == "Guest User"
        client.headers["Authorization"] = f"Bearer {res.json()['access_token']}"
        assert client.post(f"{AUTH}/sign-out").status_code == 204
        assert client.get(f"{AUTH}/me").status_code == 401
        assert client.post(f"{AUTH}/sign-out").status_code == 401

    def test_guest_accounts_do_not_accumulate(self, app, client):
        accounts = app.state.services.accounts
        for _ in range(3):
            token = client.post(f"{AUTH}/anonymous").json()["access_token"]
            res = client.post(f"{AUTH}/sign-out", headers={"Authorization": f"Bearer {token}"})
            assert res.status_code == 204
        assert len(accounts) == 0

    def test_unknown_token_is_401(self, client):
        res = client.get(f"{AUTH}/me", headers={"Authorization": "Bearer not-a-session"})
        assert res.status_code == 401
        assert res.json()["error"] == "AuthError"

    def test_update_display_name(self, signed_in_client):
        res = signed_in_client.patch(f"{AUTH}/me", json={"display_name": "Jane Doe"})
        assert res.status_code == 200
        assert res.json()["initials"] == "JD"

    def test_password_reset(self, signed_in_client):
        res = signed_in_client.post(f"{AUTH}/password-reset", json={"email": "jane@example.com"})
        assert res.status_code == 202

    def test_password_reset_without_session(self, app, client, register):
        register(client)
        del client.headers["Authorization"]
        res = client.post(f"{AUTH}/password-reset", json={"email": "jane@example.com"})
        assert res.status_code == 202
        # the reset opened no lasting session
        assert len(app.state.services.sessions) == 1

    def test_delete_account(self, signed_in_client):
        signed_in_client.post(f"{TODOS}/", json={"title": "a"})
        assert signed_in_client.delete(f"{AUTH}/me").status_code == 204
        assert signed_in_client.get(f"{AUTH}/me").status_code == 401


class TestSessionIsolation:
    def test_second_client_without_token_is_rejected(self, app, signed_in_client):
        signed_in_client.post(f"{TODOS}/", json={"title": "private"})

        other = TestClient(app)
        assert other.get(f"{TODOS}/").status_code == 401
        assert other.get(f"{AUTH}/me").status_code == 401
        assert other.post(f"{TODOS}/", json={"title": "x"}).status_code == 401

    def test_two_signed_in_clients_see_only_their_own_todos(self, app, signed_in_client, register):
        signed_in_client.post(f"{TODOS}/", json={"title": "jane's"})

        other = TestClient(app)
        register(other, email="john@example.com")
        other.post(f"{TODOS}/", json={"title": "john's"})

        assert [t["title"] for t in signed_in_client.get(f"{TODOS}/").json()] == ["jane's"]
        assert [t["title"] for t in other.get(f"{TODOS}/").json()] == ["john's"]
        assert signed_in_client.get(f"{AUTH}/me").json()["email"] == "jane@example.com"

    def test_sign_out_ends_only_that_session(self, app, signed_in_client, register):
        other = TestClient(app)
        register(other, email="john@example.com")

        assert other.post(f"{AUTH}/sign-out").status_code == 204
        assert other.get(f"{AUTH}/me").status_code == 401
        assert signed_in_client.get(f"{AUTH}/me").status_code == 200


class TestTodosApi:
    def test_requires_session(self, client):
        res = client.get(f"{TODOS}/")
        assert res.status_code == 401
        assert res.json()["error"] == "AuthError"

    def test_create_list_get(self, signed_in_client):
        res = signed_in_client.post(f"{TODOS}/", json={"title": "  Buy milk  "})
        assert res.status_code == 201
        todo = res.json()
        assert_todo_shape(todo)
        assert todo["title"] == "Buy milk"
        assert todo["status_emoji"] == "⭕️"

        listed = signed_in_client.get(f"{TODOS}/").json()
        assert [t["id"] for t in listed] == [todo["id"]]
        assert signed_in_client.get(f"{TODOS}/{todo['id']}").json()["title"] == "Buy milk"

    def test_create_blank_title(self, signed_in_client):
        res = signed_in_client.post(f"{TODOS}/", json={"title": "   "})
        assert res.status_code == 422
        assert res.json()["message"] == "Title cannot be empty"

    def test_missing_title_uses_request_validation_format(self, signed_in_client):
        res = signed_in_client.post(f"{TODOS}/", json={})
        assert res.status_code == 422
        body = res.json()
        assert body["message"] == "Request validation failed"
        assert isinstance(body["detail"], list)

    def test_update_and_delete(self, signed_in_client):
        todo_id = signed_in_client.post(f"{TODOS}/", json={"title": "a"}).json()["id"]

        res = signed_in_client.patch(f"{TODOS}/{todo_id}/completion", json={"completed": True})
        assert res.status_code == 200
        assert res.json()["status_emoji"] == "✅"

        res = signed_in_client.patch(f"{TODOS}/{todo_id}/title", json={"title": "b"})
        assert res.json()["title"] == "b"

        assert signed_in_client.delete(f"{TODOS}/{todo_id}").status_code == 204
        res = signed_in_client.get(f"{TODOS}/{todo_id}")
        assert res.status_code == 404
        assert res.json()["message"] == "Unable to save your data. Please try again."
        assert signed_in_client.delete(f"{TODOS}/{todo_id}").status_code == 404

    def test_statistics_and_bulk(self, signed_in_client):
        ids = [signed_in_client.post(f"{TODOS}/", json={"title": t}).json()["id"] for t in ("a", "b", "c")]
        signed_in_client.patch(f"{TODOS}/{ids[0]}/completion", json={"completed": True})

        stats = signed_in_client.get(f"{TODOS}/statistics").json()
        assert stats["total"] == 3
        assert stats["completed"] == 1
        assert stats["completion_percentage_string"] == "33%"

        assert signed_in_client.post(f"{TODOS}/complete-all").json() == {"affected": 2}
        assert signed_in_client.get(f"{TODOS}/statistics").json()["active"] == 0

        assert signed_in_client.delete(f"{TODOS}/").json() == {"affected": 3}
        assert signed_in_client.get(f"{TODOS}/").json() == []

    def test_atomic_bulk_mode(self, settings):
        client = TestClient(create_app(replace(settings, bulk_write_mode="atomic")))
        token = client.post(f"{AUTH}/anonymous").json()["access_token"]
        client.headers["Authorization"] = f"Bearer {token}"
        client.post(f"{TODOS}/", json={"title": "a"})
        assert client.post(f"{TODOS}/complete-all").json() == {"affected": 1}
        assert client.delete(f"{TODOS}/").json() == {"affected": 1}

    def test_todo_limit_is_conflict(self, settings, register):
        client = TestClient(create_app(replace(settings, max_todos_per_user=1)))
        register(client)
        assert client.post(f"{TODOS}/", json={"title": "a"}).status_code == 201
        res = client.post(f"{TODOS}/", json={"title": "b"})
        assert res.status_code == 409
        assert res.json() == {
            "error": "TodoLimitExceeded",
            "message": "You can have at most 1 todos",
            "detail": "Delete some todos and try again.",
        }
