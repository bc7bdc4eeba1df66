import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from errors import (AuthError, AuthorizationError, ConflictError, InvalidSkillError, InvalidStateError, NotFoundError,
                    ServerError, ValidationError, register_error_handlers)


@pytest.fixture
def raising_client():
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/raise/{kind}")
    def boom(kind: str):
        raise {
            "validation": ValidationError("bad input"),
            "auth": AuthError("no token"),
            "forbidden": AuthorizationError("not yours"),
            "missing": NotFoundError("gone"),
            "conflict": ConflictError("twice"),
            "skill": InvalidSkillError("not offered"),
            "state": InvalidStateError("not pending"),
            "server": ServerError("database down"),
        }[kind]

    @app.get("/crash")
    def crash():
        raise RuntimeError("unexpected")

    return TestClient(app, raise_server_exceptions=False)


@pytest.mark.parametrize("kind,code,message", [
    ("validation", 400, "bad input"),
    ("auth", 401, "no token"),
    ("forbidden", 403, "not yours"),
    ("missing", 404, "gone"),
    ("conflict", 409, "twice"),
    ("skill", 400, "not offered"),
    ("state", 400, "not pending"),
    ("server", 500, "database down"),
])
def test_domain_errors_map_to_status_and_message(raising_client, kind, code, message):
    resp = raising_client.get(f"/raise/{kind}")
    assert resp.status_code == code
    assert resp.json() == {"message": message}


def test_auth_error_asks_for_bearer(raising_client):
    assert raising_client.get("/raise/auth").headers["www-authenticate"] == "Bearer"


def test_unexpected_error_is_a_generic_500(raising_client):
    resp = raising_client.get("/crash")
    assert resp.status_code == 500
    assert resp.json() == {"message": "Server error"}
