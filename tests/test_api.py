"""
HTTP layer: auth, status codes and error bodies, and the swap flow end to end
"""

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

import main
import profiles
import security
from database import get_db
from main import app


def register(client, name, email, password="secret123"):
    resp = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return body["user"], {"Authorization": f"Bearer {body['token']}"}


@pytest.fixture
def alice(client):
    user, headers = register(client, "Alice", "alice@example.com")
    client.post("/api/users/skills-offered", json={"name": "Guitar"}, headers=headers)
    client.post("/api/users/skills-wanted", json={"name": "Spanish", "priority": "High"}, headers=headers)
    return user, headers


@pytest.fixture
def bob(client):
    user, headers = register(client, "Bob", "bob@example.com")
    client.post("/api/users/skills-offered", json={"name": "Spanish", "proficiency": "Expert"}, headers=headers)
    return user, headers


def propose(client, requester, recipient, offered="Guitar", requested="Spanish"):
    return client.post("/api/swaps", headers=requester[1], json={
        "recipientId": recipient[0]["id"],
        "offeredSkill": {"name": offered},
        "requestedSkill": {"name": requested, "description": "conversation"},
        "message": "Hi!",
    })


class TestAuth:

    def test_root_and_health(self, client):
        assert client.get("/").json() == {"message": "SkillSwap API"}
        assert client.get("/test").json()["database"] == "ok"

    def test_starts_when_indexes_cannot_be_created(self, db, monkeypatch):
        def unreachable(_database):
            raise ServerSelectionTimeoutError("localhost:27017: connection refused")

        monkeypatch.setattr(main, "ensure_indexes", unreachable)
        app.dependency_overrides[get_db] = lambda: db
        try:
            with TestClient(app) as c:
                assert c.get("/").status_code == 200
        finally:
            app.dependency_overrides.clear()

    def test_missing_token(self, client):
        resp = client.get("/api/swaps/my-swaps")
        assert resp.status_code == 401
        assert resp.json() == {"message": "No token, authorization denied"}

    def test_bad_token(self, client):
        resp = client.get("/api/users/profile", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.json() == {"message": "Token is not valid"}

    def test_register_login_me(self, client):
        user, headers = register(client, "Alice", "Alice@Example.com")
        assert user["email"] == "alice@example.com"
        dup = client.post("/api/auth/register", json={"name": "Al", "email": "alice@example.com",
                                                      "password": "secret123"})
        assert dup.status_code == 400
        bad = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "wrong-one"})
        assert bad.status_code == 400
        good = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret123"})
        assert good.status_code == 200
        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {good.json()['token']}"})
        assert me.json()["id"] == user["id"]

    def test_register_validation_errors(self, client):
        resp = client.post("/api/auth/register", json={"name": "A", "email": "not-an-email", "password": "123"})
        assert resp.status_code == 400
        paths = {e["path"] for e in resp.json()["errors"]}
        assert {"name", "email", "password"} <= paths

    def test_admin_login_and_guard(self, client, alice, monkeypatch):
        monkeypatch.setattr(security, "ADMIN_ID", "root@example.com")
        monkeypatch.setattr(security, "ADMIN_PASSWORD", "hunter22")
        assert client.get("/api/users/all", headers=alice[1]).status_code == 403
        assert client.post("/api/auth/admin-login", json={"adminId": "root@example.com",
                                                          "password": "bad"}).status_code == 400
        token = client.post("/api/auth/admin-login", json={"adminId": "root@example.com",
                                                           "password": "hunter22"}).json()["token"]
        admin = {"Authorization": f"Bearer {token}"}
        listed = client.get("/api/users/all", headers=admin).json()
        assert [u["name"] for u in listed] == ["Alice"]
        assert client.get("/api/swaps/my-swaps", headers=admin).status_code == 403


class TestSwapFlow:

    def test_full_lifecycle(self, client, alice, bob):
        created = propose(client, alice, bob)
        assert created.status_code == 201, created.text
        swap = created.json()
        assert swap["status"] == "pending"
        assert swap["requester"]["name"] == "Alice"
        sid = swap["id"]

        assert client.put(f"/api/swaps/{sid}/accept", headers=alice[1]).status_code == 403
        assert client.put(f"/api/swaps/{sid}/accept", headers=bob[1]).json()["status"] == "accepted"
        again = client.put(f"/api/swaps/{sid}/accept", headers=bob[1])
        assert again.status_code == 400
        assert again.json() == {"message": "Swap is not in pending status"}

        early = client.post(f"/api/swaps/{sid}/rate", headers=alice[1], json={"rating": 5})
        assert early.status_code == 400

        done = client.put(f"/api/swaps/{sid}/complete", headers=alice[1]).json()
        assert done["status"] == "completed" and done["completedDate"]

        rated = client.post(f"/api/swaps/{sid}/rate", headers=alice[1], json={"rating": 5, "comment": "great!"})
        assert rated.json()["requesterRating"]["rating"] == 5
        bob_profile = client.get(f"/api/users/{bob[0]['id']}").json()
        assert (bob_profile["ratingAverage"], bob_profile["ratingCount"]) == (5, 1)
        assert bob_profile["recentReviews"][0]["reviewer"]["name"] == "Alice"
        assert bob_profile["swapsCompleted"] == 1

        client.post(f"/api/swaps/{sid}/rate", headers=bob[1], json={"rating": 4})
        alice_profile = client.get(f"/api/users/{alice[0]['id']}").json()
        assert (alice_profile["ratingAverage"], alice_profile["ratingCount"]) == (4, 1)

        twice = client.post(f"/api/swaps/{sid}/rate", headers=alice[1], json={"rating": 5})
        assert twice.status_code == 409
        assert twice.json() == {"message": "You have already rated this swap"}

    def test_create_errors(self, client, alice, bob):
        bad_skill = propose(client, alice, bob, requested="French")
        assert bad_skill.status_code == 400
        assert bad_skill.json() == {"message": "Recipient does not offer this skill"}

        missing = client.post("/api/swaps", headers=alice[1], json={
            "recipientId": "5f1d7f1c2b3a4c5d6e7f8091", "offeredSkill": {"name": "Guitar"},
            "requestedSkill": {"name": "Spanish"},
        })
        assert missing.status_code == 404

        malformed = client.post("/api/swaps", headers=alice[1], json={"recipientId": "x", "offeredSkill": {}})
        assert malformed.status_code == 400
        assert "errors" in malformed.json()

        assert propose(client, alice, bob).status_code == 201
        dup = propose(client, bob, alice, offered="Spanish", requested="Guitar")
        assert dup.status_code == 409

    def test_private_recipient(self, client, alice, bob):
        client.put("/api/users/profile", headers=bob[1], json={"isPublic": False})
        resp = propose(client, alice, bob)
        assert resp.status_code == 403
        assert client.get(f"/api/users/{bob[0]['id']}").status_code == 403

    def test_rating_must_be_integer_in_range(self, client, alice, bob):
        sid = propose(client, alice, bob).json()["id"]
        for bad in (0, 6, 4.5, "5"):
            assert client.post(f"/api/swaps/{sid}/rate", headers=alice[1], json={"rating": bad}).status_code == 400

    def test_my_swaps_and_visibility(self, client, alice, bob):
        sid = propose(client, alice, bob).json()["id"]
        carol = register(client, "Carol", "carol@example.com")
        assert [s["id"] for s in client.get("/api/swaps/my-swaps", headers=bob[1]).json()] == [sid]
        assert client.get("/api/swaps/my-swaps?status=completed", headers=bob[1]).json() == []
        assert client.get("/api/swaps/my-swaps?status=bogus", headers=bob[1]).status_code == 400
        assert client.get(f"/api/swaps/{sid}", headers=carol[1]).status_code == 403
        detail = client.get(f"/api/swaps/{sid}", headers=bob[1]).json()
        assert detail["recipient"]["email"] == "bob@example.com"
        assert client.put(f"/api/swaps/{sid}/archive", headers=bob[1]).status_code == 400

    def test_cancel_then_reject_is_invalid(self, client, alice, bob):
        sid = propose(client, alice, bob).json()["id"]
        assert client.put(f"/api/swaps/{sid}/cancel", headers=bob[1]).status_code == 403
        assert client.put(f"/api/swaps/{sid}/cancel", headers=alice[1]).json()["status"] == "cancelled"
        assert client.put(f"/api/swaps/{sid}/reject", headers=bob[1]).status_code == 400


class TestProfileRoutes:

    def test_profile_and_skills(self, client, alice):
        profile = client.get("/api/users/profile", headers=alice[1]).json()
        assert profile["email"] == "alice@example.com"
        assert [s["name"] for s in profile["skillsOffered"]] == ["Guitar"]
        dup = client.post("/api/users/skills-offered", json={"name": "guitar"}, headers=alice[1])
        assert dup.status_code == 400
        skill_id = profile["skillsOffered"][0]["id"]
        assert client.delete(f"/api/users/skills-offered/{skill_id}", headers=alice[1]).json() == []

    def test_update_profile(self, client, alice):
        resp = client.put("/api/users/profile", headers=alice[1],
                          json={"bio": "Musician", "availability": {"weekends": True}})
        assert resp.json()["bio"] == "Musician"
        assert resp.json()["availability"]["weekends"] is True
        client.put("/api/users/profile", headers=alice[1],
                   json={"availability": {"evenings": True, "customSchedule": "after 6"}})
        resp = client.put("/api/users/profile", headers=alice[1], json={"availability": {"weekdays": True}})
        assert resp.json()["availability"] == {
            "weekdays": True, "weekends": True, "evenings": True, "mornings": False, "customSchedule": "after 6",
        }
        assert client.put("/api/users/profile", headers=alice[1], json={"name": "A"}).status_code == 400

    def test_browse_and_skills_endpoints(self, client, alice, bob):
        assert [u["name"] for u in client.get("/api/users/browse?skill=spanish&location=").json()] == \
            ["Bob", "Alice"]
        assert client.get("/api/skills/suggestions?q=gui").json() == ["Guitar"]
        assert client.get("/api/skills/popular").json()[0]["name"] == "Spanish"
        assert client.get("/api/users/search").status_code == 400

    def test_photo_upload(self, client, alice, tmp_path, monkeypatch):
        monkeypatch.setattr(profiles, "UPLOAD_DIR", str(tmp_path))
        ok = client.post("/api/users/profile-photo", headers=alice[1],
                         files={"photo": ("me.png", b"\x89PNG\r\n\x1a\nfake", "image/png")})
        assert ok.status_code == 200
        url = ok.json()["photoUrl"]
        assert url.startswith("/uploads/profile-") and url.endswith(".png")
        assert (tmp_path / url.rsplit("/", 1)[1]).exists()
        bad = client.post("/api/users/profile-photo", headers=alice[1],
                          files={"photo": ("notes.txt", b"hello", "text/plain")})
        assert bad.status_code == 400

    def test_review_export_is_owner_only(self, client, alice, bob):
        assert client.get(f"/api/users/{bob[0]['id']}/reviews/export", headers=alice[1]).status_code == 403
        resp = client.get(f"/api/users/{bob[0]['id']}/reviews/export", headers=bob[1])
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")

    def test_unknown_route_uses_message_body(self, client):
        resp = client.get("/api/nothing-here")
        assert resp.status_code == 404
        assert resp.json() == {"message": "Not Found"}
