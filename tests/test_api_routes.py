"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Exercises the operations API with the FastAPI TestClient.  Engine, queue
and services are overridden with in-memory SQLite-backed instances; the
platform client is a MagicMock.

These tests verify:
- Auth guards on operator endpoints
- LaunchpadError → HTTP status/JSON mapping
- Queue metrics, dead-letter requeue, pause/resume
- Contributor read paths and wallet binding
"""

from __future__ import annotations

from unittest.mock import MagicMock

import jwt
import pytest
from fastapi.testclient import TestClient

from conftest import seed_dao, seed_token
from launchpad.api.deps import (
    JWT_ALGORITHM,
    JWT_SECRET,
    get_config,
    get_contributor_service,
    get_engine,
    get_queue,
)
from launchpad.clients.platform import ContributorInfo, PlatformClient, PlatformUser, RepoInfo
from launchpad.config import LaunchpadConfig
from launchpad.errors import ErrorCode, LaunchpadError
from launchpad.services.contributor_service import ContributorService

WALLET = "0x9999999999999999999999999999999999999999"


@pytest.fixture
def platform_client() -> MagicMock:
    return MagicMock(spec=PlatformClient)


@pytest.fixture
def contributor_service(db_engine, platform_client, job_queue) -> ContributorService:
    return ContributorService(db_engine, platform_client, job_queue)


@pytest.fixture
def client(db_engine, job_queue, contributor_service):
    """Create a FastAPI TestClient wired to the test database."""
    from launchpad.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: LaunchpadConfig()
    app.dependency_overrides[get_queue] = lambda: job_queue
    app.dependency_overrides[get_contributor_service] = lambda: contributor_service
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_token():
    return jwt.encode(
        {"sub": WALLET, "is_admin": True},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def wallet_token():
    return jwt.encode({"sub": WALLET}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Auth guards — operator endpoints reject unauthenticated/non-admin users
# ===========================================================================
class TestAdminAuthGuards:
    ADMIN_GET_ENDPOINTS = [
        "/api/queues",
        "/api/queues/dex",
        "/api/queues/dex/dead-letters",
    ]

    ADMIN_POST_ENDPOINTS = [
        "/api/queues/dex/pause",
        "/api/queues/dex/resume",
        "/api/queues/dead-letters/1/requeue",
        "/api/daos/dao-1/sync",
        "/api/daos/dao-1/status-check",
        "/api/daos/dao-1/status",
        "/api/daos/dao-1/token",
    ]

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_get_rejects_no_auth(self, client, endpoint):
        assert client.get(endpoint).status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_POST_ENDPOINTS)
    def test_post_rejects_no_auth(self, client, endpoint):
        assert client.post(endpoint).status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_get_rejects_invalid_token(self, client, endpoint):
        resp = client.get(endpoint, headers={"Authorization": "Bearer invalid"})
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_POST_ENDPOINTS)
    def test_post_rejects_non_admin(self, client, wallet_token, endpoint):
        assert client.post(endpoint, headers=_auth(wallet_token)).status_code == 403

    def test_token_signed_with_other_secret(self, client):
        forged = jwt.encode({"sub": WALLET, "is_admin": True}, "x" * 64, algorithm=JWT_ALGORITHM)
        assert client.get("/api/queues", headers=_auth(forged)).status_code == 401


# ===========================================================================
# Queue operations
# ===========================================================================
class TestQueueRoutes:
    def test_all_metrics(self, client, admin_token, job_queue):
        job_queue.enqueue("dex", "dex-event")
        resp = client.get("/api/queues", headers=_auth(admin_token))
        assert resp.status_code == 200
        by_name = {m["queue"]: m for m in resp.json()}
        assert set(by_name) == {"contributor", "dex", "dao"}
        assert by_name["dex"]["waiting"] == 1

    def test_unknown_queue(self, client, admin_token):
        assert client.get("/api/queues/nope", headers=_auth(admin_token)).status_code == 404

    def test_pause_and_resume(self, client, admin_token, job_queue):
        resp = client.post("/api/queues/dao/pause", headers=_auth(admin_token))
        assert resp.json() == {"queue": "dao", "paused": True}
        assert job_queue.is_paused("dao")

        client.post("/api/queues/dao/resume", headers=_auth(admin_token))
        assert not job_queue.is_paused("dao")

    def test_dead_letters_and_requeue(self, client, admin_token, job_queue):
        job_id = job_queue.enqueue("dex", "dex-event", dao_id="dao-1")
        job_queue.dequeue("dex", "w1")
        job_queue.fail(job_id, "NOT_FOUND::gone", error_code=ErrorCode.NOT_FOUND, retryable=False)

        resp = client.get("/api/queues/dex/dead-letters", headers=_auth(admin_token))
        assert resp.status_code == 200
        dead = resp.json()
        assert len(dead) == 1
        assert dead[0]["job_id"] == job_id
        assert dead[0]["error_code"] == "NOT_FOUND"
        assert dead[0]["message"] == "gone"

        resp = client.post(f"/api/queues/dead-letters/{dead[0]['id']}/requeue", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert job_queue.metrics("dex")["waiting"] == 1

    def test_requeue_missing_dead_letter_maps_to_404(self, client, admin_token):
        resp = client.post("/api/queues/dead-letters/999/requeue", headers=_auth(admin_token))
        assert resp.status_code == 404
        assert resp.json() == {"error": "NOT_FOUND", "message": "Some inputs don't make sense."}


# ===========================================================================
# Contributor read paths
# ===========================================================================
class TestContributorRoutes:
    @pytest.fixture
    def synced(self, db_engine, contributor_service, platform_client):
        seed_dao(db_engine)
        platform_client.fetch_all_contributors.return_value = [
            ContributorInfo(id="1", name="ada", avatar="", contributions=30),
            ContributorInfo(id="2", name="bob", avatar="", contributions=70),
        ]
        contributor_service.sync_contributors("dao-1")

    def test_list_contributors(self, client, synced):
        resp = client.get("/api/daos/dao-1/contributors", params={"page": 0, "size": 1})
        assert resp.status_code == 200
        body = resp.json()
        assert (body["pages"], body["total"]) == (2, 2)
        assert body["list"][0]["user_platform_name"] == "bob"

    def test_invalid_page_size(self, client):
        assert client.get("/api/daos/dao-1/contributors", params={"size": 0}).status_code == 422

    def test_top_contributors(self, client, synced):
        resp = client.get("/api/daos/dao-1/contributors/top")
        assert [c["snapshot_value"] for c in resp.json()] == [70.0, 30.0]

    def test_proof(self, client, synced):
        resp = client.get("/api/daos/dao-1/proof")
        assert resp.status_code == 200
        body = resp.json()
        assert [s["contributor"] for s in body] == ["2", "1"]
        assert [s["value"] for s in body] == [70.0, 30.0]
        assert [s["share"] for s in body] == pytest.approx([70.0, 30.0])

    def test_proof_unknown_dao(self, client):
        resp = client.get("/api/daos/missing/proof")
        assert resp.status_code == 404
        assert resp.json()["error"] == "NOT_FOUND"


# ===========================================================================
# Wallet binding and triggers
# ===========================================================================
class TestBindAndTriggers:
    def test_bind_requires_session(self, client):
        resp = client.post("/api/contributors/bind", json={"platform": "GITHUB", "access_token": "t"})
        assert resp.status_code == 401

    def test_bind_uses_wallet_from_token(self, client, wallet_token, platform_client):
        platform_client.fetch_user_info.return_value = PlatformUser(id="42", name="ada", avatar="")
        resp = client.post(
            "/api/contributors/bind",
            json={"platform": "GITHUB", "access_token": "user-token"},
            headers=_auth(wallet_token),
        )
        assert resp.status_code == 200
        assert resp.json() == {"user_address": WALLET, "updated": 0}
        platform_client.fetch_user_info.assert_called_once()

    def test_bind_rejected_platform_token(self, client, wallet_token, platform_client):
        platform_client.fetch_user_info.side_effect = LaunchpadError(ErrorCode.UNAUTHORIZED, "bad")
        resp = client.post(
            "/api/contributors/bind",
            json={"platform": "GITLAB", "access_token": "stale"},
            headers=_auth(wallet_token),
        )
        assert resp.status_code == 401
        assert resp.json()["message"] == "Please sign in again."

    def test_bind_unknown_platform(self, client, wallet_token):
        resp = client.post(
            "/api/contributors/bind",
            json={"platform": "BITBUCKET", "access_token": "t"},
            headers=_auth(wallet_token),
        )
        assert resp.status_code == 422

    def test_trigger_sync(self, client, admin_token, job_queue):
        resp = client.post("/api/daos/dao-1/sync", headers=_auth(admin_token))
        assert resp.status_code == 200
        job = job_queue.dequeue("contributor", "w1")
        assert job.id == resp.json()["job_id"]
        assert job.type == "contributor-init"

    def test_trigger_status_check(self, client, admin_token, job_queue):
        resp = client.post("/api/daos/dao-1/status-check", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert job_queue.dequeue("dao", "w1").type == "status-check"

    def test_rate_limited_sets_retry_after(self, client, admin_token, contributor_service, monkeypatch):
        def throttled(dao_id):
            raise LaunchpadError(ErrorCode.RATE_LIMITED, "busy", retry_after=42)

        monkeypatch.setattr(contributor_service, "emit_contributor_init", throttled)
        resp = client.post("/api/daos/dao-1/sync", headers=_auth(admin_token))
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "42"


# ===========================================================================
# DAO lifecycle (operator)
# ===========================================================================
class TestDaoLifecycleRoutes:
    def test_set_status_forward(self, client, admin_token, db_engine):
        seed_dao(db_engine)
        resp = client.post("/api/daos/dao-1/status", json={"status": "LAUNCHING"}, headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json() == {"dao_id": "dao-1", "status": "LAUNCHING"}

    def test_set_status_backwards_conflicts(self, client, admin_token, db_engine):
        seed_dao(db_engine)
        client.post("/api/daos/dao-1/status", json={"status": "LIVE"}, headers=_auth(admin_token))
        resp = client.post("/api/daos/dao-1/status", json={"status": "LAUNCHING"}, headers=_auth(admin_token))
        assert resp.status_code == 409
        assert resp.json()["error"] == "INVALID_STATE"

    def test_set_unknown_status(self, client, admin_token, db_engine):
        seed_dao(db_engine)
        resp = client.post("/api/daos/dao-1/status", json={"status": "MOON"}, headers=_auth(admin_token))
        assert resp.status_code == 400

    def test_launch_token_once(self, client, admin_token, db_engine):
        seed_token(db_engine)
        seed_token(db_engine, token_id=8, token_address="0x7777777777777777777777777777777777777777")
        seed_dao(db_engine)

        resp = client.post("/api/daos/dao-1/token", json={"token_id": 7}, headers=_auth(admin_token))
        assert resp.json() == {"dao_id": "dao-1", "token_id": 7, "assigned": True}
        resp = client.post("/api/daos/dao-1/token", json={"token_id": 7}, headers=_auth(admin_token))
        assert resp.json()["assigned"] is False
        resp = client.post("/api/daos/dao-1/token", json={"token_id": 8}, headers=_auth(admin_token))
        assert resp.status_code == 409

    def test_launch_unknown_dao(self, client, admin_token):
        resp = client.post("/api/daos/missing/token", json={"token_id": 7}, headers=_auth(admin_token))
        assert resp.status_code == 404


# ===========================================================================
# Repository preview & content validation
# ===========================================================================
class TestRepoAndContentRoutes:
    def test_repo_info(self, client, platform_client):
        platform_client.fetch_repo_info.return_value = RepoInfo(name="rocket", full_name="acme/rocket", stars=3)
        resp = client.get("/api/repos/info", params={"url": "https://github.com/acme/rocket"})
        assert resp.status_code == 200
        assert resp.json()["full_name"] == "acme/rocket"
        assert resp.json()["stars"] == 3

    def test_repo_info_unsupported_url(self, client, platform_client):
        resp = client.get("/api/repos/info", params={"url": "https://bitbucket.org/acme/rocket"})
        assert resp.status_code == 400
        platform_client.fetch_repo_info.assert_not_called()

    def test_content_requires_session(self, client):
        assert client.post("/api/content/validate", json={}).status_code == 401

    def test_valid_content_is_normalized(self, client, wallet_token):
        resp = client.post(
            "/api/content/validate",
            json={
                "content": [{"type": "INFORMATION", "title": "About", "data": {"information": "Rockets."}}],
                "links": [{"type": "x", "value": "https://x.com/acme"}],
            },
            headers=_auth(wallet_token),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["content"][0]["type"] == "INFORMATION"
        assert body["content"][0]["sort"] == 0
        assert body["links"] == [{"type": "x", "value": "https://x.com/acme"}]

    def test_unknown_content_kind_is_bad_params(self, client, wallet_token):
        resp = client.post(
            "/api/content/validate",
            json={"content": [{"type": "ARBITRARY", "title": "x", "data": {}}]},
            headers=_auth(wallet_token),
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "BAD_PARAMS", "message": "Some inputs don't make sense."}
