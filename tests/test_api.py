#tests\test_api.py

"""Test the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from conftest import service
from fleet_engine.api.container import get_fleet_container
from fleet_engine.api.main import app


@pytest.fixture
def client(container):
    app.dependency_overrides[get_fleet_container] = lambda: container
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestOperations:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_plan(self, client, write_manifest):
        write_manifest(service("shop", 8001))

        response = client.get("/plan")

        assert response.status_code == 200
        assert response.json()["services"]["shop"]["backend_port"] == 8001

    def test_plan_conflict(self, client, write_manifest):
        write_manifest(service("a", 8001), service("b", 8001))

        response = client.get("/plan")

        assert response.status_code == 409
        assert response.json()["detail"]["names"] == ["a", "b"]

    def test_plan_invalid(self, client, write_manifest):
        write_manifest(service("a", 8001), service("a", 8002))

        response = client.get("/plan")

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "services[1].name"

    def test_deploy_subset(self, client, write_manifest, fetcher):
        write_manifest(service("a", 8001), service("b", 8002))

        response = client.post("/deploy", json={"services": ["a"]})

        body = response.json()
        assert response.status_code == 200
        assert list(body["services"]) == ["a"]
        assert body["exit_code"] == 0
        assert fetcher.calls == ["a"]

    def test_route(self, client, write_manifest):
        write_manifest(service("shop", 8001))

        body = client.post("/route").json()

        assert body["routing"]["routes"][0]["hostname"] == "api.shop.example.test"

    def test_lock_held(self, client, container, write_manifest):
        write_manifest(service("shop", 8001))

        with container.lock.hold("other"):
            response = client.post("/deploy", json={})

        assert response.status_code == 423


class TestBackups:

    def test_create_list_restore(self, client, write_manifest):
        write_manifest(service("shop", 8001))

        created = client.post("/backups")
        assert created.status_code == 201
        snapshot_id = created.json()["snapshot_id"]

        assert [s["snapshot_id"] for s in client.get("/backups").json()] == [snapshot_id]

        restored = client.post(f"/backups/{snapshot_id}/restore", json={"confirmation_token": snapshot_id})
        assert restored.status_code == 200
        assert restored.json()["not_restored"] == []

    def test_restore_unknown(self, client, write_manifest):
        write_manifest(service("shop", 8001))

        response = client.post("/backups/20990101T000000Z/restore", json={"confirmation_token": "20990101T000000Z"})

        assert response.status_code == 404
