"""API integration tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from localdex.app import app


@pytest.fixture
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def notes_dir(tmp_path: Path) -> Path:
    root = tmp_path / "notes"
    root.mkdir()
    (root / "billing.md").write_text("# Invoices\n\nInvoice 4471 is due in March.")
    (root / "garden.txt").write_text("Plant tomatoes after the last frost.")
    return root


def _create_source(client: TestClient, root: Path) -> dict:
    resp = client.post("/sources", json={"type": "filesystem", "name": "Notes", "config": {"path": str(root)}})
    assert resp.status_code == 201
    return resp.json()


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "chunks": 0}


def test_connectors(client: TestClient) -> None:
    resp = client.get("/connectors")
    assert resp.status_code == 200
    (filesystem,) = resp.json()
    assert filesystem["id"] == "filesystem"
    assert filesystem["auth"] == "none"
    assert {"key": "path", "label": "Root directory", "required": True} in filesystem["config_keys"]


def test_sync_and_search_flow(client: TestClient, notes_dir: Path) -> None:
    source = _create_source(client, notes_dir)

    sync_resp = client.post(f"/sources/{source['id']}/sync")
    assert sync_resp.status_code == 200
    assert sync_resp.json()["processed"] == 2
    assert sync_resp.json()["status"] == "success"

    status = client.get(f"/sources/{source['id']}/sync").json()
    assert status["running"] is False
    assert status["last_status"] == "success"

    search_resp = client.post("/search", json={"query": "invoice", "mode": "text_only"})
    assert search_resp.status_code == 200
    payload = search_resp.json()
    assert payload["mode"] == "text_only"
    assert [hit["uri"] for hit in payload["results"]] == [(notes_dir / "billing.md").as_posix()]
    assert payload["results"][0]["title"] == "billing"
    assert payload["results"][0]["source_name"] == "Notes"

    hybrid = client.post("/search", json={"query": "tomatoes"}).json()
    assert hybrid["mode"] == "hybrid"
    assert hybrid["results"][0]["uri"].endswith("garden.txt")

    second = client.post(f"/sources/{source['id']}/sync").json()
    assert (second["processed"], second["status"]) == (0, "success")


def test_exclusions_flow(client: TestClient, notes_dir: Path) -> None:
    source = _create_source(client, notes_dir)
    client.post(f"/sources/{source['id']}/sync")
    uri = (notes_dir / "billing.md").as_posix()

    resp = client.post(f"/sources/{source['id']}/exclusions", json={"uri": uri, "reason": "private"})
    assert resp.status_code == 201
    exclusion = resp.json()
    assert exclusion["document_id"].startswith("doc_")

    assert client.post("/search", json={"query": "invoice", "mode": "text_only"}).json()["results"] == []
    (notes_dir / "billing.md").write_text("# Invoices\n\nInvoice 4471 is due in March. Paid early.")
    assert client.post(f"/sources/{source['id']}/sync").json()["excluded"] == 1
    listed = client.get(f"/sources/{source['id']}/exclusions").json()
    assert [item["id"] for item in listed] == [exclusion["id"]]

    assert client.delete(f"/exclusions/{exclusion['id']}").status_code == 200
    (notes_dir / "billing.md").write_text("# Invoices\n\nInvoice 4471 is due in March. Paid early, thanks.")
    client.post(f"/sources/{source['id']}/sync")
    results = client.post("/search", json={"query": "invoice", "mode": "text_only"}).json()["results"]
    assert [hit["uri"] for hit in results] == [uri]


def test_update_and_delete_source(client: TestClient, notes_dir: Path) -> None:
    source = _create_source(client, notes_dir)
    client.post(f"/sources/{source['id']}/sync")

    renamed = client.patch(f"/sources/{source['id']}", json={"name": "Personal"})
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Personal"
    assert [item["name"] for item in client.get("/sources").json()] == ["Personal"]

    assert client.delete(f"/sources/{source['id']}").status_code == 200
    assert client.get(f"/sources/{source['id']}").status_code == 404
    assert client.get("/health").json()["chunks"] == 0


def test_error_mapping(client: TestClient) -> None:
    missing = client.get("/sources/src_missing")
    assert missing.status_code == 404
    assert missing.json()["error"] == "NotFoundError"

    no_path = client.post("/sources", json={"type": "filesystem", "name": "Docs", "config": {}})
    assert no_path.status_code == 400
    assert no_path.json()["error"] == "InvalidInputError"

    unknown = client.post("/sources", json={"type": "carrier-pigeon", "name": "Birds"})
    assert unknown.status_code == 400
    assert unknown.json()["error"] == "UnsupportedTypeError"

    assert client.post("/search", json={"query": "x", "mode": "semantic"}).status_code == 422
    assert client.post("/search", json={"query": "x", "limit": 0}).status_code == 422
    assert client.post("/sources/src_missing/sync").status_code == 404


def test_scheduler_routes(client: TestClient) -> None:
    tasks = client.get("/scheduler/tasks").json()
    assert [task["id"] for task in tasks] == ["document-sync", "oauth-refresh"]
    assert {task["id"]: task["interval_seconds"] for task in tasks} == {
        "document-sync": 3600.0,
        "oauth-refresh": 2700.0,
    }

    run = client.post("/scheduler/tasks/oauth-refresh/run")
    assert run.status_code == 202
    assert run.json()["status"] in {"started", "already_running"}

    detail = client.get("/scheduler/tasks/oauth-refresh", params={"limit": 5})
    assert detail.status_code == 200
    assert detail.json()["name"] == "OAuth Token Refresh"
    assert client.get("/scheduler/tasks/nope").status_code == 404


def test_metrics(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "ldx_requests_total" in resp.text
