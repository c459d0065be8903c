"""Unit tests for the rule management API — redirector/api.py.

Each test runs the full lifespan over a MemoryStore through Starlette's
TestClient; editor errors map to 400/404, every body is JSON.
"""

from __future__ import annotations

from typing import Iterator

import pytest
from starlette.testclient import TestClient

from redirector.config import Config, StorageConfig
from redirector.main import create_app


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    monkeypatch.setattr(
        "redirector.main.load_config",
        lambda: Config(storage=StorageConfig(backend="memory")),
    )
    with TestClient(create_app()) as test_client:
        yield test_client


def _add(client: TestClient, source: str = "old.site.com/*", target: str = "https://new.site.com") -> None:
    response = client.post("/rules", json={"source": source, "target": target})
    assert response.status_code == 201, response.text


# ─── Rules ────────────────────────────────────────────────────────────────────


class TestRulesEndpoints:
    def test_empty_config(self, client: TestClient) -> None:
        assert client.get("/config").json() == {
            "rules": [],
            "allowlist": [],
            "global_enabled": True,
        }

    def test_add_rule(self, client: TestClient) -> None:
        response = client.post(
            "/rules", json={"source": "old.site.com/*", "target": "https://new.site.com"}
        )
        assert response.status_code == 201
        assert response.json() == {
            "rule": {"source": "old.site.com/*", "target": "https://new.site.com", "enabled": True}
        }
        assert client.get("/config").json()["rules"] == [response.json()["rule"]]

    def test_add_rule_validation_error_is_400(self, client: TestClient) -> None:
        response = client.post("/rules", json={"source": "a.com", "target": "not-a-url"})
        assert response.status_code == 400
        assert response.json() == {"error": "Target must be a valid URL"}

    def test_duplicate_rule_is_400(self, client: TestClient) -> None:
        _add(client)
        response = client.post(
            "/rules", json={"source": "https://old.site.com", "target": "https://x.com"}
        )
        assert response.status_code == 400

    def test_missing_field_is_422(self, client: TestClient) -> None:
        assert client.post("/rules", json={"source": "a.com"}).status_code == 422

    def test_toggle_rule(self, client: TestClient) -> None:
        _add(client)
        response = client.post("/rules/0/toggle")
        assert response.status_code == 200
        assert response.json()["rule"]["enabled"] is False

    def test_delete_rule(self, client: TestClient) -> None:
        _add(client)
        response = client.delete("/rules/0")
        assert response.status_code == 200
        assert response.json()["removed"]["source"] == "old.site.com/*"
        assert client.get("/config").json()["rules"] == []

    def test_unknown_index_is_404(self, client: TestClient) -> None:
        assert client.post("/rules/3/toggle").status_code == 404
        assert client.delete("/rules/3").status_code == 404


# ─── Allowlist + switches ─────────────────────────────────────────────────────


class TestAllowlistEndpoints:
    def test_add_and_remove(self, client: TestClient) -> None:
        response = client.post("/allowlist", json={"pattern": "old.site.com/login"})
        assert response.status_code == 201
        assert client.get("/config").json()["allowlist"] == ["old.site.com/login"]

        response = client.request("DELETE", "/allowlist", json={"pattern": "old.site.com/login"})
        assert response.status_code == 200
        assert client.get("/config").json()["allowlist"] == []

    def test_invalid_pattern_is_400(self, client: TestClient) -> None:
        assert client.post("/allowlist", json={"pattern": "*"}).status_code == 400

    def test_remove_unknown_is_404(self, client: TestClient) -> None:
        response = client.request("DELETE", "/allowlist", json={"pattern": "a.com"})
        assert response.status_code == 404


class TestSwitchEndpoints:
    def test_toggle_pauses_and_installs_pause_rule(self, client: TestClient) -> None:
        _add(client)

        assert client.post("/toggle").json() == {"global_enabled": False}
        (pause,) = client.get("/installed").json()["rules"]
        assert pause["id"] == 999_999
        assert pause["action"] == {"type": "allow"}
        assert client.get("/config").json()["global_enabled"] is False

        assert client.post("/toggle").json() == {"global_enabled": True}
        rules = client.get("/installed").json()["rules"]
        assert [r["action"]["type"] for r in rules] == ["redirect"]

    def test_put_global(self, client: TestClient) -> None:
        assert client.put("/global", json={"enabled": False}).json() == {"global_enabled": False}
        assert client.get("/config").json()["global_enabled"] is False


# ─── Navigation ───────────────────────────────────────────────────────────────


class TestNavigationEndpoint:
    def test_matching_navigation_is_redirected(self, client: TestClient) -> None:
        _add(client)
        response = client.post("/navigation", json={"tab_id": 4, "url": "https://old.site.com/a"})
        assert response.json() == {"redirected_to": "https://new.site.com"}

    def test_allowlisted_navigation_is_not_redirected(self, client: TestClient) -> None:
        _add(client)
        client.post("/allowlist", json={"pattern": "old.site.com/login"})
        response = client.post(
            "/navigation", json={"tab_id": 4, "url": "https://old.site.com/login"}
        )
        assert response.json() == {"redirected_to": None}

    def test_event_without_url(self, client: TestClient) -> None:
        response = client.post("/navigation", json={"tab_id": 4})
        assert response.status_code == 200
        assert response.json() == {"redirected_to": None}

    def test_navigation_outside_a_tab_is_refused(self, client: TestClient) -> None:
        _add(client)
        response = client.post(
            "/navigation", json={"tab_id": -1, "url": "https://old.site.com/a"}
        )
        assert response.status_code == 200
        assert response.json() == {"redirected_to": None}
