"""
Integration tests for the Checkbook API
Tests end-to-end workflows using FastAPI TestClient
"""

import inspect

import pytest
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from checkbook_core.api import app
from checkbook_core.api.auth import CheckSystem, get_check_system
from checkbook_core.config import CheckbookConfig
from checkbook_core.storage import InMemoryStorage


@pytest.fixture
def system():
    return CheckSystem(storage=InMemoryStorage(), config=CheckbookConfig(seed_default_regions=True))


@pytest.fixture
def client(system):
    """Test client backed by an in-memory checkbook system"""
    app.dependency_overrides[get_check_system] = lambda: system
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_bank(client, code="BNA", name="Banque Nationale"):
    r = client.post("/banks", json={"code": code, "name": name}, headers={"X-User-Id": "admin"})
    assert r.status_code == 201
    return r.json()


def create_checkbook(client, bank_id, serie="AA", start=0, end=9):
    r = client.post("/checkbooks", json={
        "bank_id": bank_id,
        "serie": serie,
        "start_number": start,
        "end_number": end,
        "agency_name": "Didouche",
        "agency_code": "016"
    })
    assert r.status_code == 201
    return r.json()


def print_check(client, reference, checkbook_id=None, amount="100.00", city="Alger", user="u1"):
    return client.post("/checks", json={
        "reference": reference,
        "checkbook_id": checkbook_id,
        "amount": amount,
        "payee": "Sonelgaz",
        "city": city,
        "check_date": "2024-05-02"
    }, headers={"X-User-Id": user})


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["name"] == "Checkbook API"
        assert "checks" in data["endpoints"]


class TestBankFlow:
    """Bank management"""

    def test_create_and_get_bank(self, client):
        bank = create_bank(client)

        r = client.get(f"/banks/{bank['id']}")
        assert r.status_code == 200
        assert r.json()["code"] == "BNA"
        assert [b["code"] for b in client.get("/banks").json()["banks"]] == ["BNA"]

    def test_duplicate_code(self, client):
        create_bank(client)
        r = client.post("/banks", json={"code": "BNA", "name": "Other"})
        assert r.status_code == 409
        assert r.json()["detail"]["error"] == "conflict"

    def test_update_bank(self, client):
        bank = create_bank(client)
        r = client.put(f"/banks/{bank['id']}", json={"name": "BNA Algerie"})
        assert r.status_code == 200
        assert r.json()["name"] == "BNA Algerie"

    def test_missing_bank(self, client):
        assert client.get("/banks/missing").status_code == 404
        assert client.delete("/banks/missing").status_code == 404

    def test_delete_bank_with_used_checkbook(self, client):
        bank = create_bank(client)
        checkbook = create_checkbook(client, bank["id"])
        assert print_check(client, "AA0000000", checkbook["id"]).status_code == 201

        assert client.delete(f"/banks/{bank['id']}").status_code == 409

        r = client.delete(f"/banks/{bank['id']}", params={"force": True})
        assert r.status_code == 200
        assert client.get(f"/checkbooks/{checkbook['id']}").status_code == 404
        assert client.get("/checks/AA0000000").json()["checkbook_id"] is None


class TestCheckbookFlow:
    """Checkbook registration and inspection"""

    def test_create_checkbook(self, client):
        bank = create_bank(client)
        checkbook = create_checkbook(client, bank["id"], "ab", 100, 149)

        assert checkbook["serie"] == "AB"
        assert checkbook["capacity"] == 50
        assert checkbook["issued_count"] == 0
        assert checkbook["remaining"] == 50

    def test_invalid_range(self, client):
        bank = create_bank(client)
        r = client.post("/checkbooks", json={
            "bank_id": bank["id"], "serie": "AA", "start_number": 10, "end_number": 5
        })
        assert r.status_code == 422

    def test_duplicate_range(self, client):
        bank = create_bank(client)
        create_checkbook(client, bank["id"])
        r = client.post("/checkbooks", json={
            "bank_id": bank["id"], "serie": "AA", "start_number": 0, "end_number": 20
        })
        assert r.status_code == 409

    def test_unknown_bank(self, client):
        r = client.post("/checkbooks", json={
            "bank_id": "missing", "serie": "AA", "start_number": 0, "end_number": 9
        })
        assert r.status_code == 404

    def test_list_by_bank(self, client):
        bna = create_bank(client)
        cpa = create_bank(client, "CPA", "Credit Populaire")
        create_checkbook(client, bna["id"], "AA")
        create_checkbook(client, cpa["id"], "BB")

        r = client.get("/checkbooks", params={"bank_id": cpa["id"]})
        assert [c["serie"] for c in r.json()["checkbooks"]] == ["BB"]
        assert len(client.get("/checkbooks").json()["checkbooks"]) == 2

    def test_next_reference_and_counter(self, client):
        bank = create_bank(client)
        checkbook = create_checkbook(client, bank["id"])

        r = client.get(f"/checkbooks/{checkbook['id']}/next-reference")
        assert r.json() == {"checkbook_id": checkbook["id"], "reference": "AA0000000"}

        print_check(client, "AA0000000", checkbook["id"])
        assert client.get(f"/checkbooks/{checkbook['id']}/next-reference").json()["reference"] == "AA0000001"

        counter = client.get(f"/checkbooks/{checkbook['id']}/counter").json()
        assert counter["issued_count"] == 1
        assert counter["referenced_checks"] == 1
        assert counter["drift"] == 0

    def test_used_checkbook_is_frozen(self, client):
        bank = create_bank(client)
        checkbook = create_checkbook(client, bank["id"])

        r = client.put(f"/checkbooks/{checkbook['id']}", json={"agency_name": "Hydra"})
        assert r.status_code == 200
        assert r.json()["agency_name"] == "Hydra"

        print_check(client, "AA0000000", checkbook["id"])

        assert client.put(f"/checkbooks/{checkbook['id']}", json={"agency_name": "X"}).status_code == 409
        assert client.delete(f"/checkbooks/{checkbook['id']}").status_code == 409

    def test_delete_unused_checkbook(self, client):
        bank = create_bank(client)
        checkbook = create_checkbook(client, bank["id"])

        assert client.delete(f"/checkbooks/{checkbook['id']}").status_code == 200
        assert client.get(f"/checkbooks/{checkbook['id']}").status_code == 404


class TestCheckFlow:
    """Issuing checks and changing their status"""

    def setup_checkbook(self, client, end=9):
        bank = create_bank(client)
        return create_checkbook(client, bank["id"], end=end)

    def test_print_check(self, client):
        checkbook = self.setup_checkbook(client)

        r = print_check(client, "aa0000004", checkbook["id"], amount="1500.50")
        assert r.status_code == 201
        data = r.json()
        assert data["reference"] == "AA0000004"
        assert data["amount"] == "1500.50"
        assert data["status"] == "issued"
        assert data["user_id"] == "u1"
        assert data["check_date"] == "2024-05-02"

        assert client.get(f"/checkbooks/{checkbook['id']}").json()["issued_count"] == 1
        assert client.get("/checks/AA0000004").status_code == 200

    def test_print_errors(self, client):
        checkbook = self.setup_checkbook(client, end=0)

        assert print_check(client, "AA0000009", checkbook["id"]).status_code == 422
        assert print_check(client, "AA0000000", checkbook["id"], amount="-1").status_code == 422
        assert print_check(client, "AA0000000", "missing").status_code == 404
        assert print_check(client, "AA0000000", checkbook["id"]).status_code == 201
        assert print_check(client, "AA0000000").status_code == 409

        r = print_check(client, "AA0000000", checkbook["id"])
        assert r.status_code == 409
        assert r.json()["detail"]["error"] == "capacity_exhausted"

    def test_check_reference(self, client):
        print_check(client, "LOOSE-7")

        r = client.get("/checks/check-reference", params={"reference": " loose-7 "})
        assert r.json() == {"reference": "LOOSE-7", "exists": True}
        assert client.get("/checks/check-reference", params={"reference": "X"}).json()["exists"] is False

    def test_status_transitions(self, client):
        checkbook = self.setup_checkbook(client)
        print_check(client, "AA0000000", checkbook["id"])

        r = client.patch("/checks/AA0000000/status", json={"status": "canceled"})
        assert r.status_code == 422

        r = client.patch("/checks/AA0000000/status", json={"status": "canceled", "reason": "printer jam"},
                         headers={"X-User-Id": "supervisor"})
        assert r.status_code == 200
        assert r.json()["status"] == "canceled"
        assert r.json()["reason"] == "printer jam"

        assert client.patch("/checks/AA0000000/status", json={"status": "issued"}).status_code == 409
        assert client.patch("/checks/AA0000000/status", json={"status": "rejected"}).status_code == 409
        assert client.patch("/checks/AA0000000/status", json={"status": "lost"}).status_code == 422
        assert client.patch("/checks/ZZ0000000/status", json={"status": "rejected"}).status_code == 404

    def test_list_checks(self, client):
        checkbook = self.setup_checkbook(client)
        print_check(client, "AA0000000", checkbook["id"], user="u1")
        print_check(client, "AA0000001", checkbook["id"], user="u2")

        assert len(client.get("/checks").json()["checks"]) == 2
        r = client.get("/checks", params={"user_id": "u2"})
        assert [c["reference"] for c in r.json()["checks"]] == ["AA0000001"]


class TestRegionalAccess:
    """Region-scoped listing and statistics"""

    def test_default_regions_seeded(self, client):
        names = [r["name"] for r in client.get("/regions").json()["regions"]]
        assert names == ["est", "nord", "ouest", "sud"]

    def test_region_crud(self, client):
        r = client.post("/regions", json={"name": "Centre", "cities": ["Medea"]})
        assert r.status_code == 201
        region_id = r.json()["id"]

        assert client.post("/regions", json={"name": "centre"}).status_code == 409

        r = client.put(f"/regions/{region_id}", json={"cities": ["Medea", "Bouira"]})
        assert r.json()["cities"] == ["Medea", "Bouira"]

        assert client.delete(f"/regions/{region_id}").status_code == 200
        assert client.get(f"/regions/{region_id}").status_code == 404

    def test_regional_listing_and_stats(self, client):
        print_check(client, "R-1", amount="100", city="Alger")
        print_check(client, "R-2", amount="50", city="Oran")
        print_check(client, "R-3", amount="25", city="Blida")
        client.patch("/checks/R-3/status", json={"status": "rejected"})

        r = client.get("/checks", headers={"X-User-Region": "Nord"})
        assert sorted(c["reference"] for c in r.json()["checks"]) == ["R-1", "R-3"]

        stats = client.get("/checks/stats", headers={"X-User-Region": "nord"}).json()
        assert stats["region"] == "nord"
        assert stats["total_amount"] == "125"
        assert stats["total_count"] == 2
        assert stats["monthly_count"] == 2

    def test_unknown_region_forbidden(self, client):
        assert client.get("/checks", headers={"X-User-Region": "atlantis"}).status_code == 403

    def test_global_stats(self, client):
        bank = create_bank(client)
        checkbook = create_checkbook(client, bank["id"])
        print_check(client, "AA0000000", checkbook["id"], amount="100.25")
        print_check(client, "LOOSE-1", amount="10", user="u2")

        stats = client.get("/checks/stats").json()
        assert stats["total_amount"] == "110.25"
        assert stats["total_checks"] == 2
        assert stats["checks_by_bank"] == {"Banque Nationale": 1, "Unknown": 1}
        assert stats["amount_by_user"] == {"u1": "100.25", "u2": "10"}


class TestSupplierFlow:
    """Supplier directory"""

    def test_supplier_crud(self, client):
        r = client.post("/suppliers", json={
            "name": " Sonelgaz ", "company_type": "spa", "email": "contact@sonelgaz.dz"
        }, headers={"X-User-Id": "admin"})
        assert r.status_code == 201
        supplier = r.json()
        assert supplier["name"] == "Sonelgaz"
        assert supplier["phone"] is None

        assert client.post("/suppliers", json={"name": "SONELGAZ"}).status_code == 409
        assert client.post("/suppliers", json={"name": "  "}).status_code == 422

        r = client.get("/suppliers/name-exists", params={"name": "sonelgaz"})
        assert r.json()["exists"] is True
        r = client.get("/suppliers/name-exists", params={"name": "sonelgaz", "except_id": supplier["id"]})
        assert r.json()["exists"] is False

        r = client.put(f"/suppliers/{supplier['id']}", json={"phone": "021 00 00 00"})
        assert r.json()["phone"] == "021 00 00 00"
        assert r.json()["email"] == "contact@sonelgaz.dz"

        assert client.delete(f"/suppliers/{supplier['id']}").status_code == 200
        assert client.get(f"/suppliers/{supplier['id']}").status_code == 404
        assert client.delete(f"/suppliers/{supplier['id']}").status_code == 404

    def test_rename_updates_payee_of_checks(self, client):
        supplier = client.post("/suppliers", json={"name": "Sonelgaz"}).json()
        print_check(client, "P-1")

        r = client.put(f"/suppliers/{supplier['id']}", json={"name": "Sonelgaz Distribution"},
                       headers={"X-User-Id": "admin"})
        assert r.status_code == 200
        assert client.get("/checks/P-1").json()["payee"] == "Sonelgaz Distribution"

        events = client.get("/audit/events", params={
            "entity_type": "supplier", "entity_id": supplier["id"]
        }).json()["events"]
        assert events[-1]["action"] == "UPDATE_SUPPLIER"
        assert events[-1]["details"]["checks_renamed"] == 1

    def test_list_ordered_by_name(self, client):
        for name in ("Naftal", "air algerie", "Cosider"):
            client.post("/suppliers", json={"name": name})

        names = [s["name"] for s in client.get("/suppliers").json()["suppliers"]]
        assert names == ["air algerie", "Cosider", "Naftal"]


class TestAuditEndpoints:
    """Audit trail exposure"""

    def test_events_and_integrity(self, client):
        bank = create_bank(client)
        client.post("/checks/log-export", json={"format": "csv", "record_count": 3},
                    headers={"X-User-Id": "u1"})

        r = client.get("/audit/events", params={"entity_type": "bank", "entity_id": bank["id"]})
        events = r.json()["events"]
        assert [e["action"] for e in events] == ["CREATE_BANK"]
        assert events[0]["actor_id"] == "admin"

        r = client.get("/audit/events", params={"action": "export_history"})
        assert r.json()["events"][0]["details"]["record_count"] == 3

        assert client.get("/audit/events", params={"action": "nope"}).status_code == 422
        assert client.get("/audit/integrity").json()["valid"] is True

    def test_log_export_validation(self, client):
        assert client.post("/checks/log-export", json={"format": "csv", "record_count": -1}).status_code == 422
        assert client.post("/checks/log-export", json={"format": " ", "record_count": 1}).status_code == 422

    def test_audit_disabled(self):
        system = CheckSystem(
            storage=InMemoryStorage(),
            config=CheckbookConfig(enable_audit_logging=False, seed_default_regions=False)
        )
        app.dependency_overrides[get_check_system] = lambda: system
        try:
            client = TestClient(app)
            assert client.get("/audit/events").status_code == 404
            assert client.get("/audit/integrity").status_code == 404
            assert client.get("/regions").json()["regions"] == []
        finally:
            app.dependency_overrides.clear()


class TestRouteHandlers:
    """Handlers doing blocking storage work run in the threadpool"""

    def test_storage_routes_are_sync(self):
        stateless = {"/health", "/"}
        for route in app.routes:
            if isinstance(route, APIRoute) and route.path not in stateless:
                assert not inspect.iscoroutinefunction(route.endpoint), route.path
