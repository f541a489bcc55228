import pytest
from fastapi.testclient import TestClient

import main
from core.inventory import InventoryStore
from tests.fakes import FakePveCli, PVEAM_LIST_LOCAL, PVESM_STATUS

client = TestClient(main.app)


@pytest.fixture
def fake_pve(mocker, tmp_path):
    fake = FakePveCli()
    fake.on("pvesm", "status", stdout=PVESM_STATUS)
    fake.on("pveam", "list", "local", stdout=PVEAM_LIST_LOCAL)
    mocker.patch.object(main, "pve", fake)
    store = InventoryStore(
        fake, main.console, json_path=tmp_path / "inventory.json", csv_path=tmp_path / "inventory.csv"
    )
    mocker.patch.object(main, "inventory", store)
    return fake


def test_root():
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["installers"] == ["docker", "metabase", "supabase", "vault"]


class TestInstances:
    def test_create(self, fake_pve):
        response = client.post("/instances", json={"kind": "lxc", "options": {"instance_id": 100, "cores": 2}})

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "created"
        assert body["instance_id"] == 100
        assert body["ip_address"] == "unknown"
        assert body["password"]

    def test_missing_id(self, fake_pve):
        response = client.post("/instances", json={"kind": "vm"})

        assert response.status_code == 400
        assert "VMID" in response.json()["detail"]
        assert fake_pve.calls == []

    def test_existing_instance_conflicts(self, fake_pve):
        fake_pve.instances[("pct", 100)] = "running"

        response = client.post("/instances", json={"kind": "lxc", "options": {"instance_id": 100}})

        assert response.status_code == 409
        assert fake_pve.commands("pct", "create") == []

    def test_hypervisor_failure(self, fake_pve):
        fake_pve.on("pct", "create", returncode=255, stderr="storage full")

        response = client.post("/instances", json={"kind": "lxc", "options": {"instance_id": 100}})

        assert response.status_code == 500
        assert "storage full" in response.json()["detail"]

    def test_status(self, fake_pve):
        fake_pve.instances[("qm", 200)] = "running"

        assert client.get("/instances/vm/200/status").json() == {
            "kind": "vm",
            "instance_id": 200,
            "status": "running",
        }
        assert client.get("/instances/vm/201/status").status_code == 404
        assert client.get("/instances/docker/200/status").status_code == 422


class TestInventory:
    def test_scan_then_query(self, fake_pve):
        fake_pve.instances[("pct", 100)] = "stopped"
        fake_pve.on("pct", "list", stdout="VMID Status Lock Name\n100 stopped  vault\n")
        fake_pve.on("pct", "config", "100", stdout="hostname: vault\nnet0: name=eth0,ip=10.0.0.3/24\n")

        scan = client.post("/inventory/scan")
        listing = client.get("/inventory")
        found = client.get("/inventory/find", params={"term": "10.0.0"})

        assert scan.status_code == 200
        assert scan.json()["summary"] == {"running": 0, "stopped": 1}
        assert listing.json()["containers"][0]["ip_address"] == "10.0.0.3"
        assert [c["ctid"] for c in found.json()["containers"]] == [100]

    def test_scan_with_nothing(self, fake_pve):
        assert client.post("/inventory/scan").status_code == 400

    def test_missing_snapshot(self, fake_pve):
        assert client.get("/inventory").status_code == 404


def test_metrics_endpoint():
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "pve_provisioner_requests_total" in response.text
