from fastapi.testclient import TestClient


def test_fake_daemon_instance_lifecycle(daemon) -> None:
    client = TestClient(daemon.app)

    created = client.post(
        "/1.0/virtual-machines",
        json={"name": "vm-a", "config": {"limits.cpu": "2"}, "devices": {}},
    )
    assert created.status_code == 200
    assert created.json()["type"] == "async"
    assert created.json()["status_code"] == 100

    op_path = created.json()["operation"]
    op = client.get(op_path)
    assert op.json()["metadata"]["status_code"] == 200

    state = client.get("/1.0/virtual-machines/vm-a/state")
    assert state.json()["metadata"]["status"] == "Stopped"

    started = client.put("/1.0/virtual-machines/vm-a/state", json={"action": "start"})
    assert started.json()["metadata"]["description"] == "Starting instance"
    state = client.get("/1.0/virtual-machines/vm-a/state")
    assert state.json()["metadata"]["status_code"] == 103


def test_fake_daemon_errors_use_lxd_envelope(daemon) -> None:
    client = TestClient(daemon.app)

    missing = client.get("/1.0/instances/nope")
    assert missing.status_code == 404
    assert missing.json()["type"] == "error"
    assert missing.json()["error_code"] == 404

    daemon.add_instance("vm-a")
    duplicate = client.post("/1.0/virtual-machines", json={"name": "vm-a"})
    assert duplicate.status_code == 409

    bad_action = client.put(
        "/1.0/virtual-machines/vm-a/state", json={"action": "explode"}
    )
    assert bad_action.status_code == 400


def test_fake_daemon_serves_leases_and_health(daemon) -> None:
    client = TestClient(daemon.app)
    daemon.set_leases("mpbr0", [{"hwaddr": "52:54:00:aa:bb:cc", "address": "10.0.0.9"}])

    leases = client.get("/1.0/networks/mpbr0/leases")
    assert leases.json()["metadata"][0]["address"] == "10.0.0.9"
    assert client.get("/1.0/networks/other/leases").json()["metadata"] == []

    health = client.get("/healthz")
    assert health.json()["status"] == "ok"
    assert health.json()["instances"] == 0
