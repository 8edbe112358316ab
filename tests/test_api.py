"""HTTP contract tests through Flask's test client."""
import pytest

from printproxy import create_app


@pytest.fixture()
def client(services):
    app = create_app("testing", services=services)
    return app.test_client()


def test_root_redirects_to_health(client):
    response = client.get("/")
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/api/health")


def test_health(client):
    client.get("/api/printers")
    data = client.get("/api/health").get_json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"
    assert data["printersAvailable"] == 2
    assert data["jobs"] == {"processed": 0, "failed": 0, "timedOut": 0}


def test_list_printers(client):
    data = client.get("/api/printers").get_json()
    assert data["count"] == 3
    assert [p["id"] for p in data["printers"]] == [
        "lan_192_168_1_50_9100", "usb_0FE6_811E", "lan_192_168_1_51_9100"]
    assert data["printers"][0]["status"] == "online"


def test_refresh_printers(client, services):
    client.get("/api/printers")
    before = services.registry.snapshot
    data = client.post("/api/printers/refresh").get_json()
    assert data["count"] == 3
    assert services.registry.snapshot is not before


def test_print(client, transports):
    response = client.post("/api/print", json={
        "printerIdentifier": "Kitchen",
        "content": "Hello",
        "options": {"alignment": "center", "cutPaper": False},
    })
    assert response.status_code == 200
    data = response.get_json()
    assert data["success"] is True
    assert data["printerUsed"] == "Kitchen"
    assert transports["network"].sent[0][1].endswith(b"Hello\n")


def test_print_unknown_printer(client):
    data = client.post("/api/print", json={"printerIdentifier": "nonexistent", "content": "x"}).get_json()
    assert data == {
        "success": False,
        "message": "Printer not found: nonexistent",
        "printerUsed": None,
        "timestamp": data["timestamp"],
    }


def test_print_rejects_bad_body(client):
    response = client.post("/api/print", data="not json", content_type="text/plain")
    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid request body"


def test_print_rejects_bad_options(client):
    response = client.post("/api/print", json={"content": "x", "options": "bold"})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid print options"


def test_print_test_page_by_query(client, transports):
    data = client.post("/api/print/test?printerId=xp-58").get_json()
    assert data["success"] is True
    assert data["printerUsed"] == "XP-58 (USB Direct)"
    assert transports["usb"].sent[0][0] == "0FE6:811E"


def test_printer_test_route(client, transports):
    data = client.post("/api/printers/lan_192_168_1_50_9100/test").get_json()
    assert data["success"] is True
    assert transports["network"].sent


def test_unexpected_error_is_500(client, services, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(services.printer_service, "print", explode)
    response = client.post("/api/print", json={"content": "x"})
    assert response.status_code == 500
    assert response.get_json()["error"] == "kaboom"


@pytest.mark.parametrize("options", [
    {"fontSize": 12},
    {"alignment": ["center"]},
    {"encoding": 866},
    {"cutPaper": "false"},
    {"bold": 1},
])
def test_print_rejects_mistyped_options(client, transports, options):
    response = client.post("/api/print", json={"content": "Hi", "options": options})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid print options"
    assert transports["network"].sent == []


@pytest.mark.parametrize("path", ["/api/print", "/api/print/test"])
def test_rejects_non_string_printer_identifier(client, transports, path):
    response = client.post(path, json={"content": "Hi", "printerIdentifier": 123})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid printer identifier"
    assert transports["network"].sent == []


def test_print_by_bare_ip(client, transports):
    data = client.post("/api/print", json={"content": "Hi", "printerIdentifier": "192.168.1.50"}).get_json()
    assert data["success"] is True
    assert data["printerUsed"] == "Kitchen"


def test_refresh_runs_discovery_once_when_it_fails(client, services, monkeypatch):
    calls = []

    def failing_discover():
        calls.append(1)
        raise RuntimeError("spooler crashed")

    monkeypatch.setattr(services.registry, "_discover", failing_discover)
    data = client.post("/api/printers/refresh").get_json()
    assert data["count"] == 0
    assert len(calls) == 1
