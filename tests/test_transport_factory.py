from asserts_core.constants import USER_AGENT
from asserts_core.transport import LocalAdapter, TransportResponse, transport_factory
from asserts_core.transport.transport_http import HTTPAdapter


def test_local_adapter_routes_to_handler(caplog):
    seen = []

    def handler(method, path, headers, body):
        seen.append((method, path, headers, body))
        return TransportResponse(200, b'{"ok": true}', {"Content-Type": "application/json"})

    bus = LocalAdapter(handler)
    res = bus.post("/api/ping", b"hello")

    assert res.status == 200
    assert res.json() == {"ok": True}
    assert res.content_type == "application/json"
    method, path, headers, body = seen[0]
    assert (method, path, body) == ("POST", "/api/ping", b"hello")
    assert headers["User-Agent"] == USER_AGENT
    assert "LOCAL POST" in caplog.text


def test_local_adapter_without_handler():
    assert LocalAdapter().head("/").status == 501


def test_transport_factory_modes(monkeypatch):
    monkeypatch.setenv("ASSERTS_TRANSPORT", "local")
    assert isinstance(transport_factory(), LocalAdapter)

    monkeypatch.setenv("ASSERTS_TRANSPORT", "http")
    monkeypatch.setenv("ASSERTS_DEVICE_SERVICE_URL", "http://device-service.example/")
    t = transport_factory()
    assert isinstance(t, HTTPAdapter)
    assert t.base_url == "http://device-service.example"

    monkeypatch.delenv("ASSERTS_TRANSPORT", raising=False)
    assert isinstance(transport_factory("http://other.example"), HTTPAdapter)
