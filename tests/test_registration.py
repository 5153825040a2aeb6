import threading
import time

import pytest

from asserts_core.config import RegistrationConfig
from asserts_core.errors import (
    ConsistencyViolation, MissingPrerequisite, NotFound, RegistrationCancelled, RegistrationFailed,
)
from asserts_core.keymgr import MemoryKeypairManager
from asserts_core.registration import RegistrationClient, State
from asserts_core.transport import LocalAdapter, TransportTransientError
from asserts_core.transport.transport_http import HTTPAdapter

from device_service import (
    REQID_BAD_REQUEST, REQID_FAIL_ID_501, REQID_SERIAL_WITH_BAD_MODEL,
    MockDeviceService, expected_user_agent, serve_http,
)


@pytest.fixture
def keymgr():
    return MemoryKeypairManager()


@pytest.fixture
def device_key(keymgr):
    return keymgr.generate()


def _client(db, keymgr, device_key, transport, **cfg):
    cfg.setdefault("retry_interval", 0.01)
    cfg.setdefault("retry_max_interval", 0.05)
    config = RegistrationConfig(brand_id="acme", model="widget", device_key_id=device_key, **cfg)
    return RegistrationClient(config, transport, keymgr, db)


def test_register_after_pending(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand, pending_rounds=2)
    client = _client(db, keymgr, device_key, LocalAdapter(service))

    serial = client.run()

    assert client.state == State.DONE
    assert client.request_id == "REQ-1"
    assert serial.header("serial") == "10001"
    assert serial.header("device-key-sha3-384") == device_key
    stored = db.find("serial", {"brand-id": "acme", "model": "widget", "serial": "10001"})
    assert stored == serial
    assert client.pending_count == 2

    # retries resend the very same serial-request
    assert len(service.serial_requests) == 3
    assert len(set(service.serial_requests)) == 1
    assert set(service.user_agents) == {expected_user_agent()}


def test_step_by_step(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand, pending_rounds=1)
    client = _client(db, keymgr, device_key, LocalAdapter(service))

    assert client.state == State.INIT
    assert client.step() == State.REQUEST_ID
    assert client.step() == State.SUBMITTING
    assert service.serial_requests == []
    assert client.step() == State.PENDING
    client.wait()
    assert client.state == State.SUBMITTING
    assert client.step() == State.DONE
    assert client.step() == State.DONE
    assert len(service.serial_requests) == 2


def test_backoff_grows_and_is_capped(db, keymgr, device_key):
    client = _client(db, keymgr, device_key, LocalAdapter(),
                     retry_interval=5.0, retry_multiplier=2.0, retry_max_interval=12.0)
    delays = []
    for n in range(1, 5):
        client.pending_count = n
        delays.append(client.next_delay())
    assert delays == [5.0, 10.0, 12.0, 12.0]


def test_bad_request_is_terminal(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand, req_id=REQID_BAD_REQUEST)
    client = _client(db, keymgr, device_key, LocalAdapter(service))

    with pytest.raises(RegistrationFailed) as exc:
        client.run()
    assert exc.value.kind == "terminal"
    assert exc.value.status == 400
    assert "bad serial-request" in str(exc.value)
    assert client.state == State.FAILED
    assert len(service.serial_requests) == 1
    # terminal states stay put
    assert client.step() == State.FAILED
    assert len(service.serial_requests) == 1


def test_request_id_not_supported(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand, req_id=REQID_FAIL_ID_501)
    client = _client(db, keymgr, device_key, LocalAdapter(service))

    with pytest.raises(RegistrationFailed) as exc:
        client.run()
    assert exc.value.kind == "terminal"
    assert exc.value.status == 501
    assert service.serial_requests == []


def test_serial_for_other_model_is_rejected(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand, req_id=REQID_SERIAL_WITH_BAD_MODEL)
    client = _client(db, keymgr, device_key, LocalAdapter(service))

    with pytest.raises(ConsistencyViolation) as exc:
        client.run()
    assert exc.value.field == "model"
    assert client.state == State.FAILED
    with pytest.raises(NotFound):
        db.find_many("serial", brand_id="acme")


def test_serial_without_model_is_not_stored(db, brand, keymgr, device_key):
    service = MockDeviceService(brand)
    client = _client(db, keymgr, device_key, LocalAdapter(service))

    with pytest.raises(MissingPrerequisite) as exc:
        client.run()
    assert exc.value.assert_type == "model"
    assert client.state == State.FAILED
    assert isinstance(client.error, MissingPrerequisite)


def test_retry_budget_exhausted(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand, pending_rounds=10)
    client = _client(db, keymgr, device_key, LocalAdapter(service), max_retries=2)

    with pytest.raises(RegistrationFailed) as exc:
        client.run()
    assert exc.value.kind == "timeout"
    assert len(service.serial_requests) == 3


def test_cancel_during_wait(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand, pending_rounds=100)
    client = _client(db, keymgr, device_key, LocalAdapter(service),
                     retry_interval=30.0, retry_max_interval=30.0)

    timer = threading.Timer(0.1, client.cancel)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(RegistrationCancelled):
            client.run()
    finally:
        timer.cancel()
    assert time.monotonic() - started < 10
    assert client.state == State.CANCELLED
    assert len(service.serial_requests) == 1


def test_external_cancel_event(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand, pending_rounds=100)
    client = _client(db, keymgr, device_key, LocalAdapter(service),
                     retry_interval=30.0, retry_max_interval=30.0)
    stop = threading.Event()

    timer = threading.Timer(0.1, stop.set)
    timer.start()
    try:
        with pytest.raises(RegistrationCancelled):
            client.run(cancel=stop)
    finally:
        timer.cancel()
    assert client.state == State.CANCELLED


def test_deadline(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand, pending_rounds=100)
    client = _client(db, keymgr, device_key, LocalAdapter(service),
                     retry_interval=30.0, retry_max_interval=30.0)

    with pytest.raises(RegistrationCancelled):
        client.run(deadline=time.monotonic() + 0.2)
    assert client.state == State.CANCELLED


def test_transport_error_keeps_state(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand)
    calls = []

    def flaky(method, path, headers, body):
        calls.append(path)
        if len(calls) == 1:
            raise TransportTransientError("connection reset")
        return service(method, path, headers, body)

    client = _client(db, keymgr, device_key, LocalAdapter(flaky))
    with pytest.raises(TransportTransientError):
        client.step()
    assert client.state == State.INIT
    assert client.run().header("serial") == "10001"


def test_proposed_serial(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand)
    client = _client(db, keymgr, device_key, LocalAdapter(service), proposed_serial="F-0042")

    serial = client.run()
    assert serial.header("serial") == "F-0042"
    assert db.find("serial", {"brand-id": "acme", "model": "widget", "serial": "F-0042"})


def test_body_is_carried_into_serial(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand)
    client = _client(db, keymgr, device_key, LocalAdapter(service), body=b"hw: rev-b\n")

    assert client.run().body == b"hw: rev-b\n"


def test_probe(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand)
    client = _client(db, keymgr, device_key, LocalAdapter(service), probe=True)
    client.run()
    assert service.heads == 1


def test_register_over_http(db, brand, model, keymgr, device_key):
    service = MockDeviceService(brand, pending_rounds=1)
    server = serve_http(service)
    host, port = server.server_address[:2]
    transport = HTTPAdapter(f"http://{host}:{port}")
    try:
        client = _client(db, keymgr, device_key, transport, probe=True)
        serial = client.run()
    finally:
        transport.close()
        server.shutdown()

    assert serial.header("serial") == "10001"
    assert service.heads == 1
    assert len(service.serial_requests) == 2
    assert set(service.user_agents) == {expected_user_agent()}
