"""
asserts_core.registration
-------------------------
Device registration: obtains the serial assertion for a device that holds
only its private key and the model assertion, and stores it in the trust
database.

The client is an explicit state machine driven by the caller::

    INIT --request-id--> REQUEST_ID --sign--> SUBMITTING --200--> DONE
                                                  |  ^
                                              202 v  | wait()
                                                 PENDING
    400 / 501 -> FAILED (terminal)    retry budget spent -> FAILED (timeout)
    cancel() or deadline during wait() -> CANCELLED

step() performs one transition and returns the new state; wait() is the
cancellable backoff between pending submissions; run() loops the two for
callers that just want a result. Nothing here starts threads of its own.
"""

from __future__ import annotations
import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from .assertion import Assertion, decode, encode
from .config import RegistrationConfig
from .constants import MEDIA_TYPE
from .crypto import encode_public_key
from .errors import AssertsError, ConsistencyViolation, RegistrationCancelled, RegistrationFailed
from .keymgr import KeypairManager
from .logger import get_logger
from .transport import BaseTransport, TransportPermanentError, TransportResponse

log = get_logger("Asserts.Registration")


class State(Enum):
    INIT = "init"
    REQUEST_ID = "request-id-obtained"
    SUBMITTING = "submitting"
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = (State.DONE, State.FAILED, State.CANCELLED)


def _error_messages(res: TransportResponse) -> List[str]:
    try:
        data = res.json()
    except TransportPermanentError:
        return []
    if not isinstance(data, dict):
        return []
    return [e["message"] for e in data.get("error_list") or []
            if isinstance(e, dict) and isinstance(e.get("message"), str)]


class RegistrationClient:
    def __init__(self, config: RegistrationConfig, transport: BaseTransport,
                 keymgr: KeypairManager, database,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.transport = transport
        self.keymgr = keymgr
        self.database = database
        self.clock = clock

        self.state = State.INIT
        self.request_id: Optional[str] = None
        self.serial: Optional[Assertion] = None
        self.error: Optional[Exception] = None
        self.pending_count = 0
        self._encoded_request: Optional[bytes] = None
        self._probed = False
        self._cancel = threading.Event()
        # one transition at a time; one serial-request in flight
        self._step_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Driving
    # ------------------------------------------------------------------
    def step(self) -> State:
        if not self._step_lock.acquire(blocking=False):
            raise RuntimeError("a registration step is already in progress")
        try:
            if self.state in TERMINAL_STATES:
                return self.state
            if self.state == State.INIT:
                self._request_id()
            elif self.state == State.REQUEST_ID:
                self._prepare_request()
            else:
                self._submit()
            return self.state
        finally:
            self._step_lock.release()

    def next_delay(self) -> float:
        cfg = self.config
        n = max(self.pending_count - 1, 0)
        return min(cfg.retry_interval * (cfg.retry_multiplier ** n), cfg.retry_max_interval)

    def wait(self, deadline: Optional[float] = None, cancel: Optional[threading.Event] = None) -> None:
        """Sleep before re-submitting a pending request.

        Returns early, moving to CANCELLED and raising RegistrationCancelled,
        when cancel() is called, `cancel` is set, or the absolute `deadline`
        (in clock() time) is reached.
        """
        if self.state != State.PENDING:
            return
        delay = self.next_delay()
        if deadline is not None:
            delay = min(delay, max(deadline - self.clock(), 0.0))
        log.info(f"[REG] pending, retrying in {delay:.1f}s (attempt {self.pending_count})")
        end = self.clock() + delay
        while True:
            if self._cancel.is_set() or (cancel is not None and cancel.is_set()):
                self._cancelled("registration cancelled")
            if deadline is not None and self.clock() >= deadline:
                self._cancelled("registration deadline reached")
            remaining = end - self.clock()
            if remaining <= 0:
                break
            # poll an external event in slices; the internal one wakes us directly
            slice_ = remaining if cancel is None else min(remaining, 0.05)
            self._cancel.wait(slice_)
        self.state = State.SUBMITTING

    def cancel(self) -> None:
        """Abort a running or future wait(). Safe to call from any thread."""
        self._cancel.set()

    def run(self, deadline: Optional[float] = None, cancel: Optional[threading.Event] = None) -> Assertion:
        """Drive the flow to completion and return the stored serial."""
        while True:
            if self._cancel.is_set() or (cancel is not None and cancel.is_set()):
                self._cancelled("registration cancelled")
            state = self.step()
            if state == State.DONE:
                return self.serial
            if state == State.PENDING:
                self.wait(deadline=deadline, cancel=cancel)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def _request_id(self) -> None:
        cfg = self.config
        if cfg.probe and not self._probed:
            res = self.transport.head("/")
            log.info(f"[REG] capability probe → {res.status}")
            self._probed = True

        res = self.transport.post(cfg.request_id_path)
        if res.status == 501:
            self._fail("terminal", "device service does not support request-id", res.status)
        if res.status != 200:
            self._fail("terminal", f"unexpected status {res.status} requesting request-id", res.status)
        try:
            data = res.json()
        except TransportPermanentError as e:
            self._fail("terminal", f"cannot read request-id response: {e}", res.status)
        req_id = data.get("request-id") if isinstance(data, dict) else None
        if not isinstance(req_id, str) or not req_id:
            self._fail("terminal", "request-id response carries no request-id", res.status)
        self.request_id = req_id
        self.state = State.REQUEST_ID
        log.info(f"[REG] got request-id {req_id}")

    def _prepare_request(self) -> None:
        cfg = self.config
        headers = dict(cfg.extra_headers)
        headers.update({
            "authority-id": cfg.brand_id,
            "brand-id": cfg.brand_id,
            "model": cfg.model,
            "request-id": self.request_id,
            "device-key": encode_public_key(self.keymgr.public_key(cfg.device_key_id)),
        })
        if cfg.proposed_serial:
            headers["serial"] = cfg.proposed_serial
        req = self.keymgr.sign("serial-request", headers, cfg.body, cfg.device_key_id)
        # retries resend exactly these bytes
        self._encoded_request = encode(req)
        self.state = State.SUBMITTING

    def _submit(self) -> None:
        cfg = self.config
        res = self.transport.post(
            cfg.serial_path,
            self._encoded_request,
            headers={"Content-Type": MEDIA_TYPE, "Accept": MEDIA_TYPE},
        )
        if res.status == 200:
            self._accept(res)
        elif res.status == 202:
            self.pending_count += 1
            if self.pending_count > cfg.max_retries:
                self._fail("timeout", f"serial still pending after {self.pending_count} attempts", 202)
            self.state = State.PENDING
        elif res.status == 400:
            messages = _error_messages(res)
            self._fail("terminal", "; ".join(messages) or "serial-request rejected", 400)
        else:
            self._fail("terminal", f"unexpected status {res.status} submitting serial-request", res.status)

    def _accept(self, res: TransportResponse) -> None:
        cfg = self.config
        if res.content_type and res.content_type != MEDIA_TYPE:
            log.warning(f"[REG] serial served as {res.content_type!r}, expected {MEDIA_TYPE}")
        try:
            serial = decode(res.body)
            if serial.type != "serial":
                raise ConsistencyViolation(f"expected a serial assertion, got {serial.type}", serial.ref)
            for name, want in (("brand-id", cfg.brand_id), ("model", cfg.model),
                               ("device-key-sha3-384", cfg.device_key_id)):
                if serial.header(name) != want:
                    raise ConsistencyViolation(
                        f"{name} {serial.header(name)!r} does not match requested {want!r}",
                        serial.ref, field=name)
            if cfg.proposed_serial and serial.header("serial") != cfg.proposed_serial:
                log.warning(f"[REG] service assigned serial {serial.header('serial')!r} "
                            f"instead of proposed {cfg.proposed_serial!r}")
            self.database.add(serial)
        except AssertsError as e:
            self.state = State.FAILED
            self.error = e
            log.error(f"[REG] rejected serial: {e.kind}: {e}")
            raise
        self.serial = serial
        self.state = State.DONE
        log.info(f"[REG] stored serial {serial.primary_key}")

    def _fail(self, kind: str, message: str, status: Optional[int] = None):
        self.state = State.FAILED
        self.error = RegistrationFailed(kind, message, status)
        log.error(f"[REG] failed ({kind}): {message}")
        raise self.error

    def _cancelled(self, message: str):
        self.state = State.CANCELLED
        self.error = RegistrationCancelled(message)
        log.info(f"[REG] {message}")
        raise self.error
