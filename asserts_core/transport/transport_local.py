# asserts_core/transport/transport_local.py
from typing import Callable, List, Optional, Tuple
from asserts_core.logger import get_logger
from asserts_core.transport.transport_base import BaseTransport, Headers, TransportResponse

log = get_logger("Asserts.Transport.Local")

Handler = Callable[[str, str, Headers, bytes], TransportResponse]


class LocalAdapter(BaseTransport):
    """
    In-process transport: hands every request to a Python callable.

    Used to drive the registration client against an embedded device
    service without a network. Requests are recorded in `sent`.
    """
    name = "local"

    def __init__(self, handler: Optional[Handler] = None):
        self.handler = handler
        self.sent: List[Tuple[str, str, Headers, bytes]] = []

    def request(self, method: str, path: str, body: Optional[bytes] = None,
                headers: Optional[Headers] = None) -> TransportResponse:
        headers = self.with_defaults(headers)
        body = body or b""
        self.sent.append((method, path, headers, body))
        log.info(f"[LOCAL {method}] {path} ({len(body)} bytes)")
        if self.handler is None:
            return TransportResponse(status=501)
        return self.handler(method, path, headers, body)
