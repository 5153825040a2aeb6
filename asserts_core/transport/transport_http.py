# asserts_core/transport/transport_http.py
import requests
from typing import Optional
from asserts_core.logger import get_logger
from asserts_core.transport.transport_base import (
    BaseTransport, Headers, TransportResponse, TransportTransientError,
)

log = get_logger("Asserts.Transport.HTTP")


class HTTPAdapter(BaseTransport):
    """
    HTTP transport towards the device service.

    A single requests.Session is reused so connections are kept alive
    across the request-id and serial exchanges.
    """
    name = "http"

    def __init__(self, base_url: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def request(self, method: str, path: str, body: Optional[bytes] = None,
                headers: Optional[Headers] = None) -> TransportResponse:
        url = f"{self.base_url}{path}"
        headers = self.with_defaults(headers)

        log.debug(f"[HTTP {method}] → {url} | headers={headers}")
        try:
            res = self.session.request(method, url, data=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            log.error(f"[HTTP {method}] {url} failed: {e}")
            raise TransportTransientError(f"{method} {url}: {e}") from e
        log.info(f"[HTTP {method}] {url} → {res.status_code} {res.reason}")
        return TransportResponse(status=res.status_code, body=res.content, headers=dict(res.headers))

    def close(self) -> None:
        self.session.close()
