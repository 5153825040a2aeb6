from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional
import json

from asserts_core.constants import USER_AGENT

Headers = Dict[str, str]


class TransportError(Exception):
    pass


class TransportTransientError(TransportError):
    pass


class TransportPermanentError(TransportError):
    pass


@dataclass
class TransportResponse:
    status: int
    body: bytes = b""
    headers: Headers = field(default_factory=dict)

    @property
    def content_type(self) -> str:
        for k, v in self.headers.items():
            if k.lower() == "content-type":
                return v.split(";", 1)[0].strip()
        return ""

    def json(self):
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise TransportPermanentError(f"invalid JSON response: {e}")


class BaseTransport:
    """
    Request/response contract towards a device service.

    Bodies are bytes at the transport boundary. Every request carries the
    client identifier in User-Agent.
    """
    name: str = "base"

    def request(
        self,
        method: str,
        path: str,
        body: Optional[bytes] = None,
        headers: Optional[Headers] = None,
    ) -> TransportResponse:
        raise NotImplementedError

    def post(self, path: str, body: bytes = b"", headers: Optional[Headers] = None) -> TransportResponse:
        return self.request("POST", path, body, headers)

    def head(self, path: str = "/") -> TransportResponse:
        return self.request("HEAD", path)

    def close(self) -> None:
        return

    @staticmethod
    def with_defaults(headers: Optional[Headers]) -> Headers:
        out = {"User-Agent": USER_AGENT}
        out.update(headers or {})
        return out
