# asserts_core/transport/__init__.py
import os
from asserts_core.transport.transport_base import (
    BaseTransport, TransportError, TransportPermanentError, TransportResponse,
    TransportTransientError,
)
from asserts_core.transport.transport_http import HTTPAdapter
from asserts_core.transport.transport_local import LocalAdapter


def transport_factory(base_url: str = None):
    """
    Transport towards the device service, chosen by ASSERTS_TRANSPORT:
      - "http"  → HTTPAdapter on base_url (default ASSERTS_DEVICE_SERVICE_URL)
      - "local" → LocalAdapter with no handler attached
    """
    mode = os.getenv("ASSERTS_TRANSPORT", "http").lower()

    if mode == "local":
        return LocalAdapter()

    if mode == "http":
        from asserts_core.constants import DEFAULT_DEVICE_SERVICE_URL
        return HTTPAdapter(base_url or os.getenv("ASSERTS_DEVICE_SERVICE_URL", DEFAULT_DEVICE_SERVICE_URL))

    raise ValueError(f"Unknown transport: {mode}")


__all__ = [
    "BaseTransport",
    "HTTPAdapter",
    "LocalAdapter",
    "TransportError",
    "TransportPermanentError",
    "TransportResponse",
    "TransportTransientError",
    "transport_factory",
]
