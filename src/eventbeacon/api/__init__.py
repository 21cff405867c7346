from .transport import (
    DirectTransport,
    HTTPTransport,
    ProxiedTransport,
    Transport,
    TransportRequest,
    build_transport,
)

__all__ = [
    "DirectTransport",
    "HTTPTransport",
    "ProxiedTransport",
    "Transport",
    "TransportRequest",
    "build_transport",
]
