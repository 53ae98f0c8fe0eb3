from __future__ import annotations


class VerifactuError(Exception):
    """Base class for errors raised by the VERI*FACTU client."""


class EncodingError(VerifactuError, ValueError):
    """An InvoiceEvent violates a structural precondition of the wire format.

    Always raised before any network access; no partial document is sent.
    """


class TransportError(VerifactuError):
    """The authenticated HTTP exchange with AEAT did not complete.

    Retrying is the caller's decision: a chained record may already have been
    received by the service.
    """

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProtocolViolation(VerifactuError):
    """The response body is not a well-formed VERI*FACTU submission response."""

    def __init__(self, message: str, raw: bytes = b"") -> None:
        super().__init__(message)
        self.raw = raw
