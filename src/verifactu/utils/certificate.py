from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

# FNMT/ACCV certificates carry the NIF as "IDCES-<nif>" (serialNumber) or
# "VATES-<nif>" (organizationIdentifier); plain NIFs also occur.
_NIF_IN_SUBJECT = re.compile(
    r"^(?:IDC|VAT)[A-Z]{2}-?(?P<nif>[0-9A-Z]{8,9})$"
    r"|^(?P<plain>[0-9A-Z]{9})$"
)


@dataclass(frozen=True)
class CertificateInfo:
    subject: str
    issuer: str
    not_before: datetime
    not_after: datetime
    serial: int
    holder_id: str | None = None

    def is_valid(self, at: datetime | None = None) -> bool:
        moment = at or datetime.now(UTC)
        return self.not_before <= moment <= self.not_after


def _holder_id(certificate: x509.Certificate) -> str | None:
    """NIF of the certificate holder, preferring the entity over the individual."""
    for oid in (NameOID.ORGANIZATION_IDENTIFIER, NameOID.SERIAL_NUMBER):
        for attr in certificate.subject.get_attributes_for_oid(oid):
            match = _NIF_IN_SUBJECT.match(str(attr.value).upper())
            if match:
                return match.group("nif") or match.group("plain")
    return None


def validate_certificate(pfx_path: str, password: str | None) -> CertificateInfo:
    """Open a .pfx/.p12 bundle and describe the client certificate inside it.

    Raises ValueError for a wrong password or a bundle lacking certificate or
    private key; both are needed for the mTLS handshake with AEAT.
    """
    private_key, certificate, _ = pkcs12.load_key_and_certificates(
        Path(pfx_path).read_bytes(), password.encode() if password else None
    )
    if certificate is None:
        raise ValueError("El archivo .pfx no contiene ningun certificado")
    if private_key is None:
        raise ValueError("El archivo .pfx no contiene la clave privada del certificado")

    return CertificateInfo(
        subject=certificate.subject.rfc4514_string(),
        issuer=certificate.issuer.rfc4514_string(),
        not_before=certificate.not_valid_before_utc,
        not_after=certificate.not_valid_after_utc,
        serial=certificate.serial_number,
        holder_id=_holder_id(certificate),
    )
