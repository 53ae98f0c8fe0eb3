from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from lxml import etree

from verifactu.config import SOAPENV_NS, SUM1_NS, SUM_NS
from verifactu.models.identity import FiscalIdentity, ForeignFiscalIdentity
from verifactu.models.record import (
    BreakdownLine,
    ChainLink,
    InvoiceEvent,
    InvoiceId,
    OperationKind,
)
from verifactu.models.system import SystemDescriptor

NS = {"soapenv": SOAPENV_NS, "sum": SUM_NS, "sum1": SUM1_NS}

RECORDS_XPATH = "soapenv:Body/sum:RegFactuSistemaFacturacion/sum:RegistroFactura/*"

CEST = timezone(timedelta(hours=2))

HASH_1 = "3C464DAF61ACB827C65FDA19F352A4E3BDC2C640E9E9FC4CC058073F38F12F60"
HASH_2 = "F7B94CFD8924EDFF273501B01EE5153E4CE8F259766F88CF6ACB8935802A2B97"


def xml_text(el: etree._Element, xpath: str) -> str | None:
    """Extract text from an XML element by prefixed xpath (sum/sum1/soapenv)."""
    found = el.find(xpath, namespaces=NS)
    return found.text if found is not None else None


def records(doc: etree._Element) -> list[etree._Element]:
    """RegistroAlta / RegistroAnulacion elements of a built envelope, in order."""
    return doc.findall(RECORDS_XPATH, namespaces=NS)


def child_names(el: etree._Element) -> list[str]:
    return [etree.QName(child).localname for child in el]


# --- Identity / system fixtures ---


@pytest.fixture
def taxpayer() -> FiscalIdentity:
    return FiscalIdentity(name="EMPRESA DE EJEMPLO SL", nif="B87654321")


@pytest.fixture
def representative() -> FiscalIdentity:
    return FiscalIdentity(name="ASESORIA EJEMPLO SL", nif="B11223344")


@pytest.fixture
def domestic_recipient() -> FiscalIdentity:
    return FiscalIdentity(name="CLIENTE DE EJEMPLO SA", nif="A12345678")


@pytest.fixture
def foreign_recipient() -> ForeignFiscalIdentity:
    return ForeignFiscalIdentity(
        name="GLOBAL TRADING GMBH", country="DE", id_type="02", id_value="DE123456789"
    )


@pytest.fixture
def system_dict() -> dict:
    return {
        "vendor_name": "ACME SOFTWARE SL",
        "vendor_nif": "B12345678",
        "name": "ACME Facturacion",
        "id": "AF",
        "version": "1.0.0",
        "installation_number": "0001",
        "only_supports_verifactu": True,
        "supports_multiple_taxpayers": False,
        "has_multiple_taxpayers": False,
    }


@pytest.fixture
def system(system_dict: dict) -> SystemDescriptor:
    return SystemDescriptor.from_dict(system_dict)


# --- Record fixtures ---


@pytest.fixture
def invoice_id() -> InvoiceId:
    return InvoiceId(issuer_id="B87654321", invoice_number="2024-0002", issue_date=date(2024, 7, 2))


@pytest.fixture
def chain_link() -> ChainLink:
    return ChainLink(
        issuer_id="B87654321",
        invoice_number="2024-0001",
        issue_date=date(2024, 7, 1),
        prior_fingerprint=HASH_1,
    )


@pytest.fixture
def taxable_line() -> BreakdownLine:
    return BreakdownLine(
        base_amount=Decimal("100.00"),
        operation_type="S1",
        tax_rate=Decimal("21.00"),
        tax_amount=Decimal("21.00"),
    )


@pytest.fixture
def exempt_line() -> BreakdownLine:
    return BreakdownLine(base_amount=Decimal("50.00"), exempt_reason_code="E1", operation_type=None)


@pytest.fixture
def registration(invoice_id, domestic_recipient, taxable_line) -> InvoiceEvent:
    return InvoiceEvent(
        operation=OperationKind.REGISTRATION,
        invoice_id=invoice_id,
        issuer_name="EMPRESA DE EJEMPLO SL",
        invoice_type="F1",
        description="Servicios de consultoria",
        recipient=domestic_recipient,
        breakdown=(taxable_line,),
        total_tax_amount=Decimal("21.00"),
        total_amount=Decimal("121.00"),
        chain_link=None,
        fingerprint=HASH_2,
        fingerprint_timestamp=datetime(2024, 7, 2, 19, 20, 30, tzinfo=CEST),
    )


@pytest.fixture
def correction(registration, chain_link) -> InvoiceEvent:
    return InvoiceEvent(
        operation=OperationKind.CORRECTIVE_SUBSTITUTION,
        invoice_id=InvoiceId("B87654321", "R-2024-0001", date(2024, 7, 3)),
        issuer_name=registration.issuer_name,
        invoice_type="R1",
        correction_kind="S",
        description="Rectificacion por error en base",
        recipient=registration.recipient,
        breakdown=registration.breakdown,
        total_tax_amount=Decimal("21.00"),
        total_amount=Decimal("121.00"),
        corrected_invoice_id=registration.invoice_id,
        corrected_base=Decimal("80.00"),
        corrected_tax=Decimal("16.80"),
        operation_date=date(2024, 7, 2),
        chain_link=chain_link,
        fingerprint=HASH_2,
        fingerprint_timestamp=datetime(2024, 7, 3, 9, 0, 0, tzinfo=CEST),
    )


@pytest.fixture
def cancellation(invoice_id, chain_link) -> InvoiceEvent:
    return InvoiceEvent(
        operation=OperationKind.CANCELLATION,
        invoice_id=invoice_id,
        chain_link=chain_link,
        fingerprint=HASH_2,
        fingerprint_timestamp=datetime(2024, 7, 4, 12, 0, 0, tzinfo=CEST),
    )


# --- AEAT response builder ---


def aeat_response(*lines: tuple, estado_envio: str = "Correcto", csv: str = "A-ABC123") -> bytes:
    """Build a RespuestaRegFactuSistemaFacturacion envelope.

    Each line is (estado, invoice_number[, code, description]).
    """
    body = []
    for line in lines:
        estado, number = line[0], line[1]
        extra = ""
        if len(line) > 2:
            extra = (
                f"<tikR:CodigoErrorRegistro>{line[2]}</tikR:CodigoErrorRegistro>"
                f"<tikR:DescripcionErrorRegistro>{line[3]}</tikR:DescripcionErrorRegistro>"
            )
        body.append(
            "<tikR:RespuestaLinea>"
            "<tikR:IDFactura>"
            "<tik:IDEmisorFactura>B87654321</tik:IDEmisorFactura>"
            f"<tik:NumSerieFactura>{number}</tik:NumSerieFactura>"
            "<tik:FechaExpedicionFactura>02-07-2024</tik:FechaExpedicionFactura>"
            "</tikR:IDFactura>"
            "<tikR:Operacion><tik:TipoOperacion>Alta</tik:TipoOperacion></tikR:Operacion>"
            f"<tikR:EstadoRegistro>{estado}</tikR:EstadoRegistro>"
            f"{extra}"
            "</tikR:RespuestaLinea>"
        )
    ws = (
        "https://www2.agenciatributaria.gob.es/static_files/common/internet/dep/"
        "aplicaciones/es/aeat/tike/cont/ws"
    )
    xml = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<env:Envelope xmlns:env="http://schemas.xmlsoap.org/soap/envelope/">'
        "<env:Header/><env:Body>"
        f'<tikR:RespuestaRegFactuSistemaFacturacion xmlns:tikR="{ws}/RespuestaSuministro.xsd" '
        f'xmlns:tik="{ws}/SuministroInformacion.xsd">'
        f"<tikR:CSV>{csv}</tikR:CSV>"
        "<tikR:TiempoEsperaEnvio>60</tikR:TiempoEsperaEnvio>"
        f"<tikR:EstadoEnvio>{estado_envio}</tikR:EstadoEnvio>"
        + "".join(body)
        + "</tikR:RespuestaRegFactuSistemaFacturacion></env:Body></env:Envelope>"
    )
    return xml.encode("utf-8")


# --- Certificate / PFX fixtures ---


@pytest.fixture(scope="session")
def test_key_and_cert():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, "Test Certificate"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test Org"),
        ]
    )
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime.now(UTC) - timedelta(days=1))
        .not_valid_after(datetime.now(UTC) + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture
def test_pfx(tmp_path, test_key_and_cert):
    key, cert = test_key_and_cert
    password = b"testpass"
    pfx_data = pkcs12.serialize_key_and_certificates(
        name=b"test",
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=serialization.BestAvailableEncryption(password),
    )
    pfx_path = tmp_path / "test.pfx"
    pfx_path.write_bytes(pfx_data)
    return str(pfx_path), "testpass"


# --- Config dir fixture ---


@pytest.fixture
def config_dir(tmp_path, system_dict):
    import yaml

    cfg = tmp_path / "config"
    cfg.mkdir()
    (cfg / "system.yaml").write_text(yaml.dump(system_dict))
    (cfg / "taxpayer.yaml").write_text(
        yaml.dump({"taxpayer": {"name": "EMPRESA DE EJEMPLO SL", "nif": "B87654321"}})
    )
    return cfg
