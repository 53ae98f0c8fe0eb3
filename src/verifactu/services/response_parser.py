from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

from lxml import etree

from verifactu.config import SOAPENV_NS
from verifactu.models.record import InvoiceId
from verifactu.services.exceptions import ProtocolViolation

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)


class RecordStatus(str, Enum):
    ACCEPTED = "Correcto"
    ACCEPTED_WITH_WARNINGS = "AceptadoConErrores"
    REJECTED = "Incorrecto"


@dataclass(frozen=True)
class RecordOutcome:
    """Result reported by AEAT for one submitted record (RespuestaLinea)."""

    status: RecordStatus
    invoice_id: InvoiceId
    operation: str = ""
    error_code: str | None = None
    error_description: str | None = None

    @property
    def accepted(self) -> bool:
        return self.status is not RecordStatus.REJECTED


@dataclass(frozen=True)
class SubmissionResponse:
    outcomes: tuple[RecordOutcome, ...]
    status: str = ""  # EstadoEnvio: Correcto, ParcialmenteCorrecto, Incorrecto
    csv: str | None = None
    wait_seconds: int | None = None

    @property
    def rejected(self) -> tuple[RecordOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status is RecordStatus.REJECTED)


def _text(el: etree._Element, name: str) -> str | None:
    """Text of the first direct child with local name *name*, stripped; None if absent/empty."""
    found = el.find(f"{{*}}{name}")
    if found is None or found.text is None:
        return None
    return found.text.strip() or None


def _parse_date(value: str, raw: bytes) -> date:
    for fmt in ("%d-%m-%Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ProtocolViolation(f"Fecha de factura no reconocida en la respuesta: '{value}'", raw)


def _parse_invoice_id(line: etree._Element, raw: bytes) -> InvoiceId:
    id_el = line.find("{*}IDFactura")
    if id_el is None:
        raise ProtocolViolation("RespuestaLinea sin IDFactura", raw)
    issuer = _text(id_el, "IDEmisorFactura") or _text(id_el, "IDEmisorFacturaAnulada")
    number = _text(id_el, "NumSerieFactura") or _text(id_el, "NumSerieFacturaAnulada")
    issued = _text(id_el, "FechaExpedicionFactura") or _text(
        id_el, "FechaExpedicionFacturaAnulada"
    )
    if not (issuer and number and issued):
        raise ProtocolViolation("IDFactura incompleto en RespuestaLinea", raw)
    return InvoiceId(issuer_id=issuer, invoice_number=number, issue_date=_parse_date(issued, raw))


def _parse_line(line: etree._Element, raw: bytes) -> RecordOutcome:
    estado = _text(line, "EstadoRegistro")
    if estado is None:
        raise ProtocolViolation("RespuestaLinea sin EstadoRegistro", raw)
    try:
        status = RecordStatus(estado)
    except ValueError:
        raise ProtocolViolation(f"EstadoRegistro desconocido: '{estado}'", raw) from None

    operacion = line.find("{*}Operacion")
    operation = _text(operacion, "TipoOperacion") if operacion is not None else None

    return RecordOutcome(
        status=status,
        invoice_id=_parse_invoice_id(line, raw),
        operation=operation or "",
        error_code=_text(line, "CodigoErrorRegistro"),
        error_description=_text(line, "DescripcionErrorRegistro"),
    )


def _response_element(root: etree._Element, raw: bytes) -> etree._Element:
    body = root.find(f"{{{SOAPENV_NS}}}Body")
    if body is None:
        body = root.find("{*}Body")
    if body is None:
        raise ProtocolViolation("Respuesta sin SOAP Body", raw)

    payload = next(body.iterchildren(tag=etree.Element), None)
    if payload is None:
        raise ProtocolViolation("SOAP Body vacio", raw)
    if etree.QName(payload).localname == "Fault":
        fault = _text(payload, "faultstring") or "sin detalle"
        raise ProtocolViolation(f"SOAP Fault: {fault}", raw)
    if not etree.QName(payload).localname.startswith("Respuesta"):
        raise ProtocolViolation(
            f"Elemento de respuesta inesperado: {etree.QName(payload).localname}", raw
        )
    return payload


def parse_response(raw: bytes) -> SubmissionResponse:
    """Parse an AEAT submission response into per-record outcomes, in document order.

    Raises ProtocolViolation if the body cannot be understood. A rejected
    record is reported as an outcome, not as an exception.
    """
    try:
        root = etree.fromstring(raw, parser=_PARSER)
    except (etree.XMLSyntaxError, ValueError) as exc:
        raise ProtocolViolation(f"Respuesta XML mal formada: {exc}", raw) from exc

    payload = _response_element(root, raw)
    outcomes = tuple(_parse_line(line, raw) for line in payload.findall("{*}RespuestaLinea"))

    wait = _text(payload, "TiempoEsperaEnvio")
    return SubmissionResponse(
        outcomes=outcomes,
        status=_text(payload, "EstadoEnvio") or "",
        csv=_text(payload, "CSV"),
        wait_seconds=int(wait) if wait and wait.isdigit() else None,
    )
