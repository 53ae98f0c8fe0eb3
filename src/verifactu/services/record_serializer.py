from __future__ import annotations

from collections.abc import Sequence

from lxml import etree

from verifactu.config import SOAPENV_NS, SUM1_NS, SUM_NS
from verifactu.models.identity import FiscalIdentity, Recipient
from verifactu.models.record import (
    CORRECTION_SUBSTITUTION,
    BreakdownLine,
    ChainLink,
    InvoiceEvent,
    InvoiceId,
    OperationKind,
)
from verifactu.models.system import SystemDescriptor
from verifactu.services.exceptions import EncodingError
from verifactu.utils.formatters import (
    format_amount,
    format_date,
    format_timestamp,
    format_yes_no,
)
from verifactu.utils.validators import parse_amount

NSMAP = {"soapenv": SOAPENV_NS, "sum": SUM_NS, "sum1": SUM1_NS}

ID_VERSION = "1.0"
FINGERPRINT_TYPE = "01"  # SHA-256

# Invoice types that identify a recipient (Destinatarios)
RECIPIENT_INVOICE_TYPES = frozenset({"F1", "R1", "R2", "R3", "R4"})


def _sub(parent: etree._Element, tag: str, text: str | None = None) -> etree._Element:
    """Append a sum1:<tag> child (or sum:<tag> when prefixed with 'sum:')."""
    if tag.startswith("sum:"):
        el = etree.SubElement(parent, f"{{{SUM_NS}}}{tag[4:]}")
    else:
        el = etree.SubElement(parent, f"{{{SUM1_NS}}}{tag}")
    if text is not None:
        el.text = text
    return el


def _amount(value: object) -> str:
    try:
        return format_amount(parse_amount(value))
    except ValueError as exc:
        raise EncodingError(str(exc)) from exc


# --- Shared fragments ---


def _add_envelope() -> tuple[etree._Element, etree._Element]:
    """Return (Envelope, RegFactuSistemaFacturacion)."""
    envelope = etree.Element(f"{{{SOAPENV_NS}}}Envelope", nsmap=NSMAP)  # type: ignore[arg-type]
    etree.SubElement(envelope, f"{{{SOAPENV_NS}}}Header")
    body = etree.SubElement(envelope, f"{{{SOAPENV_NS}}}Body")
    base = _sub(body, "sum:RegFactuSistemaFacturacion")
    return envelope, base


def _add_header(
    base: etree._Element,
    submitter: FiscalIdentity,
    representative: FiscalIdentity | None,
) -> None:
    cabecera = _sub(base, "sum:Cabecera")
    obligado = _sub(cabecera, "ObligadoEmision")
    _sub(obligado, "NombreRazon", submitter.name)
    _sub(obligado, "NIF", submitter.nif)
    if representative is not None:
        rep = _sub(cabecera, "Representante")
        _sub(rep, "NombreRazon", representative.name)
        _sub(rep, "NIF", representative.nif)


def _add_invoice_id(
    parent: etree._Element, tag: str, invoice_id: InvoiceId, suffix: str = ""
) -> None:
    """IDFactura-like block; ``suffix`` is "Anulada" for cancellations."""
    el = _sub(parent, tag)
    _sub(el, f"IDEmisorFactura{suffix}", invoice_id.issuer_id)
    _sub(el, f"NumSerieFactura{suffix}", invoice_id.invoice_number)
    _sub(el, f"FechaExpedicionFactura{suffix}", format_date(invoice_id.issue_date))


def _add_recipient(parent: etree._Element, event: InvoiceEvent) -> None:
    recipient = event.recipient
    if recipient is None or event.invoice_type not in RECIPIENT_INVOICE_TYPES:
        return
    destinatarios = _sub(parent, "Destinatarios")
    id_dest = _sub(destinatarios, "IDDestinatario")
    _add_recipient_identity(id_dest, recipient)


def _add_recipient_identity(id_dest: etree._Element, recipient: Recipient) -> None:
    kind = getattr(recipient, "kind", None)
    if kind == "domestic":
        _sub(id_dest, "NombreRazon", recipient.name)
        _sub(id_dest, "NIF", recipient.nif)
    elif kind == "foreign":
        _sub(id_dest, "NombreRazon", recipient.name)
        id_otro = _sub(id_dest, "IDOtro")
        _sub(id_otro, "CodigoPais", recipient.country)
        _sub(id_otro, "IDType", recipient.id_type)
        _sub(id_otro, "ID", recipient.id_value)
    else:
        raise EncodingError(
            f"Tipo de destinatario no soportado: {type(recipient).__name__}"
        )


def _add_breakdown(parent: etree._Element, lines: Sequence[BreakdownLine]) -> None:
    if not lines:
        raise EncodingError("El desglose debe tener al menos una linea (DetalleDesglose)")
    desglose = _sub(parent, "Desglose")
    for line in lines:
        detalle = _sub(desglose, "DetalleDesglose")
        _sub(detalle, "Impuesto", line.tax_type)
        _sub(detalle, "ClaveRegimen", line.regime_type)
        if line.is_exempt:
            _sub(detalle, "OperacionExenta", line.exempt_reason_code)
            _sub(detalle, "BaseImponibleOimporteNoSujeto", _amount(line.base_amount))
        else:
            if line.operation_type is None or line.tax_rate is None or line.tax_amount is None:
                raise EncodingError(
                    "Linea de desglose sujeta sin CalificacionOperacion, "
                    "TipoImpositivo o CuotaRepercutida"
                )
            _sub(detalle, "CalificacionOperacion", line.operation_type)
            _sub(detalle, "TipoImpositivo", _amount(line.tax_rate))
            _sub(detalle, "BaseImponibleOimporteNoSujeto", _amount(line.base_amount))
            _sub(detalle, "CuotaRepercutida", _amount(line.tax_amount))


def _add_totals(parent: etree._Element, event: InvoiceEvent) -> None:
    _sub(parent, "CuotaTotal", _amount(event.total_tax_amount))
    _sub(parent, "ImporteTotal", _amount(event.total_amount))


def _add_correction_kind(parent: etree._Element, event: InvoiceEvent) -> None:
    if not event.is_corrective:
        return
    if not event.correction_kind:
        raise EncodingError(
            f"Factura {event.invoice_id.invoice_number}: TipoRectificativa obligatorio "
            f"para TipoFactura {event.invoice_type}"
        )
    _sub(parent, "TipoRectificativa", event.correction_kind)


def _add_correction_amounts(
    parent: etree._Element, event: InvoiceEvent, with_operation_date: bool
) -> None:
    if not (
        event.is_corrective
        and event.correction_kind == CORRECTION_SUBSTITUTION
        and event.corrected_base is not None
        and event.corrected_tax is not None
    ):
        return
    importe = _sub(parent, "ImporteRectificacion")
    _sub(importe, "BaseRectificada", _amount(event.corrected_base))
    _sub(importe, "CuotaRectificada", _amount(event.corrected_tax))
    if with_operation_date and event.operation_date is not None:
        _sub(importe, "FechaOperacion", format_date(event.operation_date))


def _add_chain(
    parent: etree._Element, event: InvoiceEvent, *, mandatory: bool
) -> None:
    """Encadenamiento block.

    With ``mandatory`` a missing chain link is an EncodingError; otherwise it
    marks the issuer's first record (PrimerRegistro=S).
    """
    link: ChainLink | None = event.chain_link
    if link is None and mandatory:
        raise EncodingError(
            f"Factura {event.invoice_id.invoice_number}: Encadenamiento/RegistroAnterior "
            f"es obligatorio en {event.operation.value}"
        )
    encadenamiento = _sub(parent, "Encadenamiento")
    if link is None:
        _sub(encadenamiento, "PrimerRegistro", "S")
        return
    anterior = _sub(encadenamiento, "RegistroAnterior")
    _sub(anterior, "IDEmisorFactura", link.issuer_id)
    _sub(anterior, "NumSerieFactura", link.invoice_number)
    _sub(anterior, "FechaExpedicionFactura", format_date(link.issue_date))
    _sub(anterior, "Huella", link.prior_fingerprint)


def _add_system(parent: etree._Element, system: SystemDescriptor) -> None:
    sis = _sub(parent, "SistemaInformatico")
    _sub(sis, "NombreRazon", system.vendor_name)
    _sub(sis, "NIF", system.vendor_nif)
    _sub(sis, "NombreSistemaInformatico", system.name)
    _sub(sis, "IdSistemaInformatico", system.id)
    _sub(sis, "Version", system.version)
    _sub(sis, "NumeroInstalacion", system.installation_number)
    _sub(sis, "TipoUsoPosibleSoloVerifactu", format_yes_no(system.only_supports_verifactu))
    _sub(sis, "TipoUsoPosibleMultiOT", format_yes_no(system.supports_multiple_taxpayers))
    _sub(sis, "IndicadorMultiplesOT", format_yes_no(system.has_multiple_taxpayers))


def _add_fingerprint(parent: etree._Element, event: InvoiceEvent) -> None:
    ts = event.fingerprint_timestamp
    if ts.tzinfo is None or ts.utcoffset() is None:
        raise EncodingError(
            f"Factura {event.invoice_id.invoice_number}: FechaHoraHusoGenRegistro sin huso horario"
        )
    _sub(parent, "FechaHoraHusoGenRegistro", format_timestamp(ts))
    _sub(parent, "TipoHuella", FINGERPRINT_TYPE)
    _sub(parent, "Huella", event.fingerprint)


# --- Per-operation records ---


def _registration_record(
    base: etree._Element, event: InvoiceEvent, system: SystemDescriptor
) -> None:
    alta = _sub(_sub(base, "sum:RegistroFactura"), "RegistroAlta")
    _sub(alta, "IDVersion", ID_VERSION)
    _add_invoice_id(alta, "IDFactura", event.invoice_id)
    _sub(alta, "NombreRazonEmisor", event.issuer_name)
    _sub(alta, "TipoFactura", event.invoice_type)
    _add_correction_kind(alta, event)
    _sub(alta, "DescripcionOperacion", event.description)
    _add_recipient(alta, event)
    _add_breakdown(alta, event.breakdown)
    _add_totals(alta, event)
    _add_correction_amounts(alta, event, with_operation_date=True)
    _add_chain(alta, event, mandatory=False)
    _add_system(alta, system)
    _add_fingerprint(alta, event)


def _correction_record(
    base: etree._Element, event: InvoiceEvent, system: SystemDescriptor
) -> None:
    if event.corrected_invoice_id is None:
        raise EncodingError(
            f"Factura {event.invoice_id.invoice_number}: falta la factura rectificada "
            "(FacturasRectificadas)"
        )
    alta = _sub(_sub(base, "sum:RegistroFactura"), "RegistroAlta")
    _sub(alta, "IDVersion", ID_VERSION)
    _add_invoice_id(alta, "IDFactura", event.invoice_id)
    _sub(alta, "NombreRazonEmisor", event.issuer_name)
    _sub(alta, "TipoFactura", event.invoice_type)
    _add_correction_kind(alta, event)
    rectificadas = _sub(alta, "FacturasRectificadas")
    _add_invoice_id(rectificadas, "IDFacturaRectificada", event.corrected_invoice_id)
    _add_correction_amounts(alta, event, with_operation_date=False)
    _sub(alta, "DescripcionOperacion", event.description)
    _add_recipient(alta, event)
    _add_breakdown(alta, event.breakdown)
    _add_totals(alta, event)
    _add_chain(alta, event, mandatory=True)
    _add_system(alta, system)
    _add_fingerprint(alta, event)


def _cancellation_record(
    base: etree._Element, event: InvoiceEvent, system: SystemDescriptor
) -> None:
    anulacion = _sub(_sub(base, "sum:RegistroFactura"), "RegistroAnulacion")
    _sub(anulacion, "IDVersion", ID_VERSION)
    _add_invoice_id(anulacion, "IDFactura", event.invoice_id, suffix="Anulada")
    _add_chain(anulacion, event, mandatory=True)
    _add_system(anulacion, system)
    _add_fingerprint(anulacion, event)


_RECORD_BUILDERS = {
    OperationKind.REGISTRATION: _registration_record,
    OperationKind.CORRECTIVE_SUBSTITUTION: _correction_record,
    OperationKind.CANCELLATION: _cancellation_record,
}


def _build(
    kind: OperationKind,
    submitter: FiscalIdentity,
    representative: FiscalIdentity | None,
    system: SystemDescriptor,
    events: Sequence[InvoiceEvent],
) -> etree._Element:
    if not events:
        raise EncodingError("El lote de registros esta vacio")
    for event in events:
        if event.operation is not kind:
            raise EncodingError(
                f"Factura {event.invoice_id.invoice_number}: operacion "
                f"{event.operation.value} en un lote de {kind.value}"
            )

    envelope, base = _add_envelope()
    _add_header(base, submitter, representative)
    builder = _RECORD_BUILDERS[kind]
    for event in events:
        builder(base, event, system)
    return envelope


def build_registration(
    submitter: FiscalIdentity,
    representative: FiscalIdentity | None,
    system: SystemDescriptor,
    events: Sequence[InvoiceEvent],
) -> etree._Element:
    """Build the SOAP envelope for new invoice records (RegistroAlta)."""
    return _build(OperationKind.REGISTRATION, submitter, representative, system, events)


def build_correction(
    submitter: FiscalIdentity,
    representative: FiscalIdentity | None,
    system: SystemDescriptor,
    events: Sequence[InvoiceEvent],
) -> etree._Element:
    """Build the SOAP envelope for corrective substitution records.

    Each record must reference the corrected invoice and the previous chain link.
    """
    return _build(
        OperationKind.CORRECTIVE_SUBSTITUTION, submitter, representative, system, events
    )


def build_cancellation(
    submitter: FiscalIdentity,
    representative: FiscalIdentity | None,
    system: SystemDescriptor,
    events: Sequence[InvoiceEvent],
) -> etree._Element:
    """Build the SOAP envelope for cancellation records (RegistroAnulacion)."""
    return _build(OperationKind.CANCELLATION, submitter, representative, system, events)


def build_document(
    submitter: FiscalIdentity,
    representative: FiscalIdentity | None,
    system: SystemDescriptor,
    events: Sequence[InvoiceEvent],
) -> etree._Element:
    """Build the SOAP envelope for a batch, picking the template by operation kind.

    All events must share one operation kind. Raises EncodingError for any
    structural problem; nothing is sent in that case.
    """
    if not events:
        raise EncodingError("El lote de registros esta vacio")
    return _build(events[0].operation, submitter, representative, system, events)


def serialize_document(document: etree._Element) -> bytes:
    """Serialize an envelope to UTF-8 bytes with XML declaration."""
    return etree.tostring(document, xml_declaration=True, encoding="utf-8")

