from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from verifactu.models.identity import Recipient, recipient_from_dict
from verifactu.utils.validators import (
    parse_amount,
    parse_date,
    parse_timestamp,
    validate_correction_kind,
    validate_invoice_type,
)

CORRECTION_SUBSTITUTION = "S"
CORRECTION_DIFFERENCES = "I"


class OperationKind(str, Enum):
    REGISTRATION = "registration"
    CORRECTIVE_SUBSTITUTION = "corrective_substitution"
    CANCELLATION = "cancellation"


@dataclass(frozen=True)
class InvoiceId:
    """IDFactura: issuer NIF, series + number, issue date."""

    issuer_id: str
    invoice_number: str
    issue_date: date

    @classmethod
    def from_dict(cls, d: dict) -> InvoiceId:
        return cls(
            issuer_id=str(d["issuer_id"]),
            invoice_number=str(d["invoice_number"]),
            issue_date=parse_date(d["issue_date"]),
        )


@dataclass(frozen=True)
class ChainLink:
    """Reference to the previous record of the same issuer and its fingerprint (Huella)."""

    issuer_id: str
    invoice_number: str
    issue_date: date
    prior_fingerprint: str

    @classmethod
    def from_dict(cls, d: dict) -> ChainLink:
        return cls(
            issuer_id=str(d["issuer_id"]),
            invoice_number=str(d["invoice_number"]),
            issue_date=parse_date(d["issue_date"]),
            prior_fingerprint=str(d["prior_fingerprint"]),
        )


@dataclass(frozen=True)
class BreakdownLine:
    """One DetalleDesglose bucket.

    Exempt lines carry ``exempt_reason_code`` (E1-E6) and ``base_amount`` only;
    taxable lines carry ``operation_type``, ``tax_rate``, ``base_amount`` and
    ``tax_amount``.
    """

    base_amount: Decimal
    tax_type: str = "01"  # IVA
    regime_type: str = "01"  # general regime
    exempt_reason_code: str | None = None
    operation_type: str | None = "S1"
    tax_rate: Decimal | None = None
    tax_amount: Decimal | None = None

    @property
    def is_exempt(self) -> bool:
        return bool(self.exempt_reason_code)

    @classmethod
    def from_dict(cls, d: dict) -> BreakdownLine:
        exempt = d.get("exempt_reason_code") or None
        if exempt:
            return cls(
                base_amount=parse_amount(d["base_amount"]),
                tax_type=str(d.get("tax_type", "01")).zfill(2),
                regime_type=str(d.get("regime_type", "01")).zfill(2),
                exempt_reason_code=str(exempt),
                operation_type=None,
            )
        return cls(
            base_amount=parse_amount(d["base_amount"]),
            tax_type=str(d.get("tax_type", "01")).zfill(2),
            regime_type=str(d.get("regime_type", "01")).zfill(2),
            operation_type=str(d.get("operation_type", "S1")),
            tax_rate=parse_amount(d["tax_rate"]),
            tax_amount=parse_amount(d["tax_amount"]),
        )


@dataclass(frozen=True)
class InvoiceEvent:
    """A single record to submit: registration, corrective substitution or cancellation.

    ``fingerprint`` and ``fingerprint_timestamp`` are computed by the caller
    and embedded as given.
    """

    operation: OperationKind
    invoice_id: InvoiceId
    fingerprint: str
    fingerprint_timestamp: datetime
    chain_link: ChainLink | None = None

    # Registration / substitution data
    issuer_name: str = ""
    invoice_type: str = "F1"
    correction_kind: str | None = None
    description: str = ""
    recipient: Recipient | None = None
    breakdown: tuple[BreakdownLine, ...] = ()
    total_tax_amount: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")

    # Correction data
    corrected_invoice_id: InvoiceId | None = None
    corrected_base: Decimal | None = None
    corrected_tax: Decimal | None = None
    operation_date: date | None = None

    @property
    def is_corrective(self) -> bool:
        return self.invoice_type.startswith("R")

    @classmethod
    def from_dict(cls, d: dict) -> InvoiceEvent:
        """Create an InvoiceEvent from a YAML/JSON mapping, validating codes and amounts."""
        operation = OperationKind(d.get("operation", OperationKind.REGISTRATION.value))
        chain = d.get("chain_link")
        common = {
            "operation": operation,
            "invoice_id": InvoiceId.from_dict(d["invoice_id"]),
            "fingerprint": str(d["fingerprint"]),
            "fingerprint_timestamp": parse_timestamp(d["fingerprint_timestamp"]),
            "chain_link": ChainLink.from_dict(chain) if chain else None,
        }
        if operation is OperationKind.CANCELLATION:
            return cls(**common)

        recipient = d.get("recipient")
        corrected = d.get("corrected_invoice_id")
        correction_kind = d.get("correction_kind")
        return cls(
            **common,
            issuer_name=str(d["issuer_name"]),
            invoice_type=validate_invoice_type(str(d.get("invoice_type", "F1"))),
            correction_kind=(
                validate_correction_kind(str(correction_kind)) if correction_kind else None
            ),
            description=str(d["description"]),
            recipient=recipient_from_dict(recipient) if recipient else None,
            breakdown=tuple(BreakdownLine.from_dict(line) for line in d.get("breakdown", [])),
            total_tax_amount=parse_amount(d["total_tax_amount"]),
            total_amount=parse_amount(d["total_amount"]),
            corrected_invoice_id=InvoiceId.from_dict(corrected) if corrected else None,
            corrected_base=_optional_amount(d.get("corrected_base")),
            corrected_tax=_optional_amount(d.get("corrected_tax")),
            operation_date=(
                parse_date(d["operation_date"]) if d.get("operation_date") else None
            ),
        )


def _optional_amount(value: object) -> Decimal | None:
    return None if value is None else parse_amount(value)
