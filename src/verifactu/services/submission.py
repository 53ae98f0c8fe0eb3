from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from verifactu.config import get_cert_password, get_cert_path, load_system, load_taxpayer
from verifactu.models.identity import FiscalIdentity
from verifactu.models.record import InvoiceEvent, OperationKind
from verifactu.models.system import SystemDescriptor
from verifactu.services.exceptions import EncodingError, ProtocolViolation
from verifactu.services.record_serializer import build_document, serialize_document
from verifactu.services.response_parser import SubmissionResponse, parse_response
from verifactu.services.transport import Submission, SubmissionTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionResult:
    """The exchange (sent document + raw reply) and its interpretation."""

    submission: Submission
    response: SubmissionResponse

    @property
    def all_accepted(self) -> bool:
        return all(o.accepted for o in self.response.outcomes)


class VerifactuClient:
    """Submission session for one taxpayer and invoicing system.

    Sequential reuse is fine; the client holds no per-call state.
    """

    def __init__(
        self,
        system: SystemDescriptor,
        taxpayer: FiscalIdentity,
        transport: SubmissionTransport,
        representative: FiscalIdentity | None = None,
    ) -> None:
        self.system = system
        self.taxpayer = taxpayer
        self.transport = transport
        self.representative = representative

    @classmethod
    def from_config(cls, production: bool = False) -> VerifactuClient:
        """Build a client from system.yaml, taxpayer.yaml and the CERT_PFX_* settings."""
        system = SystemDescriptor.from_dict(load_system())
        taxpayer_cfg = load_taxpayer()
        taxpayer = FiscalIdentity.from_dict(taxpayer_cfg["taxpayer"])
        rep_cfg = taxpayer_cfg.get("representative")
        representative = FiscalIdentity.from_dict(rep_cfg) if rep_cfg else None
        transport = SubmissionTransport(
            get_cert_path(),
            get_cert_password(),
            production=production,
            user_agent=f"Mozilla/5.0 (compatible; {system.name}/{system.version})",
        )
        return cls(system, taxpayer, transport, representative)

    def build(self, events: Sequence[InvoiceEvent]) -> bytes:
        """Serialize a batch without sending it (raises EncodingError on invalid input)."""
        document = build_document(self.taxpayer, self.representative, self.system, events)
        return serialize_document(document)

    def send(self, events: Sequence[InvoiceEvent]) -> SubmissionResult:
        """Serialize, submit and interpret one batch.

        EncodingError is raised before any network access. The outcome list
        must line up one-to-one with *events*; a different count is a
        ProtocolViolation.
        """
        document = self.build(events)
        env = "produccion" if self.transport.production else "pruebas"
        logger.info(
            "Sending %d %s record(s) to AEAT (%s)", len(events), events[0].operation.value, env
        )

        submission = self.transport.submit(document)
        response = parse_response(submission.response)

        if len(response.outcomes) != len(events):
            raise ProtocolViolation(
                f"AEAT devolvio {len(response.outcomes)} lineas para {len(events)} registros",
                submission.response,
            )

        for event, outcome in zip(events, response.outcomes):
            if outcome.invoice_id.invoice_number != event.invoice_id.invoice_number:
                logger.warning(
                    "Response line for %s does not echo submitted invoice %s",
                    outcome.invoice_id.invoice_number,
                    event.invoice_id.invoice_number,
                )
            if not outcome.accepted:
                logger.warning(
                    "Record %s rejected: [%s] %s",
                    event.invoice_id.invoice_number,
                    outcome.error_code,
                    outcome.error_description,
                )

        return SubmissionResult(submission=submission, response=response)

    def _send_kind(self, kind: OperationKind, events: Sequence[InvoiceEvent]) -> SubmissionResult:
        if events and events[0].operation is not kind:
            raise EncodingError(f"Se esperaban registros de {kind.value}")
        return self.send(events)

    def register(self, events: Sequence[InvoiceEvent]) -> SubmissionResult:
        return self._send_kind(OperationKind.REGISTRATION, events)

    def correct(self, events: Sequence[InvoiceEvent]) -> SubmissionResult:
        return self._send_kind(OperationKind.CORRECTIVE_SUBSTITUTION, events)

    def cancel(self, events: Sequence[InvoiceEvent]) -> SubmissionResult:
        return self._send_kind(OperationKind.CANCELLATION, events)
