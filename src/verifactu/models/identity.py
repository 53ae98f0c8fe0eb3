from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Literal, Union

from verifactu.utils.validators import (
    validate_country,
    validate_id_type,
    validate_name,
    validate_nif,
)


@dataclass(frozen=True)
class FiscalIdentity:
    """Spanish fiscal party identified by NIF (taxpayer, representative or recipient)."""

    kind: ClassVar[Literal["domestic"]] = "domestic"

    name: str
    nif: str

    @classmethod
    def from_dict(cls, d: dict) -> FiscalIdentity:
        """Create a FiscalIdentity from a YAML-loaded dict, validating field shape."""
        return cls(
            name=validate_name(str(d["name"])),
            nif=validate_nif(str(d["nif"])),
        )


@dataclass(frozen=True)
class ForeignFiscalIdentity:
    """Non-Spanish party identified by country, id type (AEAT IDType) and id value."""

    kind: ClassVar[Literal["foreign"]] = "foreign"

    name: str
    country: str
    id_type: str
    id_value: str

    @classmethod
    def from_dict(cls, d: dict) -> ForeignFiscalIdentity:
        return cls(
            name=validate_name(str(d["name"])),
            country=validate_country(str(d["country"])),
            id_type=validate_id_type(str(d["id_type"]).zfill(2)),
            id_value=str(d["id_value"]),
        )


Recipient = Union[FiscalIdentity, ForeignFiscalIdentity]


def recipient_from_dict(d: dict) -> Recipient:
    """Pick the recipient variant from a dict: ``nif`` means domestic, ``country`` foreign."""
    if "nif" in d and "country" in d:
        raise ValueError("Destinatario: use 'nif' o 'country'/'id_type'/'id_value', no ambos")
    if "nif" in d:
        return FiscalIdentity.from_dict(d)
    if "country" in d:
        return ForeignFiscalIdentity.from_dict(d)
    raise ValueError("Destinatario: falta 'nif' o 'country'")
