from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

# AEAT L7 list: 02 NIF-IVA, 03 passport, 04 official id of the country of
# residence, 05 residence certificate, 06 other, 07 not registered
VALID_ID_TYPES = frozenset({"02", "03", "04", "05", "06", "07"})

VALID_INVOICE_TYPES = frozenset({"F1", "F2", "F3", "R1", "R2", "R3", "R4", "R5"})

VALID_CORRECTION_KINDS = frozenset({"S", "I"})


def validate_name(value: str) -> str:
    """Validate a legal name (NombreRazon): non-blank, at most 120 characters."""
    if not value or not value.strip():
        raise ValueError("NombreRazon: no puede estar vacio")
    if len(value) > 120:
        raise ValueError("NombreRazon: maximo 120 caracteres")
    return value


def validate_nif(value: str) -> str:
    """Validate a Spanish NIF: non-blank, 8 or 9 characters."""
    if not value or not value.strip():
        raise ValueError("NIF: no puede estar vacio")
    if not 8 <= len(value) <= 9:
        raise ValueError(f"NIF: debe tener 8 o 9 caracteres: '{value}'")
    return value


def validate_country(value: str) -> str:
    """Validate CodigoPais: exactly 2 uppercase letters (ISO 3166-1 alpha-2)."""
    if not re.fullmatch(r"[A-Z]{2}", value):
        raise ValueError("CodigoPais: debe tener 2 letras mayusculas (ISO 3166-1)")
    return value


def validate_id_type(value: str) -> str:
    """Validate IDType against the AEAT identification type codes."""
    if value not in VALID_ID_TYPES:
        raise ValueError(f"IDType: codigo invalido '{value}'")
    return value


def validate_invoice_type(value: str) -> str:
    if value not in VALID_INVOICE_TYPES:
        raise ValueError(f"TipoFactura: codigo invalido '{value}'")
    return value


def validate_correction_kind(value: str) -> str:
    if value not in VALID_CORRECTION_KINDS:
        raise ValueError(f"TipoRectificativa: debe ser 'S' o 'I', no '{value}'")
    return value


def parse_amount(value: object) -> Decimal:
    """Parse a monetary or rate value into a Decimal, keeping its scale.

    Floats are rejected: their binary representation would leak into the
    serialized text.
    """
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, (str, int)) and not isinstance(value, bool):
        try:
            d = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Importe invalido: '{value}'") from None
    else:
        raise ValueError(f"Importe invalido: {value!r} (use texto o Decimal)")
    if not d.is_finite():
        raise ValueError(f"Importe invalido: '{value}'")
    return d


def parse_date(value: object) -> date:
    """Parse an ISO date (YYYY-MM-DD) or pass a date through."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValueError(f"Fecha invalida: '{value}'. Use YYYY-MM-DD.") from None


def parse_timestamp(value: object) -> datetime:
    """Parse an ISO 8601 timestamp that must carry a UTC offset."""
    if isinstance(value, datetime):
        ts = value
    else:
        try:
            ts = datetime.fromisoformat(str(value))
        except ValueError:
            raise ValueError(f"Fecha/hora invalida: '{value}'") from None
    if ts.tzinfo is None or ts.utcoffset() is None:
        raise ValueError(f"Fecha/hora sin huso horario: '{value}'")
    return ts
