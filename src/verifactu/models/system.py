from __future__ import annotations

from dataclasses import dataclass

from verifactu.utils.validators import validate_name, validate_nif


@dataclass(frozen=True)
class SystemDescriptor:
    """Invoicing software (SistemaInformatico) that produces the records."""

    vendor_name: str
    vendor_nif: str
    name: str
    id: str  # 2 characters assigned by the vendor
    version: str
    installation_number: str
    only_supports_verifactu: bool = True
    supports_multiple_taxpayers: bool = False
    has_multiple_taxpayers: bool = False

    @classmethod
    def from_dict(cls, d: dict) -> SystemDescriptor:
        """Create a SystemDescriptor from a YAML-loaded dict, applying defaults for flags."""
        return cls(
            vendor_name=validate_name(str(d["vendor_name"])),
            vendor_nif=validate_nif(str(d["vendor_nif"])),
            name=str(d["name"]),
            id=str(d["id"]),
            version=str(d["version"]),
            installation_number=str(d["installation_number"]),
            only_supports_verifactu=bool(d.get("only_supports_verifactu", True)),
            supports_multiple_taxpayers=bool(d.get("supports_multiple_taxpayers", False)),
            has_multiple_taxpayers=bool(d.get("has_multiple_taxpayers", False)),
        )
