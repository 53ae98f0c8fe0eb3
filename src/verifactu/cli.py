from __future__ import annotations

import argparse
import getpass
import sys
from importlib.resources import files
from pathlib import Path

from verifactu.services.exceptions import VerifactuError


def _init_config() -> None:
    """Copy bundled config templates to the user's config directory."""
    from verifactu.config import _set_keyring_password, get_config_dir

    config_dir = get_config_dir()
    templates = files("verifactu") / "templates"
    config_dir.mkdir(parents=True, exist_ok=True)

    copied = 0
    for rel in ["system.yaml.example", "taxpayer.yaml.example", "records.yaml.example"]:
        dest = config_dir / rel
        if dest.exists():
            print(f"  ya existe: {dest}")
            continue
        src = templates / rel
        with src.open("rb") as f:
            dest.write_bytes(f.read())
        print(f"  creado: {dest}")
        copied += 1

    print()
    print(f"Configuracion: {config_dir}")

    try:
        answer = input("Guardar la contraseña del certificado en el keychain? [s/N]: ")
    except (EOFError, KeyboardInterrupt):
        print()
        answer = ""
    if answer.strip().lower() in ("s", "si", "y", "yes"):
        if _set_keyring_password(getpass.getpass("Contraseña del certificado: ")):
            print("  Contraseña guardada en el keychain del sistema.")
        else:
            print("  ERROR: keychain no disponible. Defina CERT_PFX_PASSWORD en .env.")

    if copied:
        print()
        print("Proximos pasos:")
        print("  1. Renombre system.yaml.example y taxpayer.yaml.example quitando '.example'")
        print("  2. Defina CERT_PFX_PATH (y CERT_PFX_PASSWORD) en .env")
        print("  3. Ejecute: verifactu check")


def _configured_nifs() -> set[str]:
    """NIFs of the taxpayer and representative from taxpayer.yaml, if it exists."""
    from verifactu.config import load_taxpayer

    try:
        cfg = load_taxpayer()
    except FileNotFoundError:
        return set()
    parties = [cfg.get("taxpayer"), cfg.get("representative")]
    return {str(p["nif"]) for p in parties if p and p.get("nif")}


def _check(production: bool) -> int:
    """Validate the certificate and probe the AEAT endpoint."""
    from verifactu.config import get_cert_password, get_cert_path
    from verifactu.services.transport import SubmissionTransport
    from verifactu.utils.certificate import validate_certificate

    try:
        pfx_path = get_cert_path()
    except KeyError:
        print("Error: CERT_PFX_PATH no definido.")
        return 2
    password = get_cert_password()

    try:
        info = validate_certificate(pfx_path, password)
    except (OSError, ValueError) as e:
        print(f"Error: certificado invalido o contraseña incorrecta: {e}")
        return 2
    print(f"Sujeto: {info.subject}")
    print(f"Valido hasta: {info.not_after:%d-%m-%Y}")
    if not info.is_valid():
        print("AVISO: certificado fuera de su periodo de validez")
    nifs = _configured_nifs()
    if info.holder_id and nifs and info.holder_id not in nifs:
        print(f"AVISO: el certificado es de {info.holder_id}, no de {', '.join(sorted(nifs))}")

    transport = SubmissionTransport(pfx_path, password, production=production)
    try:
        transport.check_connectivity()
    except VerifactuError as e:
        print(f"Error: {e}")
        return 2
    print(f"Conexion correcta con {transport.url}")
    return 0


def _load_events(path: Path) -> list:
    from verifactu.config import load_yaml
    from verifactu.models.record import InvoiceEvent

    data = load_yaml(path)
    return [InvoiceEvent.from_dict(d) for d in data.get("records", [])]


def _send(path: Path, production: bool, dry_run: bool) -> int:
    from verifactu.services.submission import VerifactuClient

    try:
        events = _load_events(path)
        client = VerifactuClient.from_config(production=production)
        if dry_run:
            sys.stdout.write(client.build(events).decode("utf-8"))
            sys.stdout.write("\n")
            return 0
        result = client.send(events)
    except (KeyError, ValueError, OSError, VerifactuError) as e:
        print(f"Error: {e}")
        return 2

    response = result.response
    if response.csv:
        print(f"CSV: {response.csv}")
    for event, outcome in zip(events, response.outcomes):
        line = f"{event.invoice_id.invoice_number}: {outcome.status.value}"
        if outcome.error_code:
            line += f" [{outcome.error_code}] {outcome.error_description or ''}"
        print(line)
    return 0 if not response.rejected else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="verifactu", description="Cliente VERI*FACTU (AEAT)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="crear archivos de configuracion de ejemplo")

    check = sub.add_parser("check", help="validar certificado y conexion con AEAT")
    check.add_argument("--production", action="store_true", help="usar el entorno de produccion")

    send = sub.add_parser("send", help="enviar registros desde un archivo YAML")
    send.add_argument("file", type=Path)
    send.add_argument("--production", action="store_true", help="usar el entorno de produccion")
    send.add_argument("--dry-run", action="store_true", help="mostrar el XML sin enviarlo")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for the verifactu command."""
    args = _build_parser().parse_args(argv)

    if args.command == "init":
        _init_config()
        return
    if args.command == "check":
        sys.exit(_check(args.production))
    sys.exit(_send(args.file, args.production, args.dry_run))


if __name__ == "__main__":
    main()
