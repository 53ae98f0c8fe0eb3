from __future__ import annotations

import logging
import os
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

APP_NAME = "verifactu-client"
CONFIG_DIR_ENV = "VERIFACTU_CONFIG_DIR"

KEYRING_SERVICE = APP_NAME
KEYRING_USERNAME = "cert-pfx-password"


def get_config_dir() -> Path:
    """Directory holding system.yaml, taxpayer.yaml and an optional .env.

    VERIFACTU_CONFIG_DIR wins; then ``config/`` next to ``src/`` in a source
    checkout; then the per-user platform directory. Evaluated on every call.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override)
    checkout = Path(__file__).resolve().parents[2] / "config"
    if checkout.is_dir():
        return checkout
    return Path(platformdirs.user_config_dir(APP_NAME))


def _dotenv_files() -> list[Path]:
    """.env files in load order; values already set are never overridden."""
    files = [Path.cwd() / ".env"]
    config_dir = get_config_dir()
    if config_dir.is_dir():
        files.append(config_dir / ".env")
    return files


for _env_file in _dotenv_files():
    load_dotenv(_env_file)


# --- AEAT service ---

SOAPENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
_AEAT_WS = (
    "https://www2.agenciatributaria.gob.es/static_files/common/internet/dep/"
    "aplicaciones/es/aeat/tike/cont/ws"
)
SUM_NS = f"{_AEAT_WS}/SuministroLR.xsd"
SUM1_NS = f"{_AEAT_WS}/SuministroInformacion.xsd"

ENDPOINTS = {
    "pruebas": "https://prewww1.aeat.es",
    "produccion": "https://www1.agenciatributaria.gob.es",
}

SUBMIT_PATH = "/wlpl/TIKE-CONT/ws/SistemaFacturacion/VerifactuSOAP"

AEAT_TIMEOUT = 60


def get_endpoint(production: bool) -> str:
    """Full VERI*FACTU SOAP URL for the selected environment."""
    return ENDPOINTS["produccion" if production else "pruebas"] + SUBMIT_PATH


# --- Certificate ---


def _get_keyring_password() -> str | None:
    # headless hosts have no keyring backend
    try:
        import keyring

        return keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
    except Exception as exc:
        logger.debug("Keyring lookup failed: %s", exc)
        return None


def _set_keyring_password(password: str) -> bool:
    """Store the certificate password in the OS keyring; False if no backend accepts it."""
    try:
        import keyring

        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, password)
    except Exception as exc:
        logger.debug("Keyring store failed: %s", exc)
        return False
    return True


def get_cert_path() -> str:
    """Path of the PKCS#12 client certificate (CERT_PFX_PATH). KeyError if unset."""
    return os.environ["CERT_PFX_PATH"]


def get_cert_password() -> str | None:
    """CERT_PFX_PASSWORD, else the keyring entry, else None (unencrypted bundle)."""
    password = os.environ.get("CERT_PFX_PASSWORD")
    if password is None:
        password = _get_keyring_password()
    return password


# --- YAML files ---


def load_yaml(path: Path) -> dict:
    return yaml.safe_load(path.read_text(encoding="utf-8")) or {}


def load_system() -> dict:
    """SistemaInformatico descriptor from system.yaml."""
    return load_yaml(get_config_dir() / "system.yaml")


def load_taxpayer() -> dict:
    """``taxpayer`` and optional ``representative`` entries from taxpayer.yaml."""
    return load_yaml(get_config_dir() / "taxpayer.yaml")
