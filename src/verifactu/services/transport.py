from __future__ import annotations

import logging
from dataclasses import dataclass

import requests.exceptions
from requests_pkcs12 import get, post

from verifactu.config import AEAT_TIMEOUT, get_endpoint
from verifactu.services.exceptions import TransportError
from verifactu.services.http_retry import CONNECTIVITY, retry_call

logger = logging.getLogger(__name__)

CONTENT_TYPE = "text/xml; charset=utf-8"


@dataclass(frozen=True)
class Submission:
    """What was sent and what came back for one POST."""

    url: str
    document: bytes
    response: bytes


class SubmissionTransport:
    """Posts SOAP documents to the AEAT VERI*FACTU endpoint over mTLS.

    The PKCS#12 bundle is handed to requests_pkcs12 as-is; this class does not
    open or validate it. No state is kept between calls.
    """

    def __init__(
        self,
        pfx_path: str,
        pfx_password: str | None = None,
        *,
        production: bool = False,
        user_agent: str | None = None,
        timeout: float = AEAT_TIMEOUT,
    ) -> None:
        if not pfx_path:
            raise ValueError("Se requiere un certificado (.pfx/.p12) para conectar con AEAT")
        self.pfx_path = pfx_path
        self.pfx_password = pfx_password or ""
        self.production = production
        self.url = get_endpoint(production)
        self.timeout = timeout
        self.headers = {"Content-Type": CONTENT_TYPE}
        if user_agent:
            self.headers["User-Agent"] = user_agent

    def submit(self, document: bytes) -> Submission:
        """Send one document and return it together with the raw response body.

        Raises TransportError on connection, TLS or timeout failures, on a
        certificate bundle that cannot be loaded and on non-2xx responses.
        Never retries.
        """
        try:
            resp = post(
                self.url,
                data=document,
                headers=self.headers,
                pkcs12_filename=self.pfx_path,
                pkcs12_password=self.pfx_password,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"Fallo de conexion con AEAT: {exc}") from exc
        except (OSError, ValueError) as exc:
            # unreadable bundle or wrong password, raised while building the TLS context
            raise TransportError(f"No se pudo establecer el canal mTLS: {exc}") from exc

        if not resp.ok:
            body = resp.text[:500] if resp.text else ""
            raise TransportError(
                f"Error en la API AEAT ({resp.status_code}): {body}",
                status_code=resp.status_code,
                body=body,
            )

        logger.debug("AEAT responded %s (%d bytes)", resp.status_code, len(resp.content))
        return Submission(url=self.url, document=document, response=resp.content)

    def check_connectivity(self) -> None:
        """Probe the endpoint with a GET to prove the TLS handshake succeeds.

        Any HTTP status is accepted. Connection errors are retried, then
        raised as TransportError.
        """

        def _do_get():
            return get(
                self.url,
                headers=self.headers,
                pkcs12_filename=self.pfx_path,
                pkcs12_password=self.pfx_password,
                timeout=self.timeout,
            )

        try:
            retry_call(_do_get, CONNECTIVITY)
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"AEAT no accesible: {exc}") from exc
        except (OSError, ValueError) as exc:
            raise TransportError(f"No se pudo establecer el canal mTLS: {exc}") from exc
