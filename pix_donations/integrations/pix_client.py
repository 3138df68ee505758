"""
Pix gateway client (Efí Pix API) with credential refresh and error annotation.

Implements:
- OAuth2 client-credentials token, refreshed lazily before expiry
- Mutual TLS identity built once per client instance
- Immediate charge creation and charge detail lookup
- Webhook URL registration
- Classification of every gateway failure as ExternalError
"""
import asyncio
import base64
import os
import ssl
import tempfile
import time
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import httpx
import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from pix_donations.config import Settings, get_settings
from pix_donations.core.models import Charge
from pix_donations.errors import ExternalError
from pix_donations.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class ChargeStatus(str, Enum):
    """Charge statuses reported by the gateway."""

    ACTIVE = "ATIVA"
    COMPLETED = "CONCLUIDA"
    REMOVED_BY_RECEIVER = "REMOVIDA_PELO_USUARIO_RECEBEDOR"
    REMOVED_BY_PSP = "REMOVIDA_PELO_PSP"


def build_ssl_context(settings: Settings) -> ssl.SSLContext:
    """
    Build the TLS context carrying the client certificate.

    Uses ``pix_certificate_path`` (PEM with certificate and key) when set,
    otherwise decodes the base64 PKCS#12 bundle from
    ``pix_certificate_base64``.

    Raises:
        ExternalError: If no certificate is configured or it cannot be loaded
    """
    context = ssl.create_default_context()

    if settings.pix_certificate_path:
        try:
            context.load_cert_chain(settings.pix_certificate_path)
        except (OSError, ssl.SSLError) as e:
            raise ExternalError(f"Failed to load client certificate: {e}", original_error=e)
        return context

    if not settings.pix_certificate_base64:
        raise ExternalError("No client certificate configured for the Pix gateway")

    try:
        password = settings.pix_certificate_password.encode() or None
        key, cert, extra_certs = pkcs12.load_key_and_certificates(
            base64.b64decode(settings.pix_certificate_base64), password
        )
    except ValueError as e:
        raise ExternalError(f"Invalid PKCS#12 client certificate: {e}", original_error=e)
    if key is None or cert is None:
        raise ExternalError("PKCS#12 bundle lacks a private key or certificate")

    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ) + cert.public_bytes(serialization.Encoding.PEM)
    for extra in extra_certs or []:
        pem += extra.public_bytes(serialization.Encoding.PEM)

    # load_cert_chain only reads from files
    fd, path = tempfile.mkstemp(suffix=".pem")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(pem)
        context.load_cert_chain(path)
    except (OSError, ssl.SSLError) as e:
        raise ExternalError(f"Failed to load client certificate: {e}", original_error=e)
    finally:
        os.unlink(path)

    logger.info("pix_client_certificate_loaded", source="pkcs12")
    return context


def parse_gateway_time(value: str) -> datetime:
    """Parse the gateway's ISO-8601 timestamps (``Z`` suffix allowed)."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class PixClient:
    """
    Wrapper for the Pix gateway API.

    One instance is created per process; the TLS identity and the access
    token live on the instance.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the client.

        Args:
            settings: Optional settings (loaded from the environment otherwise)
            http_client: Optional preconfigured HTTP client
            clock: Monotonic clock used for token expiry
        """
        self.settings = settings or get_settings()
        self._client = http_client
        self._owns_client = http_client is None
        self._clock = clock
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

        logger.info(
            "pix_client_initialized",
            base_url=self.settings.gateway_base_url,
            sandbox=self.settings.pix_sandbox,
        )

    def _ensure_client(self) -> httpx.AsyncClient:
        """Create the mutual-TLS HTTP client on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.gateway_base_url,
                verify=build_ssl_context(self.settings),
            )
        return self._client

    def _token_is_fresh(self) -> bool:
        margin = self.settings.pix_token_refresh_margin_seconds
        return (
            self._access_token is not None
            and self._clock() < self._token_expires_at - margin
        )

    async def _get_access_token(self) -> str:
        """
        Return a valid access token, requesting a new one if needed.

        Raises:
            ExternalError: If the token cannot be obtained
        """
        if self._token_is_fresh():
            return self._access_token  # type: ignore[return-value]

        async with self._token_lock:
            if self._token_is_fresh():
                return self._access_token  # type: ignore[return-value]

            logger.info("pix_token_refresh_started")
            body = await self._send(
                "token",
                "POST",
                "/oauth/token",
                json={"grant_type": "client_credentials"},
                auth=(self.settings.pix_client_id, self.settings.pix_client_secret),
            )

            access_token = body.get("access_token")
            expires_in = body.get("expires_in")
            if not access_token or not expires_in:
                raise ExternalError("Incomplete response from the gateway token endpoint")

            try:
                lifetime = float(expires_in)
            except (TypeError, ValueError) as e:
                raise ExternalError(
                    f"Invalid token lifetime from the gateway: {expires_in!r}",
                    original_error=e,
                ) from e

            self._access_token = access_token
            self._token_expires_at = self._clock() + lifetime
            logger.info("pix_token_refreshed", expires_in=expires_in)
            return access_token

    async def _send(
        self,
        operation: str,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        auth: Optional[tuple[str, str]] = None,
        tx_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Perform one gateway request and decode its JSON body.

        Requests without ``auth`` carry the bearer token.

        Raises:
            ExternalError: On transport failure, error status or invalid body
        """
        client = self._ensure_client()
        headers: Dict[str, str] = {}
        if auth is None:
            headers["Authorization"] = f"Bearer {await self._get_access_token()}"

        start_time = time.monotonic()
        status = "error"
        try:
            response = await client.request(
                method, path, json=json, headers=headers, auth=auth
            )
            response.raise_for_status()
            body = response.json() if response.content else {}
            status = "success"
            return body

        except httpx.HTTPStatusError as e:
            raise self._status_error(operation, e, tx_id)

        except httpx.HTTPError as e:
            logger.error(
                "pix_gateway_transport_error",
                operation=operation,
                tx_id=tx_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ExternalError(
                f"Gateway request '{operation}' failed: {type(e).__name__}: {e}",
                tx_id=tx_id,
                original_error=e,
            )

        except ValueError as e:
            logger.error("pix_gateway_invalid_body", operation=operation, tx_id=tx_id)
            raise ExternalError(
                f"Gateway returned an invalid body for '{operation}'",
                tx_id=tx_id,
                original_error=e,
            )

        finally:
            metrics.record_gateway_call(operation, status, time.monotonic() - start_time)

    @staticmethod
    def _status_error(
        operation: str, error: httpx.HTTPStatusError, tx_id: Optional[str]
    ) -> ExternalError:
        """Build an ExternalError annotated with the gateway's own error fields."""
        response = error.response
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        name = body.get("nome") or body.get("name") or body.get("error")
        detail = (
            body.get("mensagem")
            or body.get("message")
            or body.get("error_description")
            or response.text
        )

        logger.error(
            "pix_gateway_error",
            operation=operation,
            tx_id=tx_id,
            status_code=response.status_code,
            gateway_code=name,
            gateway_message=detail,
        )

        return ExternalError(
            f"Gateway error on '{operation}': {name or 'unknown error'} - {detail} "
            f"(status {response.status_code})",
            gateway_code=name,
            tx_id=tx_id,
            original_error=error,
        )

    async def create_charge(
        self, tx_id: str, amount: Decimal, payer_tax_id: str, payer_name: str
    ) -> Charge:
        """
        Create an immediate charge (dynamic QR code).

        Args:
            tx_id: Freshly generated transaction id
            amount: Charge amount
            payer_tax_id: Digits-only payer tax id
            payer_name: Payer display name

        Returns:
            Charge: Presentation data of the created charge

        Raises:
            ExternalError: If the call fails or the response omits a required field
        """
        body = {
            "calendario": {"expiracao": self.settings.pix_charge_expiration_seconds},
            "devedor": {"cpf": payer_tax_id, "nome": payer_name},
            "valor": {"original": f"{amount:.2f}"},
            "chave": self.settings.pix_key,
            "solicitacaoPagador": f"Donation made by: {payer_name}",
        }

        logger.info("creating_pix_charge", tx_id=tx_id, amount=f"{amount:.2f}")

        response = await self._send(
            "create_charge", "PUT", f"/v2/cob/{quote(tx_id)}", json=body, tx_id=tx_id
        )

        loc = response.get("loc") if isinstance(response.get("loc"), dict) else {}
        calendar = response.get("calendario") if isinstance(response.get("calendario"), dict) else {}
        fields = {
            "txid": response.get("txid"),
            "loc.id": loc.get("id"),
            "location": response.get("location") or loc.get("location"),
            "pixCopiaECola": response.get("pixCopiaECola"),
            "calendario.criacao": calendar.get("criacao"),
        }
        missing = [name for name, value in fields.items() if value in (None, "")]
        if missing:
            logger.error("pix_charge_incomplete", tx_id=tx_id, missing=missing)
            raise ExternalError(
                f"Incomplete charge response from the gateway, missing: {', '.join(missing)}",
                tx_id=tx_id,
            )

        try:
            created_at = parse_gateway_time(str(fields["calendario.criacao"]))
        except ValueError as e:
            raise ExternalError(
                f"Gateway returned an invalid charge creation time: {fields['calendario.criacao']}",
                tx_id=tx_id,
                original_error=e,
            )

        charge = Charge(
            tx_id=str(fields["txid"]),
            loc_id=str(fields["loc.id"]),
            qr_code=str(fields["location"]),
            copy_paste=str(fields["pixCopiaECola"]),
            created_at=created_at,
        )
        logger.info("pix_charge_created", tx_id=charge.tx_id, loc_id=charge.loc_id)
        return charge

    async def get_charge_details(self, tx_id: str) -> Dict[str, Any]:
        """
        Fetch the authoritative charge record.

        Args:
            tx_id: Gateway transaction id

        Returns:
            Dict[str, Any]: Raw charge record as returned by the gateway

        Raises:
            ExternalError: If the lookup fails
        """
        logger.info("fetching_pix_charge_details", tx_id=tx_id)
        return await self._send(
            "charge_details", "GET", f"/v2/cob/{quote(tx_id)}", tx_id=tx_id
        )

    async def register_webhook(self, webhook_url: str) -> None:
        """
        Point the gateway's notifications for our Pix key at ``webhook_url``.

        Raises:
            ExternalError: If registration fails
        """
        await self._send(
            "register_webhook",
            "PUT",
            f"/v2/webhook/{quote(self.settings.pix_key, safe='')}",
            json={"webhookUrl": webhook_url},
        )
        logger.info("pix_webhook_registered", webhook_url=webhook_url)

    async def check_credentials(self) -> bool:
        """Ensure an access token can be obtained."""
        await self._get_access_token()
        return True

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
