"""
Venipak carrier client

Endpoints (relative to VENIPAK_BASE_URL, default https://go.venipak.lt):
- POST /import/send_auth_basic.php   shipment import, text/xml, HTTP basic auth
- POST /ws/print_label               label PDF, form fields user/pass/pack_no/format
- GET  /ws/tracking.php              tracking, type=1&output=json&code=<pack_no>
- GET  /ws/get_pickup_points         public pickup point list (JSON)

No automatic retries here: shipment creation is not idempotent on the
carrier side, so retrying is a caller decision. Every method returns a
result object; transport failures are captured, never raised.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.exceptions import (
    CarrierNotConfiguredError,
    CarrierParseError,
    CarrierTransportError,
)
from app.modules.shipping.carriers import register_carrier
from app.modules.shipping.carriers.base import (
    BaseCarrier,
    CarrierCode,
    CarrierResponse,
    LabelResponse,
)
from app.modules.shipping.responses import is_pdf

logger = logging.getLogger(__name__)

IMPORT_PATH = "/import/send_auth_basic.php"
LABEL_PATH = "/ws/print_label"
TRACKING_PATH = "/ws/tracking.php"
PICKUP_POINTS_PATH = "/ws/get_pickup_points"

DEFAULT_TIMEOUT_SECONDS = 10.0
# "other" = 100x150mm sticker; "a4" = four labels per page
DEFAULT_LABEL_FORMAT = "other"


@dataclass(frozen=True)
class VenipakCredentials:
    """Explicit configuration handed to the client at construction."""
    base_url: str
    username: str
    password: str
    account_id: str
    first_sequence_number: int

    @property
    def is_complete(self) -> bool:
        return bool(self.username and self.password)

    @classmethod
    def from_settings(cls, settings) -> "VenipakCredentials":
        return cls(
            base_url=settings.VENIPAK_BASE_URL.rstrip("/"),
            username=settings.VENIPAK_USERNAME,
            password=settings.VENIPAK_PASSWORD,
            account_id=settings.VENIPAK_ACCOUNT_ID,
            first_sequence_number=settings.VENIPAK_FIRST_PACK_NUMBER,
        )


@register_carrier(CarrierCode.VENIPAK)
class VenipakClient(BaseCarrier):
    """
    Venipak HTTP adapter on httpx.

    Args:
        credentials: VenipakCredentials
        timeout: Per-request timeout in seconds
        label_format: Venipak print_label format
        http_client: Pre-built AsyncClient (tests pass one with a MockTransport)
    """

    def __init__(
        self,
        credentials: VenipakCredentials,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        label_format: str = DEFAULT_LABEL_FORMAT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.credentials = credentials
        self.timeout = timeout
        self.label_format = label_format
        self._http_client = http_client

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.VENIPAK

    @property
    def carrier_name(self) -> str:
        return "Venipak"

    @property
    def is_configured(self) -> bool:
        return self.credentials.is_complete

    def _url(self, path: str) -> str:
        return f"{self.credentials.base_url}{path}"

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client on shutdown."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def _not_configured(self) -> CarrierNotConfiguredError:
        return CarrierNotConfiguredError(
            "Venipak credentials not configured",
            details={"base_url": self.credentials.base_url},
        )

    @staticmethod
    def _http_failure(response: httpx.Response, action: str) -> CarrierTransportError:
        return CarrierTransportError(
            f"Venipak {action} failed with HTTP {response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )

    @staticmethod
    def _transport_failure(exc: httpx.HTTPError, action: str) -> CarrierTransportError:
        return CarrierTransportError(f"Venipak {action} request failed: {exc.__class__.__name__}: {exc}")

    async def create_shipment(self, payload: str) -> CarrierResponse:
        if not self.is_configured:
            return CarrierResponse(ok=False, error=self._not_configured())

        client = await self._get_http_client()
        try:
            response = await client.post(
                self._url(IMPORT_PATH),
                content=payload.encode("utf-8"),
                headers={"Content-Type": "text/xml"},
                auth=(self.credentials.username, self.credentials.password),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Venipak shipment import transport error: {e}")
            return CarrierResponse(ok=False, error=self._transport_failure(e, "shipment import"))

        logger.info(f"Venipak shipment import responded HTTP {response.status_code}")

        if not response.is_success:
            return CarrierResponse(
                ok=False,
                status_code=response.status_code,
                body=response.text,
                error=self._http_failure(response, "shipment import"),
            )

        return CarrierResponse(ok=True, status_code=response.status_code, body=response.text)

    async def fetch_label(self, pack_no: str) -> LabelResponse:
        if not self.is_configured:
            return LabelResponse(ok=False, error=self._not_configured())

        client = await self._get_http_client()
        try:
            response = await client.post(
                self._url(LABEL_PATH),
                data={
                    "user": self.credentials.username,
                    "pass": self.credentials.password,
                    "pack_no": pack_no,
                    "format": self.label_format,
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Venipak label transport error for {pack_no}: {e}")
            return LabelResponse(ok=False, error=self._transport_failure(e, "label"))

        if not response.is_success:
            return LabelResponse(ok=False, error=self._http_failure(response, "label"))

        if not is_pdf(response.content):
            return LabelResponse(
                ok=False,
                error=CarrierParseError(
                    f"Venipak label for {pack_no} is not a PDF",
                    body=response.text,
                ),
            )

        return LabelResponse(ok=True, pdf=response.content)

    async def fetch_tracking(self, pack_no: str) -> CarrierResponse:
        client = await self._get_http_client()
        try:
            response = await client.get(
                self._url(TRACKING_PATH),
                params={"type": 1, "output": "json", "code": pack_no},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Venipak tracking transport error for {pack_no}: {e}")
            return CarrierResponse(ok=False, error=self._transport_failure(e, "tracking"))

        if not response.is_success:
            return CarrierResponse(
                ok=False,
                status_code=response.status_code,
                body=response.text,
                error=self._http_failure(response, "tracking"),
            )

        return CarrierResponse(ok=True, status_code=response.status_code, body=response.text)

    async def fetch_pickup_points(self) -> CarrierResponse:
        client = await self._get_http_client()
        try:
            response = await client.get(self._url(PICKUP_POINTS_PATH), timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch Venipak pickup points: {e}")
            return CarrierResponse(ok=False, error=self._transport_failure(e, "pickup points"))

        if not response.is_success:
            logger.error(f"Venipak pickup points error: HTTP {response.status_code}")
            return CarrierResponse(
                ok=False,
                status_code=response.status_code,
                body=response.text,
                error=self._http_failure(response, "pickup points"),
            )

        return CarrierResponse(ok=True, status_code=response.status_code, body=response.text)

    def tracking_url(self, pack_no: str) -> str:
        return f"{self._url(TRACKING_PATH)}?type=1&output=html&code={pack_no}"
