"""
QRIS payment gateway client.

Thin async wrapper over the H2H deposit API:
- GET /h2h/deposit/create?nominal=&metode=   -> deposit with QR image
- GET /h2h/deposit/status?id=                -> current deposit status

Every failure (transport, non-2xx, `success: false`, missing fields) is
raised as GatewayError. The deposit lifecycle itself is owned by the gateway;
this client only creates and observes it.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from storebot.core.config import Settings, settings as default_settings
from storebot.core.exceptions import GatewayError
from storebot.schemas.payment import DepositRequest, DepositState, DepositStatus

logger = logging.getLogger(__name__)


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class PaymentGateway:
    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or default_settings
        self._client = client or httpx.AsyncClient(
            base_url=self.config.PAYMENT_API_BASE_URL,
            timeout=self.config.PAYMENT_TIMEOUT_SECONDS,
            headers={"X-APIKEY": self.config.PAYMENT_API_KEY},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as e:
            logger.warning(f"[Gateway] Timeout on {path}")
            raise GatewayError(f"Timeout calling {path}") from e
        except httpx.HTTPError as e:
            logger.warning(f"[Gateway] Transport error on {path}: {e}")
            raise GatewayError(f"Transport error calling {path}: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayError(f"Non-JSON response from {path} (HTTP {response.status_code})") from e

        if response.status_code >= 400 or not isinstance(body, dict) or not body.get("success"):
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(f"[Gateway] {path} rejected: HTTP {response.status_code}, message={message}")
            raise GatewayError(message or f"API error on {path} (HTTP {response.status_code})")

        data = body.get("data")
        if not isinstance(data, dict):
            raise GatewayError(f"Response from {path} has no data")
        return data

    async def create_deposit(self, nominal: int) -> DepositRequest:
        """Create a QRIS deposit. The QR payload must be decodable."""
        data = await self._get(
            "/h2h/deposit/create",
            {"nominal": nominal, "metode": self.config.PAYMENT_METHOD},
        )

        deposit_id = data.get("id")
        qr_image = data.get("qr_image")
        if not deposit_id or not isinstance(qr_image, str) or not qr_image:
            raise GatewayError("Deposit response lacks id or QR payload")

        deposit = DepositRequest(
            id=str(deposit_id),
            nominal=_as_int(data.get("nominal"), nominal),
            credit_amount=_as_int(data.get("get_balance")) or nominal,
            qr_image=qr_image,
        )
        if not deposit.qr_png():
            raise GatewayError(f"Deposit {deposit.id} QR payload is not valid base64")

        logger.info(f"[Gateway] Created deposit {deposit.id}: nominal={nominal}, credit={deposit.credit_amount}")
        return deposit

    async def check_status(self, deposit_id: str) -> DepositStatus:
        data = await self._get("/h2h/deposit/status", {"id": deposit_id})
        nominal = _as_int(data.get("nominal"))
        return DepositStatus(
            deposit_id=deposit_id,
            status=DepositState.from_gateway(data.get("status")),
            nominal=nominal,
            credit_amount=_as_int(data.get("get_balance")) or nominal,
        )
