"""
Flutterwave v3 client: transaction verification and payout transfers.

Verification is a read and is retried on transient failures. Transfers move
money and are never retried here; the caller decides whether to try again.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class PaymentGatewayError(Exception):
    """
    Gateway call failed.

    ``rejected`` is True when Flutterwave answered but refused the request
    (unknown transaction, invalid account); False for outages and timeouts.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        rejected: bool = False,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.rejected = rejected
        self.response_data = response_data or {}


@dataclass
class TransactionVerification:
    transaction_id: str
    status: str
    amount: float
    currency: str | None
    tx_ref: str | None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class TransferResult:
    transfer_id: str | None
    status: str | None
    reference: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class TransferRequest:
    account_bank: str
    account_number: str
    amount: float
    narration: str
    reference: str
    currency: str = "NGN"
    beneficiary_name: str | None = None


class PaymentGateway(Protocol):
    async def verify_transaction(self, transaction_id: str) -> TransactionVerification: ...

    async def initiate_transfer(self, request: TransferRequest) -> TransferResult: ...


class FlutterwaveClient:
    def __init__(
        self,
        secret_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.FLUTTERWAVE_SECRET_KEY
        self.base_url = (base_url or settings.FLUTTERWAVE_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_REQUEST_TIMEOUT

    def _headers(self) -> dict[str, str]:
        if not self.secret_key:
            raise PaymentGatewayError("Flutterwave secret key is not configured")
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def verify_transaction(self, transaction_id: str) -> TransactionVerification:
        """
        Fetch the gateway's view of a checkout transaction.

        Raises:
            PaymentGatewayError: network failure, non-2xx, or non-success body
        """
        url = f"{self.base_url}/transactions/{transaction_id}/verify"
        headers = self._headers()

        try:
            response = await self._get_with_retry(url, headers)
        except httpx.RequestError as e:
            logger.error(
                "Flutterwave verification request failed",
                transaction_id=transaction_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentGatewayError(f"Flutterwave unreachable: {e}") from e

        body = self._parse_body(response)

        if response.status_code >= 400 or body.get("status") != "success":
            logger.warning(
                "Flutterwave verification rejected",
                transaction_id=transaction_id,
                status_code=response.status_code,
                message=body.get("message"),
            )
            raise PaymentGatewayError(
                body.get("message") or "Payment verification failed with Flutterwave",
                status_code=response.status_code,
                rejected=response.status_code < 500,
                response_data=body,
            )

        data = body.get("data") or {}
        try:
            amount = float(data.get("amount") or 0)
        except (TypeError, ValueError):
            amount = 0.0

        logger.info(
            "Flutterwave transaction verified",
            transaction_id=transaction_id,
            gateway_status=data.get("status"),
        )

        return TransactionVerification(
            transaction_id=str(transaction_id),
            status=str(data.get("status") or ""),
            amount=amount,
            currency=data.get("currency"),
            tx_ref=data.get("tx_ref"),
            raw=data,
        )

    async def initiate_transfer(self, request: TransferRequest) -> TransferResult:
        """
        Send money to a bank account. Single attempt.

        Raises:
            PaymentGatewayError: the transfer was not accepted
        """
        payload = {
            "account_bank": request.account_bank,
            "account_number": request.account_number,
            "amount": request.amount,
            "narration": request.narration,
            "currency": request.currency,
            "reference": request.reference,
            "debit_currency": request.currency,
        }
        if request.beneficiary_name:
            payload["beneficiary_name"] = request.beneficiary_name

        headers = self._headers()

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/transfers", json=payload, headers=headers
                )
        except httpx.RequestError as e:
            logger.error(
                "Flutterwave transfer request failed",
                reference=request.reference,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentGatewayError(f"Flutterwave unreachable: {e}") from e

        body = self._parse_body(response)

        if response.status_code >= 400 or body.get("status") != "success":
            logger.error(
                "Flutterwave transfer rejected",
                reference=request.reference,
                status_code=response.status_code,
                message=body.get("message"),
            )
            raise PaymentGatewayError(
                body.get("message") or "Failed to initiate transfer",
                status_code=response.status_code,
                rejected=response.status_code < 500,
                response_data=body,
            )

        data = body.get("data") or {}
        transfer_id = data.get("id")

        logger.info(
            "Flutterwave transfer initiated",
            reference=request.reference,
            transfer_id=transfer_id,
            amount=request.amount,
        )

        return TransferResult(
            transfer_id=str(transfer_id) if transfer_id is not None else None,
            status=data.get("status"),
            reference=request.reference,
            raw=data,
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def _get_with_retry(self, url: str, headers: dict[str, str]) -> httpx.Response:
        last_error: Exception | None = None

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.get(url, headers=headers)

                    if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                        wait_time = BACKOFF_FACTOR**attempt
                        logger.warning(
                            "Flutterwave transient status",
                            status_code=response.status_code,
                            attempt=attempt,
                            wait_time=wait_time,
                        )
                        await asyncio.sleep(wait_time)
                        continue

                    return response

                except httpx.RequestError as exc:
                    last_error = exc
                    if attempt == MAX_RETRIES:
                        raise

                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "Flutterwave request error, retrying",
                        attempt=attempt,
                        wait_time=wait_time,
                        error=str(exc),
                    )
                    await asyncio.sleep(wait_time)

        if last_error:
            raise last_error
        raise PaymentGatewayError("Flutterwave request failed: Unknown error")


flutterwave_client = FlutterwaveClient()


def get_payment_gateway() -> PaymentGateway:
    return flutterwave_client
