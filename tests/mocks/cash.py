"""A "cash" scheme: trivially signed IOUs for exercising the protocol core."""

import time

from pydantic import ValidationError

from anyspend_x402.exceptions import MalformedPayload, TransportError
from anyspend_x402.types import (
    PaymentPayload,
    PaymentRequirements,
    QuoteData,
    QuoteRequest,
    QuoteResponse,
    SchemePayload,
    SettleResponse,
    VerifyResponse,
)

CASH_NETWORK = "x402:cash"


class CashPayload(SchemePayload):
    signature: str
    name: str
    valid_until: int


class CashScheme:
    """Pays by signing "~name"; settles by describing the transfer."""

    scheme = "cash"

    def __init__(self, requires_quote: bool = False):
        self.requires_quote = requires_quote
        self.settle_calls = 0

    def parse_payload(self, payload: PaymentPayload) -> CashPayload:
        try:
            return CashPayload.model_validate(payload.payload)
        except ValidationError as e:
            raise MalformedPayload(str(e)) from e

    def build_payload(self, requirements: PaymentRequirements, signer: str, quote=None) -> PaymentPayload:
        return PaymentPayload(
            scheme=self.scheme,
            network=requirements.get_payment_network(),
            payload=CashPayload(
                signature=f"~{signer}",
                name=signer,
                valid_until=int(time.time()) + requirements.max_timeout_seconds,
            ).to_wire(),
        )

    def verify(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerifyResponse:
        try:
            cash = self.parse_payload(payload)
        except MalformedPayload:
            return VerifyResponse(is_valid=False, invalid_reason="invalid_cash_payload")
        if cash.signature != f"~{cash.name}":
            return VerifyResponse(is_valid=False, invalid_reason="invalid_signature", payer=cash.signature)
        if cash.valid_until < time.time():
            return VerifyResponse(is_valid=False, invalid_reason="expired", payer=cash.signature)
        return VerifyResponse(is_valid=True, payer=cash.signature)

    def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettleResponse:
        self.settle_calls += 1
        result = self.verify(payload, requirements)
        if not result.is_valid:
            return SettleResponse(success=False, error_reason=result.invalid_reason, network=payload.network)
        name = self.parse_payload(payload).name
        return SettleResponse(
            success=True,
            transaction=(
                f"{name} transferred {requirements.get_payment_amount()} "
                f"{requirements.get_payment_asset()} to {requirements.pay_to}"
            ),
            network=payload.network,
            payer=result.payer,
        )


class CashFacilitatorClient:
    """FacilitatorClient wrapping a local facilitator, recording every call."""

    def __init__(self, facilitator, fail_with: str | None = None, quote_amount: str | None = None):
        self._facilitator = facilitator
        self.fail_with = fail_with
        self.quote_amount = quote_amount
        self.calls: list[str] = []

    def _call(self, name: str):
        self.calls.append(name)
        if self.fail_with == name:
            raise TransportError(f"{name} unreachable")

    def verify(self, payload, requirements):
        self._call("verify")
        return self._facilitator.verify(payload, requirements)

    def settle(self, payload, requirements):
        self._call("settle")
        return self._facilitator.settle(payload, requirements)

    def get_supported(self):
        self._call("supported")
        return self._facilitator.get_supported()

    def quote(self, request: QuoteRequest) -> QuoteResponse:
        self._call("quote")
        if self.quote_amount is None:
            return QuoteResponse(success=False, error="no route")
        return QuoteResponse(
            success=True,
            data=QuoteData(
                payment_amount=self.quote_amount,
                facilitator_address="Facilitator",
                fee_payer_address="FeePayer",
            ),
        )


def build_cash_payment_requirements(pay_to: str, asset: str, amount: str) -> PaymentRequirements:
    return PaymentRequirements(
        scheme="cash",
        network=CASH_NETWORK,
        asset=asset,
        pay_to=pay_to,
        max_amount_required=amount,
        resource="https://company.co",
        max_timeout_seconds=1000,
    )
