"""x402Client - Client-side component for creating payment payloads."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any, Union

from pydantic import ValidationError
from typing_extensions import Self

from .encoding import decode_settle_response, encode_payment
from .exceptions import MalformedPayload, NoMatchingRequirement, SettlementFailed
from .http.constants import (
    PAYMENT_HEADER,
    PREFERRED_NETWORK_HEADER,
    PREFERRED_TOKEN_HEADER,
)
from .interfaces import SchemeNetwork
from .registry import SchemeRegistry
from .types import (
    PaymentPayload,
    PaymentPreferences,
    PaymentRequiredResponse,
    PaymentRequirements,
    QuoteResponse,
    SettleResponse,
    VerifyResponse,
)

logger = logging.getLogger(__name__)

PaymentPolicy = Callable[[list[PaymentRequirements]], list[PaymentRequirements]]
PaymentSelector = Callable[[list[PaymentRequirements]], PaymentRequirements]


# ============================================================================
# Default Implementations
# ============================================================================


def default_payment_selector(requirements: list[PaymentRequirements]) -> PaymentRequirements:
    """Default selector: return first requirement."""
    return requirements[0]


# ============================================================================
# Built-in Policies
# ============================================================================


def prefer_network(network: str) -> PaymentPolicy:
    """Create policy that moves offers paid on ``network`` to the front."""

    def policy(reqs: list[PaymentRequirements]) -> list[PaymentRequirements]:
        preferred = [r for r in reqs if r.get_payment_network() == network]
        others = [r for r in reqs if r.get_payment_network() != network]
        return preferred + others

    return policy


def prefer_token(token: str) -> PaymentPolicy:
    """Create policy that moves offers paid in ``token`` to the front."""

    def policy(reqs: list[PaymentRequirements]) -> list[PaymentRequirements]:
        preferred = [r for r in reqs if r.get_payment_asset().lower() == token.lower()]
        others = [r for r in reqs if r.get_payment_asset().lower() != token.lower()]
        return preferred + others

    return policy


def max_amount(max_value: int) -> PaymentPolicy:
    """Create policy that drops offers costing more than ``max_value`` smallest units."""

    def policy(reqs: list[PaymentRequirements]) -> list[PaymentRequirements]:
        return [r for r in reqs if int(r.get_payment_amount()) <= max_value]

    return policy


# ============================================================================
# x402Client
# ============================================================================


class x402Client:
    """Client-side component for creating payment payloads.

    Holds one signer per registered (scheme, network). Key material stays
    inside the signers; the client only passes them to the schemes.

    Example:
        ```python
        client = x402Client(
            preferences=PaymentPreferences(preferred_token=USDC_MAINNET_ADDRESS, preferred_network="solana"),
        )
        client.register("base", ExactEvmScheme(), EthAccountSigner(account))
        client.register("solana", GaslessSvmScheme(), KeypairSigner(keypair))

        headers = client.preference_headers()
        # ... request returns 402 ...
        headers[PAYMENT_HEADER] = client.create_payment_header(response.json())
        ```
    """

    def __init__(
        self,
        registry: SchemeRegistry | None = None,
        preferences: PaymentPreferences | None = None,
        selector: PaymentSelector | None = None,
    ) -> None:
        self._registry = registry or SchemeRegistry()
        self._preferences = preferences or PaymentPreferences()
        self._selector = selector or default_payment_selector
        self._signers: dict[tuple[str, str], Any] = {}
        self._policies: list[PaymentPolicy] = []

        if not self._preferences.is_empty():
            self._policies.append(prefer_network(self._preferences.preferred_network))
            self._policies.append(prefer_token(self._preferences.preferred_token))

    # ========================================================================
    # Registration
    # ========================================================================

    def register(self, networks: str | list[str], scheme: SchemeNetwork, signer: Any) -> Self:
        """Register a scheme and the signer that pays through it.

        Returns:
            Self for chaining.
        """
        if isinstance(networks, str):
            networks = [networks]
        self._registry.register(networks, scheme)
        for network in networks:
            self._signers[(scheme.scheme, network)] = signer
        return self

    def register_policy(self, policy: PaymentPolicy) -> Self:
        """Add a policy applied, in order, before the selector.

        Returns:
            Self for chaining.
        """
        self._policies.append(policy)
        return self

    # ========================================================================
    # Payment Creation
    # ========================================================================

    @staticmethod
    def parse_payment_required(body: Union[str, bytes, dict[str, Any]]) -> PaymentRequiredResponse:
        """Parse a 402 response body.

        Raises:
            MalformedPayload: If the body is not a payment-required response.
        """
        try:
            if isinstance(body, (str, bytes)):
                body = json.loads(body)
            return PaymentRequiredResponse.model_validate(body)
        except (ValueError, ValidationError) as e:
            raise MalformedPayload(f"Invalid payment required response: {e}") from e

    def select_requirements(self, accepts: list[PaymentRequirements]) -> PaymentRequirements:
        """Select the offer to pay, among those a registered scheme can pay.

        Raises:
            NoMatchingRequirement: If no offer is payable or all are filtered out.
        """
        payable = [
            req
            for req in accepts
            if self._registry.supports(req.scheme, req.get_payment_network())
        ]
        if not payable:
            raise NoMatchingRequirement("No payment requirements match registered schemes")

        for policy in self._policies:
            payable = policy(payable)
            if not payable:
                raise NoMatchingRequirement("All payment requirements filtered out by policies")

        return self._selector(payable)

    def create_payment_payload(
        self,
        requirements: PaymentRequirements,
        quote: QuoteResponse | None = None,
    ) -> PaymentPayload:
        """Build a signed payload for the selected offer.

        Raises:
            SchemeNotFoundError: If no scheme is registered for the offer.
            MissingQuoteError: If the scheme needs a quote the offer lacks.
        """
        network = requirements.get_payment_network()
        scheme = self._registry.get(requirements.scheme, network)
        signer = self._signers[(requirements.scheme, network)]

        payload = scheme.build_payload(requirements, signer, quote)
        logger.debug(
            "Created %s payment of %s %s on %s",
            requirements.scheme,
            requirements.get_payment_amount(),
            requirements.get_payment_asset(),
            network,
        )
        return payload

    def create_payment_header(
        self,
        payment_required: Union[PaymentRequiredResponse, str, bytes, dict[str, Any]],
    ) -> str:
        """Select an offer from a 402 response, pay it and encode the X-PAYMENT value."""
        if not isinstance(payment_required, PaymentRequiredResponse):
            payment_required = self.parse_payment_required(payment_required)

        requirements = self.select_requirements(payment_required.accepts)
        return encode_payment(self.create_payment_payload(requirements))

    def preference_headers(self) -> dict[str, str]:
        """X-PREFERRED-* headers announcing the payer's token and network."""
        if self._preferences.is_empty():
            return {}
        return {
            PREFERRED_TOKEN_HEADER: self._preferences.preferred_token,
            PREFERRED_NETWORK_HEADER: self._preferences.preferred_network,
        }

    def payment_headers(self, payment_required: Any) -> dict[str, str]:
        """Headers for the paid retry: preferences plus X-PAYMENT."""
        headers = self.preference_headers()
        headers[PAYMENT_HEADER] = self.create_payment_header(payment_required)
        return headers

    # ========================================================================
    # Payment Response
    # ========================================================================

    @staticmethod
    def decode_payment_response(header: str) -> Union[SettleResponse, VerifyResponse]:
        """Decode the X-PAYMENT-RESPONSE header.

        Raises:
            MalformedPayload: If the header cannot be decoded.
        """
        return decode_settle_response(header)

    @classmethod
    def check_payment_response(cls, header: str) -> Union[SettleResponse, VerifyResponse]:
        """Decode the X-PAYMENT-RESPONSE header and fail on a failed settlement.

        Raises:
            SettlementFailed: If the server reports settlement failed.
            MalformedPayload: If the header cannot be decoded.
        """
        response = cls.decode_payment_response(header)
        if isinstance(response, SettleResponse) and not response.success:
            raise SettlementFailed(response.error_reason or "settlement_failed", response.transaction)
        return response
