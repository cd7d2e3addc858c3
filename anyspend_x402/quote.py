"""Quote negotiation for cross-asset and fee-sponsored offers.

The negotiator never prices anything itself. It asks the facilitator for a
quote and folds the answer into a copy of the seller's requirements.
"""

from __future__ import annotations

import logging

from .exceptions import ConfigurationError
from .interfaces import FacilitatorClient
from .registry import SchemeRegistry
from .types import (
    PaymentPreferences,
    PaymentRequirements,
    QuoteRequest,
    QuoteResponse,
)

logger = logging.getLogger(__name__)


def _same_token(a: str, b: str) -> bool:
    # EVM addresses compare case-insensitively, base58 mints do not
    if a.startswith("0x") and b.startswith("0x"):
        return a.lower() == b.lower()
    return a == b


class QuoteNegotiator:
    """Turns payer preferences into quoted payment offers.

    Example:
        ```python
        negotiator = QuoteNegotiator(facilitator, registry)
        secondary = negotiator.negotiate(
            primary,
            PaymentPreferences(preferred_token=mint, preferred_network="solana"),
        )
        ```
    """

    def __init__(self, facilitator: FacilitatorClient, registry: SchemeRegistry):
        self._facilitator = facilitator
        self._registry = registry

    def needs_cross_asset_offer(
        self,
        primary: PaymentRequirements,
        preferences: PaymentPreferences | None,
    ) -> bool:
        """Whether the payer asked for a token/network the primary offer lacks."""
        if preferences is None or preferences.is_empty():
            return False
        return not (
            preferences.preferred_network == primary.network
            and _same_token(preferences.preferred_token, primary.asset)
        )

    def request_quote(self, request: QuoteRequest) -> QuoteResponse:
        """Fetch a quote from the facilitator.

        Raises:
            ConfigurationError: If the facilitator could not quote the pair.
            TransportError: If the facilitator could not be reached.
        """
        quote = self._facilitator.quote(request)
        if not quote.success or quote.data is None:
            raise ConfigurationError(
                f"Facilitator could not quote {request.src_token_address} on "
                f"{request.src_network}: {quote.error or 'no quote data'}"
            )

        logger.debug(
            "Quoted %s %s on %s for %s %s on %s",
            quote.data.payment_amount,
            request.src_token_address,
            request.src_network,
            request.dst_amount,
            request.dst_token_address,
            request.dst_network,
        )
        return quote

    @staticmethod
    def apply_quote(
        requirements: PaymentRequirements,
        quote: QuoteResponse,
        src_network: str,
        src_token: str,
    ) -> PaymentRequirements:
        """Copy of ``requirements`` carrying the quoted source leg.

        The seller's network, asset and amount are kept; the payer-side
        values go into the ``src*`` fields and ``extra``.
        """
        if not quote.success or quote.data is None:
            raise ConfigurationError(f"Cannot apply unsuccessful quote: {quote.error}")

        extra = dict(requirements.extra or {})
        extra["facilitatorAddress"] = quote.data.facilitator_address
        extra["feePayer"] = quote.data.fee_payer_address

        return requirements.model_copy(
            update={
                "src_network": src_network,
                "src_token_address": src_token,
                "src_amount_required": quote.data.payment_amount,
                "extra": extra,
            }
        )

    def quote_for(self, requirements: PaymentRequirements) -> PaymentRequirements:
        """Fold a same-asset quote into an offer whose scheme needs one."""
        quote = self.request_quote(
            QuoteRequest(
                src_token_address=requirements.asset,
                src_network=requirements.network,
                dst_token_address=requirements.asset,
                dst_network=requirements.network,
                dst_amount=requirements.max_amount_required,
            )
        )
        return self.apply_quote(requirements, quote, requirements.network, requirements.asset)

    def negotiate(
        self,
        primary: PaymentRequirements,
        preferences: PaymentPreferences | None,
    ) -> PaymentRequirements | None:
        """Build a secondary cross-asset offer, or None if none is needed.

        Preferred networks without a registered scheme are skipped.

        Raises:
            ConfigurationError: If the facilitator refuses to quote.
            TransportError: If the facilitator could not be reached.
        """
        if preferences is None or not self.needs_cross_asset_offer(primary, preferences):
            return None

        network = preferences.preferred_network
        token = preferences.preferred_token

        schemes = self._registry.schemes_for_network(network)
        if not schemes:
            logger.warning("No scheme registered for preferred network %s, skipping quote", network)
            return None

        quote = self.request_quote(
            QuoteRequest(
                src_token_address=token,
                src_network=network,
                dst_token_address=primary.asset,
                dst_network=primary.network,
                dst_amount=primary.max_amount_required,
            )
        )

        # Drop any src leg folded into the primary offer before re-quoting
        base = primary.model_copy(
            update={
                "scheme": schemes[0].scheme,
                "src_network": None,
                "src_token_address": None,
                "src_amount_required": None,
            }
        )
        return self.apply_quote(base, quote, network, token)
