"""x402Facilitator - in-process verification and settlement.

Implements the same verify/settle/supported/quote surface as the HTTP
facilitator client, backed by a local scheme registry.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable

from typing_extensions import Self

from .exceptions import ConfigurationError
from .interfaces import SchemeNetwork
from .registry import SchemeRegistry
from .types import (
    PaymentPayload,
    PaymentRequirements,
    QuoteRequest,
    QuoteResponse,
    SettleResponse,
    SupportedKind,
    SupportedResponse,
    VerifyResponse,
)

logger = logging.getLogger(__name__)

ERR_ALREADY_SETTLED = "payment_already_settled"
ERR_SETTLEMENT_IN_PROGRESS = "payment_settlement_in_progress"

DEFAULT_MAX_SETTLED = 10_000

QuoteProvider = Callable[[QuoteRequest], QuoteResponse]


def payment_fingerprint(payload: PaymentPayload) -> str:
    """Stable digest of a payload, used to detect replays."""
    canonical = json.dumps(payload.to_wire(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class x402Facilitator:
    """Payment verification and settlement component.

    Routes each payload to the scheme registered for its (scheme, network)
    and remembers which payloads it has settled, so the same proof is never
    submitted twice by this process. A settled payload is remembered for its
    requirements' max_timeout_seconds, after which the scheme's own expiry
    check refuses it, and at most ``max_settled`` payloads are kept (oldest
    evicted first). The guard is in memory only; on-chain nonce and
    blockhash checks remain the durable protection.

    Example:
        ```python
        facilitator = x402Facilitator(quote_provider=pricing_service.quote)
        facilitator.register(["base", "base-sepolia"], ExactEvmScheme(facilitator_signer=signer))

        result = facilitator.verify(payload, requirements)
        ```
    """

    def __init__(
        self,
        registry: SchemeRegistry | None = None,
        quote_provider: QuoteProvider | None = None,
        max_settled: int = DEFAULT_MAX_SETTLED,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_settled < 1:
            raise ConfigurationError(f"max_settled must be positive, got {max_settled}")
        self._registry = registry or SchemeRegistry()
        self._quote_provider = quote_provider
        self._max_settled = max_settled
        self._clock = clock
        # fingerprint -> (forget after, outcome), oldest first
        self._settled: OrderedDict[str, tuple[float, SettleResponse]] = OrderedDict()
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    @property
    def registry(self) -> SchemeRegistry:
        return self._registry

    # ========================================================================
    # Registration
    # ========================================================================

    def register(self, networks: str | list[str], scheme: SchemeNetwork) -> Self:
        """Register a scheme for one or more networks.

        Returns:
            Self for chaining.
        """
        self._registry.register(networks, scheme)
        return self

    # ========================================================================
    # Verify / Settle
    # ========================================================================

    def verify(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> VerifyResponse:
        """Verify a payment.

        Raises:
            SchemeNotFoundError: If no scheme is registered for the payload.
        """
        scheme = self._registry.get(payload.scheme, payload.network)
        result = scheme.verify(payload, requirements)

        if result.is_valid:
            logger.info("Verified %s payment on %s from %s", payload.scheme, payload.network, result.payer)
        else:
            logger.warning(
                "Rejected %s payment on %s: %s", payload.scheme, payload.network, result.invalid_reason
            )
        return result

    def settle(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> SettleResponse:
        """Settle a payment at most once.

        A payload that already settled, or is being settled by another
        caller, yields a failed SettleResponse without touching the chain.

        Raises:
            SchemeNotFoundError: If no scheme is registered for the payload.
        """
        scheme = self._registry.get(payload.scheme, payload.network)
        key = payment_fingerprint(payload)

        with self._lock:
            self._forget_expired(self._clock())
            entry = self._settled.get(key)
            previous = entry[1] if entry is not None else None
            if previous is not None or key in self._in_flight:
                reason = ERR_ALREADY_SETTLED if previous is not None else ERR_SETTLEMENT_IN_PROGRESS
                logger.warning("Refusing to settle payment %s again: %s", key[:12], reason)
                return SettleResponse(
                    success=False,
                    error_reason=reason,
                    transaction=previous.transaction if previous else "",
                    network=payload.network,
                    payer=previous.payer if previous else None,
                )
            self._in_flight.add(key)

        try:
            result = scheme.settle(payload, requirements)
        finally:
            with self._lock:
                self._in_flight.discard(key)

        if result.success:
            with self._lock:
                now = self._clock()
                self._settled[key] = (now + requirements.max_timeout_seconds, result)
                self._forget_expired(now)
            logger.info("Settled payment %s on %s: %s", key[:12], payload.network, result.transaction)
        else:
            logger.warning("Settlement of %s on %s failed: %s", key[:12], payload.network, result.error_reason)
        return result

    def _forget_expired(self, now: float) -> None:
        # Caller holds self._lock
        for key in [key for key, (forget_after, _) in self._settled.items() if forget_after <= now]:
            del self._settled[key]
        while len(self._settled) > self._max_settled:
            self._settled.popitem(last=False)

    # ========================================================================
    # Discovery / Quotes
    # ========================================================================

    def get_supported(self) -> SupportedResponse:
        """Supported (scheme, network) kinds, in registration order."""
        return SupportedResponse(
            kinds=[
                SupportedKind(scheme=scheme, network=network)
                for scheme, network in self._registry.keys()
            ]
        )

    def quote(self, request: QuoteRequest) -> QuoteResponse:
        """Quote through the configured provider.

        Raises:
            ConfigurationError: If no quote provider is configured.
        """
        if self._quote_provider is None:
            raise ConfigurationError("x402Facilitator has no quote provider configured")
        return self._quote_provider(request)
