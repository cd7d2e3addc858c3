"""x402ResourceServer - Server-side component for protecting resources.

Builds payment requirements, verifies payments, and settles transactions
via a facilitator client. Framework adapters translate their request and
response objects to ``RequestContext``/``ResourceResponse`` and delegate here.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from typing_extensions import Self

from .config import ResourceServerConfig, RouteConfig
from .encoding import decode_payment, encode_settle_response
from .exceptions import (
    ConfigurationError,
    MalformedPayload,
    NoMatchingRequirement,
    TransportError,
    VerificationFailed,
    X402Error,
)
from .http.constants import (
    EXPOSE_HEADERS_HEADER,
    HTTP_STATUS_BAD_GATEWAY,
    HTTP_STATUS_BAD_REQUEST,
    HTTP_STATUS_PAYMENT_REQUIRED,
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    PREFERRED_NETWORK_HEADER,
    PREFERRED_TOKEN_HEADER,
)
from .interfaces import FacilitatorClient, SchemeNetwork
from .quote import QuoteNegotiator
from .registry import SchemeRegistry
from .types import (
    PaymentPayload,
    PaymentPreferences,
    PaymentRequiredResponse,
    PaymentRequirements,
    SettleResponse,
    VerifyResponse,
)

logger = logging.getLogger(__name__)

HTTP_STATUS_INTERNAL_ERROR = 500

RESULT_PAYMENT_REQUIRED = "payment-required"
RESULT_PAYMENT_ERROR = "payment-error"
RESULT_PAYMENT_VERIFIED = "payment-verified"

ERR_FACILITATOR_UNAVAILABLE = "facilitator_unavailable"
ERR_SETTLEMENT_ERROR = "settlement_error"

# Order matters: subclasses before their bases
_ERROR_STATUS: list[tuple[type[X402Error], int]] = [
    (MalformedPayload, HTTP_STATUS_BAD_REQUEST),
    (ConfigurationError, HTTP_STATUS_BAD_REQUEST),
    (NoMatchingRequirement, HTTP_STATUS_PAYMENT_REQUIRED),
    (VerificationFailed, HTTP_STATUS_PAYMENT_REQUIRED),
    (TransportError, HTTP_STATUS_BAD_GATEWAY),
]


def status_for_error(error: X402Error) -> int:
    """HTTP status for a failure while checking a payment."""
    for error_type, status in _ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return HTTP_STATUS_INTERNAL_ERROR


# ============================================================================
# Request / Response Types
# ============================================================================


@dataclass
class RequestContext:
    """Framework-neutral view of an incoming request."""

    path: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    url: str = ""

    def get_header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        value = self.headers.get(name)
        if value is not None:
            return value
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def get_preferences(self) -> PaymentPreferences:
        return PaymentPreferences(
            preferred_token=self.get_header(PREFERRED_TOKEN_HEADER),
            preferred_network=self.get_header(PREFERRED_NETWORK_HEADER),
        )


@dataclass
class PaymentSession:
    """A verified payment awaiting settlement.

    Settlement runs at most once; later calls see the recorded outcome.
    """

    payload: PaymentPayload
    requirements: PaymentRequirements
    verify_response: VerifyResponse
    settlement: SettleResponse | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def payer(self) -> str | None:
        return self.verify_response.payer


@dataclass
class ProcessResult:
    """Outcome of checking a request's payment.

    ``type`` is one of ``payment-required`` (no payment sent),
    ``payment-error`` (payment sent but unusable) and ``payment-verified``
    (serve the resource, then settle ``session``).
    """

    type: Literal["payment-required", "payment-error", "payment-verified"]
    status: int = 200
    body: dict[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    session: PaymentSession | None = None
    error: str | None = None


@dataclass
class ResourceResponse:
    """Response produced by a protected handler, or by the payment gate."""

    status: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


ServeFunc = Callable[[PaymentSession], ResourceResponse]


# ============================================================================
# x402ResourceServer
# ============================================================================


class x402ResourceServer:
    """Server-side component for protecting resources.

    Example:
        ```python
        facilitator = HTTPFacilitatorClient(FacilitatorConfig(url="https://facilitator.example"))
        server = x402ResourceServer(facilitator)
        server.register(["base", "base-sepolia"], ExactEvmScheme())
        server.initialize()

        route = RouteConfig(price=1000, asset=USDC_BASE, network="base", pay_to="0x...")
        response = server.handle(context, route, serve)
        ```
    """

    def __init__(
        self,
        facilitator: FacilitatorClient,
        registry: SchemeRegistry | None = None,
        config: ResourceServerConfig | None = None,
    ) -> None:
        self._facilitator = facilitator
        self._registry = registry or SchemeRegistry()
        self._config = config or ResourceServerConfig()
        self._negotiator = QuoteNegotiator(facilitator, self._registry)

    @property
    def registry(self) -> SchemeRegistry:
        return self._registry

    @property
    def config(self) -> ResourceServerConfig:
        return self._config

    # ========================================================================
    # Registration
    # ========================================================================

    def register(self, network: str | list[str], scheme: SchemeNetwork) -> Self:
        """Register a scheme for one or more networks.

        Returns:
            Self for chaining.
        """
        self._registry.register(network, scheme)
        return self

    # ========================================================================
    # Initialization
    # ========================================================================

    def initialize(self) -> None:
        """Check registered schemes against the facilitator and freeze the registry.

        Raises:
            TransportError: If the facilitator cannot be reached.
        """
        supported = set(self._facilitator.get_supported().pairs())

        for scheme, network in self._registry.keys():
            if (scheme, network) not in supported:
                logger.warning(
                    "Facilitator does not advertise scheme %s on %s; payments will be rejected",
                    scheme,
                    network,
                )

        self._registry.freeze()

    # ========================================================================
    # Build Requirements
    # ========================================================================

    def build_payment_requirements(
        self,
        route: RouteConfig,
        resource: str,
        preferences: PaymentPreferences | None = None,
    ) -> list[PaymentRequirements]:
        """Build the offers for a protected resource, primary first.

        Raises:
            SchemeNotFoundError: If the route's scheme is not registered.
            ConfigurationError: If a required quote is refused.
            TransportError: If the facilitator cannot be reached for a required quote.
        """
        scheme = self._registry.get(route.scheme, route.network)

        primary = PaymentRequirements(
            scheme=route.scheme,
            network=route.network,
            asset=route.asset,
            pay_to=route.pay_to,
            max_amount_required=str(route.price),
            resource=route.resource or resource,
            description=route.description,
            mime_type=route.mime_type,
            max_timeout_seconds=route.max_timeout_seconds or self._config.default_timeout_seconds,
            extra=dict(route.extra) if route.extra else None,
        )

        if scheme.requires_quote:
            primary = self._negotiator.quote_for(primary)

        accepts = [primary]

        try:
            secondary = self._negotiator.negotiate(primary, preferences)
        except (ConfigurationError, TransportError) as e:
            # The primary offer stays payable without the cross-asset one
            logger.warning("Cross-asset quote for %s failed: %s", resource, e)
            secondary = None

        if secondary is not None:
            accepts.append(secondary)
        return accepts

    def create_payment_required_response(
        self,
        accepts: list[PaymentRequirements],
        error: str | None = None,
    ) -> PaymentRequiredResponse:
        """Create the body of a 402 Payment Required response."""
        return PaymentRequiredResponse(
            x402_version=self._config.x402_version,
            accepts=accepts,
            error=error,
        )

    # ========================================================================
    # Find Matching Requirements
    # ========================================================================

    def find_matching_requirements(
        self,
        accepts: list[PaymentRequirements],
        payload: PaymentPayload,
    ) -> PaymentRequirements | None:
        """Find the offer a payment was made against.

        Offers whose paying network equals the payload network win over
        offers that only list it as the seller's network.
        """
        candidates = [
            req
            for req in accepts
            if req.scheme == payload.scheme and req.matches_network(payload.network)
        ]
        for req in candidates:
            if req.get_payment_network() == payload.network:
                return req
        return candidates[0] if candidates else None

    # ========================================================================
    # Verify
    # ========================================================================

    def verify_payment(
        self,
        header: str,
        accepts: list[PaymentRequirements],
    ) -> PaymentSession:
        """Decode, match and verify a payment header.

        Raises:
            MalformedPayload: If the header or inner payload cannot be decoded.
            SchemeNotFoundError: If the payload's (scheme, network) is not registered.
            NoMatchingRequirement: If no offer matches the payload.
            VerificationFailed: If the facilitator rejects the payment.
            TransportError: If the facilitator cannot be reached.
        """
        return self._verify_decoded(self._decode_payment(header), accepts)

    def _decode_payment(self, header: str) -> PaymentPayload:
        payload = decode_payment(header)

        # Shape checks are local; nothing reaches the facilitator for unknown pairs
        self._registry.parse_payload(payload)
        return payload

    def _verify_decoded(
        self,
        payload: PaymentPayload,
        accepts: list[PaymentRequirements],
    ) -> PaymentSession:
        requirements = self.find_matching_requirements(accepts, payload)
        if requirements is None:
            raise NoMatchingRequirement(
                f"No offer matches scheme '{payload.scheme}' on network '{payload.network}'"
            )

        verify_response = self._facilitator.verify(payload, requirements)
        if not verify_response.is_valid:
            raise VerificationFailed(
                verify_response.invalid_reason or "payment_invalid", verify_response.payer
            )

        logger.info(
            "Verified payment from %s on %s for %s",
            verify_response.payer,
            payload.network,
            requirements.resource,
        )
        return PaymentSession(
            payload=payload,
            requirements=requirements,
            verify_response=verify_response,
        )

    def process_request(self, context: RequestContext, route: RouteConfig) -> ProcessResult:
        """Check the payment carried by a request.

        Main entry point for framework adapters. A payment header is decoded
        and checked against the registry before any offer is built; an
        unusable payment makes no facilitator call.
        """
        resource = route.resource or context.url or context.path
        preferences = context.get_preferences()

        header = context.get_header(PAYMENT_HEADER)
        payload = None
        if header:
            try:
                payload = self._decode_payment(header)
            except X402Error as e:
                logger.warning("Unusable payment for %s: %s", resource, e)
                return self._error_result(status_for_error(e), [], str(e))

        try:
            accepts = self.build_payment_requirements(route, resource, preferences)
        except TransportError as e:
            logger.error("Could not build payment offers for %s: %s", resource, e)
            return self._error_result(HTTP_STATUS_BAD_GATEWAY, [], ERR_FACILITATOR_UNAVAILABLE)
        except ConfigurationError as e:
            logger.error("Payment route for %s is misconfigured: %s", resource, e)
            return self._error_result(HTTP_STATUS_INTERNAL_ERROR, [], str(e))

        if payload is None:
            return ProcessResult(
                type=RESULT_PAYMENT_REQUIRED,
                status=HTTP_STATUS_PAYMENT_REQUIRED,
                body=self.create_payment_required_response(
                    accepts, f"{PAYMENT_HEADER} header is required"
                ).to_wire(),
                headers={"Content-Type": "application/json"},
            )

        try:
            session = self._verify_decoded(payload, accepts)
        except VerificationFailed as e:
            logger.warning("Payment for %s rejected: %s", resource, e.reason)
            return self._error_result(HTTP_STATUS_PAYMENT_REQUIRED, accepts, e.reason)
        except TransportError as e:
            logger.error("Facilitator verify failed for %s: %s", resource, e)
            return self._error_result(status_for_error(e), accepts, ERR_FACILITATOR_UNAVAILABLE)
        except X402Error as e:
            logger.warning("Unusable payment for %s: %s", resource, e)
            return self._error_result(status_for_error(e), accepts, str(e))

        return ProcessResult(
            type=RESULT_PAYMENT_VERIFIED,
            status=200,
            session=session,
        )

    # ========================================================================
    # Settlement
    # ========================================================================

    def process_settlement(self, session: PaymentSession) -> SettleResponse:
        """Settle a verified payment, at most once per session.

        Failures come back as ``SettleResponse(success=False)``: the resource
        has already been served, so they can only be reported.
        """
        with session._lock:
            if session.settlement is not None:
                return session.settlement

            try:
                settlement = self._facilitator.settle(session.payload, session.requirements)
            except TransportError as e:
                logger.error("Facilitator settle failed for %s: %s", session.payer, e)
                settlement = SettleResponse(
                    success=False,
                    error_reason=f"{ERR_FACILITATOR_UNAVAILABLE}: {e}",
                    network=session.payload.network,
                    payer=session.payer,
                )
            except Exception as e:
                # The resource is already served; a raise here would lose the response
                logger.exception("Settlement for %s raised", session.payer)
                settlement = SettleResponse(
                    success=False,
                    error_reason=f"{ERR_SETTLEMENT_ERROR}: {e}",
                    network=session.payload.network,
                    payer=session.payer,
                )

            if settlement.success:
                logger.info(
                    "Settled payment from %s on %s: %s",
                    settlement.payer or session.payer,
                    settlement.network or session.payload.network,
                    settlement.transaction,
                )
            else:
                logger.warning(
                    "Settlement for %s failed: %s", session.payer, settlement.error_reason
                )

            session.settlement = settlement
            return settlement

    def settle_in_background(self, session: PaymentSession) -> threading.Thread:
        """Run ``process_settlement`` on a separate thread and return it."""
        thread = threading.Thread(
            target=self.process_settlement,
            args=(session,),
            name=f"x402-settle-{session.payload.network}",
        )
        thread.start()
        return thread

    def payment_response_headers(self, response: SettleResponse | VerifyResponse) -> dict[str, str]:
        return {
            PAYMENT_RESPONSE_HEADER: encode_settle_response(response),
            EXPOSE_HEADERS_HEADER: PAYMENT_RESPONSE_HEADER,
        }

    def complete(self, session: PaymentSession, response: ResourceResponse) -> ResourceResponse:
        """Settle after the resource was produced, per the settlement policy.

        Error responses (status >= 400) are returned untouched and never settled.
        """
        if response.status >= 400:
            logger.info("Handler returned %s; payment from %s not settled", response.status, session.payer)
            return response

        if self._config.settlement == "deferred":
            self.settle_in_background(session)
            response.headers.update(self.payment_response_headers(session.verify_response))
        else:
            response.headers.update(self.payment_response_headers(self.process_settlement(session)))
        return response

    def handle(
        self,
        context: RequestContext,
        route: RouteConfig,
        serve: ServeFunc,
    ) -> ResourceResponse:
        """Run the whole chain: verify, then serve, then settle."""
        result = self.process_request(context, route)

        if result.type != RESULT_PAYMENT_VERIFIED or result.session is None:
            return ResourceResponse(status=result.status, body=result.body, headers=result.headers)

        return self.complete(result.session, serve(result.session))

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _error_result(
        self,
        status: int,
        accepts: list[PaymentRequirements],
        error: str,
    ) -> ProcessResult:
        return ProcessResult(
            type=RESULT_PAYMENT_ERROR,
            status=status,
            body=self.create_payment_required_response(accepts, error).to_wire(),
            headers={"Content-Type": "application/json"},
            error=error,
        )
