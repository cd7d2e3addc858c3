"""Protocols implemented by schemes and facilitators."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel

from .types import (
    PaymentPayload,
    PaymentRequirements,
    QuoteRequest,
    QuoteResponse,
    SettleResponse,
    SupportedResponse,
    VerifyResponse,
)


@runtime_checkable
class SchemeNetwork(Protocol):
    """A payment mechanism for one family of networks.

    Implementations are registered in a ``SchemeRegistry`` under
    (scheme, network) keys and are the only place scheme-specific
    behaviour lives.
    """

    scheme: str
    requires_quote: bool

    def parse_payload(self, payload: PaymentPayload) -> BaseModel:
        """Parse the scheme-specific part of a payload.

        Raises:
            MalformedPayload: If the payload does not have this scheme's shape.
        """
        ...

    def build_payload(
        self,
        requirements: PaymentRequirements,
        signer: Any,
        quote: QuoteResponse | None = None,
    ) -> PaymentPayload:
        """Build a signed payment payload for the requirements."""
        ...

    def verify(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> VerifyResponse:
        """Check a payload against requirements without moving funds."""
        ...

    def settle(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> SettleResponse:
        """Submit a verified payload on-chain."""
        ...


@runtime_checkable
class FacilitatorClient(Protocol):
    """Verify/settle/supported/quote boundary used by the resource server.

    Satisfied by ``HTTPFacilitatorClient`` (remote) and ``x402Facilitator``
    (in-process).
    """

    def verify(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> VerifyResponse: ...

    def settle(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> SettleResponse: ...

    def get_supported(self) -> SupportedResponse: ...

    def quote(self, request: QuoteRequest) -> QuoteResponse: ...
