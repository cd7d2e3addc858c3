"""HTTP transport pieces: header names and the facilitator client."""

from .constants import (
    DEFAULT_FACILITATOR_URL,
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    PREFERRED_NETWORK_HEADER,
    PREFERRED_TOKEN_HEADER,
)
from .facilitator_client import (
    AuthHeaders,
    AuthProvider,
    CreateHeadersAuthProvider,
    FacilitatorConfig,
    HTTPFacilitatorClient,
)

__all__ = [
    "DEFAULT_FACILITATOR_URL",
    "PAYMENT_HEADER",
    "PAYMENT_RESPONSE_HEADER",
    "PREFERRED_NETWORK_HEADER",
    "PREFERRED_TOKEN_HEADER",
    "AuthHeaders",
    "AuthProvider",
    "CreateHeadersAuthProvider",
    "FacilitatorConfig",
    "HTTPFacilitatorClient",
]
