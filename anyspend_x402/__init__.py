"""anyspend-x402 - HTTP 402 payments in any token, on any supported chain.

Client-side, server-side and facilitator components of the x402 payment
protocol, with an exact EIP-3009 scheme for EVM chains and a gasless,
fee-sponsored scheme for Solana.

Quick Start:
    ```python
    from anyspend_x402 import x402Client, x402ResourceServer, RouteConfig
    from anyspend_x402.http import HTTPFacilitatorClient
    from anyspend_x402.mechanisms.evm import ExactEvmScheme, EthAccountSigner

    # Server-side: Protect resources
    server = x402ResourceServer(HTTPFacilitatorClient())
    server.register(["base"], ExactEvmScheme())
    server.initialize()
    route = RouteConfig(price=1000, asset=USDC_BASE, network="base", pay_to="0x...")
    result = server.process_request(context, route)

    # Client-side: Pay a 402 response
    client = x402Client()
    client.register("base", ExactEvmScheme(), EthAccountSigner(account))
    header = client.create_payment_header(response.json())
    ```
"""

# Core components
from .client import (
    default_payment_selector,
    max_amount,
    prefer_network,
    prefer_token,
    x402Client,
)
from .config import ResourceServerConfig, RouteConfig
from .facilitator import x402Facilitator
from .quote import QuoteNegotiator
from .registry import SchemeRegistry
from .server import (
    PaymentSession,
    ProcessResult,
    RequestContext,
    ResourceResponse,
    x402ResourceServer,
)

# Interfaces (for implementing custom schemes)
from .interfaces import FacilitatorClient, SchemeNetwork

# Wire codec
from .encoding import (
    decode_payment,
    decode_settle_response,
    encode_payment,
    encode_settle_response,
)

# Errors
from .exceptions import (
    ConfigurationError,
    DuplicateSchemeError,
    MalformedPayload,
    MissingQuoteError,
    NoMatchingRequirement,
    SchemeNotFoundError,
    SettlementFailed,
    TransportError,
    UnknownTokenProgram,
    VerificationFailed,
    X402Error,
)

# Types (re-export commonly used types)
from .types import (
    X402_VERSION,
    PaymentPayload,
    PaymentPreferences,
    PaymentRequiredResponse,
    PaymentRequirements,
    QuoteData,
    QuoteRequest,
    QuoteResponse,
    SettleResponse,
    SupportedKind,
    SupportedResponse,
    VerifyResponse,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "x402Client",
    "x402Facilitator",
    "x402ResourceServer",
    "QuoteNegotiator",
    "SchemeRegistry",
    "PaymentSession",
    "ProcessResult",
    "RequestContext",
    "ResourceResponse",
    "ResourceServerConfig",
    "RouteConfig",
    # Client policies
    "default_payment_selector",
    "max_amount",
    "prefer_network",
    "prefer_token",
    # Interfaces
    "FacilitatorClient",
    "SchemeNetwork",
    # Codec
    "decode_payment",
    "decode_settle_response",
    "encode_payment",
    "encode_settle_response",
    # Errors
    "ConfigurationError",
    "DuplicateSchemeError",
    "MalformedPayload",
    "MissingQuoteError",
    "NoMatchingRequirement",
    "SchemeNotFoundError",
    "SettlementFailed",
    "TransportError",
    "UnknownTokenProgram",
    "VerificationFailed",
    "X402Error",
    # Types
    "X402_VERSION",
    "PaymentPayload",
    "PaymentPreferences",
    "PaymentRequiredResponse",
    "PaymentRequirements",
    "QuoteData",
    "QuoteRequest",
    "QuoteResponse",
    "SettleResponse",
    "SupportedKind",
    "SupportedResponse",
    "VerifyResponse",
]
