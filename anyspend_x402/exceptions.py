"""Exception hierarchy for the x402 payment flow.

Payment problems found while checking a proof are reported as structured
results (``VerifyResponse``/``SettleResponse``). Exceptions are reserved for
misconfiguration, undecodable input and failures of the transport to the
facilitator.
"""

from __future__ import annotations


class X402Error(Exception):
    """Base exception for the package."""


class ConfigurationError(X402Error):
    """Missing quote data, unregistered scheme/network, bad settings."""


class SchemeNotFoundError(ConfigurationError):
    """No scheme registered for a (scheme, network) pair."""

    def __init__(self, scheme: str, network: str):
        self.scheme = scheme
        self.network = network
        super().__init__(f"No scheme registered for scheme '{scheme}' on network '{network}'")


class DuplicateSchemeError(ConfigurationError):
    """A (scheme, network) pair was registered twice."""

    def __init__(self, scheme: str, network: str):
        self.scheme = scheme
        self.network = network
        super().__init__(f"Scheme '{scheme}' is already registered for network '{network}'")


class MissingQuoteError(ConfigurationError):
    """A scheme that needs a quote was asked to build a payload without one."""


class UnknownTokenProgram(ConfigurationError):
    """The asset is not owned by any known token program."""

    def __init__(self, asset: str, owner: str | None = None):
        self.asset = asset
        self.owner = owner
        message = f"Asset {asset} was not created by a known token program"
        if owner:
            message += f" (owner: {owner})"
        super().__init__(message)


class MalformedPayload(X402Error):
    """The payment header or payload could not be decoded or has the wrong shape."""


class NoMatchingRequirement(X402Error):
    """The payment does not correspond to any offered requirement."""


class VerificationFailed(X402Error):
    """The facilitator rejected the payment proof."""

    def __init__(self, reason: str, payer: str | None = None):
        self.reason = reason
        self.payer = payer
        super().__init__(reason)


class SettlementFailed(X402Error):
    """On-chain settlement of a verified payment was rejected."""

    def __init__(self, reason: str, transaction: str = ""):
        self.reason = reason
        self.transaction = transaction
        super().__init__(reason)


class TransportError(X402Error):
    """The facilitator was unreachable, timed out, or answered ambiguously.

    Never a statement about the payment's validity.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
