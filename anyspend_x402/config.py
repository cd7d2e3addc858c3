"""Resource server and route configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, get_args

from .encoding import canonical_amount
from .exceptions import ConfigurationError
from .types import X402_VERSION, SettlementPolicy

DEFAULT_MAX_TIMEOUT_SECONDS = 300


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise ConfigurationError(f"{name} is not set")
    return value


@dataclass
class RouteConfig:
    """Price and destination of one protected resource.

    ``price`` is in the asset's smallest unit (e.g. 1000 = 0.001 USDC).
    """

    price: int | str
    asset: str
    network: str
    pay_to: str
    scheme: str = "exact"
    description: str = ""
    mime_type: str = ""
    max_timeout_seconds: int | None = None
    resource: str | None = None
    extra: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        try:
            self.price = canonical_amount(self.price)
        except ValueError as e:
            raise ConfigurationError(f"Invalid route price {self.price!r}: {e}") from e
        if not self.pay_to:
            raise ConfigurationError("Route pay_to is required")

    @classmethod
    def from_env(cls, prefix: str = "X402_") -> RouteConfig:
        """Read ``{prefix}PRICE``, ``ASSET``, ``NETWORK``, ``PAY_TO`` and optional ``SCHEME``.

        Raises:
            ConfigurationError: If a required variable is missing.
        """
        return cls(
            price=_require_env(f"{prefix}PRICE"),
            asset=_require_env(f"{prefix}ASSET"),
            network=_require_env(f"{prefix}NETWORK"),
            pay_to=_require_env(f"{prefix}PAY_TO"),
            scheme=os.environ.get(f"{prefix}SCHEME", "exact"),
            description=os.environ.get(f"{prefix}DESCRIPTION", ""),
        )


@dataclass
class ResourceServerConfig:
    """Behaviour of ``x402ResourceServer``.

    Attributes:
        settlement: "sync" settles before the response is sent and the
            X-PAYMENT-RESPONSE header carries the settlement. "deferred"
            responds with the verify confirmation and settles once in the
            background.
        default_timeout_seconds: ``maxTimeoutSeconds`` for routes that set none.
    """

    x402_version: int = X402_VERSION
    settlement: SettlementPolicy = "sync"
    default_timeout_seconds: int = DEFAULT_MAX_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if self.settlement not in get_args(SettlementPolicy):
            raise ConfigurationError(
                f"Unknown settlement policy {self.settlement!r}, "
                f"expected one of {get_args(SettlementPolicy)}"
            )
        if self.default_timeout_seconds <= 0:
            raise ConfigurationError("default_timeout_seconds must be positive")

    @classmethod
    def from_env(cls, prefix: str = "X402_") -> ResourceServerConfig:
        """Read ``{prefix}SETTLEMENT`` and ``{prefix}MAX_TIMEOUT_SECONDS``.

        Raises:
            ConfigurationError: If a value is invalid.
        """
        return cls(
            settlement=os.environ.get(f"{prefix}SETTLEMENT", "sync"),  # type: ignore[arg-type]
            default_timeout_seconds=_env_int(
                f"{prefix}MAX_TIMEOUT_SECONDS", DEFAULT_MAX_TIMEOUT_SECONDS
            ),
        )
