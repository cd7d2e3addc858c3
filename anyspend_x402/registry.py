"""Scheme registry keyed by (scheme, network)."""

from __future__ import annotations

import logging
import threading

from pydantic import BaseModel
from typing_extensions import Self

from .exceptions import ConfigurationError, DuplicateSchemeError, SchemeNotFoundError
from .interfaces import SchemeNetwork
from .types import PaymentPayload

logger = logging.getLogger(__name__)

SchemeKey = tuple[str, str]


class SchemeRegistry:
    """Capability table mapping (scheme, network) to a scheme implementation.

    Registration is additive and happens at start-up. Once ``freeze`` is
    called the table is read-only, so lookups never need locking.

    Example:
        ```python
        registry = SchemeRegistry()
        registry.register(["base", "base-sepolia"], ExactEvmScheme())
        registry.register("solana-devnet", GaslessSvmScheme())

        scheme = registry.get("exact", "base")
        ```
    """

    def __init__(self) -> None:
        self._schemes: dict[SchemeKey, SchemeNetwork] = {}
        self._lock = threading.Lock()
        self._frozen = False

    # ========================================================================
    # Registration
    # ========================================================================

    def register(self, networks: str | list[str], scheme: SchemeNetwork) -> Self:
        """Register a scheme implementation for one or more networks.

        Args:
            networks: Network or list of networks.
            scheme: Scheme implementation.

        Returns:
            Self for chaining.

        Raises:
            DuplicateSchemeError: If any (scheme, network) key already exists.
            ConfigurationError: If the registry is frozen.
        """
        if isinstance(networks, str):
            networks = [networks]
        if not networks:
            raise ConfigurationError("At least one network is required")

        with self._lock:
            if self._frozen:
                raise ConfigurationError("Scheme registry is frozen")

            keys = [(scheme.scheme, network) for network in networks]
            for key in keys:
                if key in self._schemes:
                    raise DuplicateSchemeError(*key)

            for key in keys:
                self._schemes[key] = scheme
                logger.debug("Registered scheme %s on %s", key[0], key[1])

        return self

    def freeze(self) -> None:
        """Make the registry read-only."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ========================================================================
    # Lookup
    # ========================================================================

    def find(self, scheme: str, network: str) -> SchemeNetwork | None:
        return self._schemes.get((scheme, network))

    def get(self, scheme: str, network: str) -> SchemeNetwork:
        """Get the implementation for a (scheme, network) pair.

        Raises:
            SchemeNotFoundError: If the pair is not registered.
        """
        found = self.find(scheme, network)
        if found is None:
            raise SchemeNotFoundError(scheme, network)
        return found

    def supports(self, scheme: str, network: str) -> bool:
        return (scheme, network) in self._schemes

    def schemes_for_network(self, network: str) -> list[SchemeNetwork]:
        """All implementations registered for a network, in registration order."""
        return [impl for (_, net), impl in self._schemes.items() if net == network]

    def keys(self) -> list[SchemeKey]:
        return list(self._schemes)

    def parse_payload(self, payload: PaymentPayload) -> tuple[SchemeNetwork, BaseModel]:
        """Resolve the scheme for a payload and parse its inner shape.

        Raises:
            SchemeNotFoundError: If the payload's pair is not registered.
            MalformedPayload: If the inner payload does not fit the scheme.
        """
        scheme = self.get(payload.scheme, payload.network)
        return scheme, scheme.parse_payload(payload)

    def __contains__(self, key: object) -> bool:
        return key in self._schemes

    def __len__(self) -> int:
        return len(self._schemes)
