import pytest

from anyspend_x402.exceptions import (
    ConfigurationError,
    DuplicateSchemeError,
    MalformedPayload,
    SchemeNotFoundError,
)
from anyspend_x402.registry import SchemeRegistry
from anyspend_x402.types import PaymentPayload

from .mocks import CASH_NETWORK, CashPayload, CashScheme


class TestSchemeRegistry:
    """Registration and lookup by (scheme, network)."""

    def test_register_and_get(self):
        scheme = CashScheme()
        registry = SchemeRegistry().register([CASH_NETWORK, "x402:coupons"], scheme)

        assert registry.get("cash", CASH_NETWORK) is scheme
        assert registry.get("cash", "x402:coupons") is scheme
        assert registry.supports("cash", CASH_NETWORK)
        assert ("cash", CASH_NETWORK) in registry
        assert len(registry) == 2
        assert registry.keys() == [("cash", CASH_NETWORK), ("cash", "x402:coupons")]

    def test_unregistered_pair(self):
        registry = SchemeRegistry().register(CASH_NETWORK, CashScheme())

        assert registry.find("cash", "x402:coupons") is None
        with pytest.raises(SchemeNotFoundError) as exc_info:
            registry.get("exact", CASH_NETWORK)
        assert exc_info.value.scheme == "exact"
        assert isinstance(exc_info.value, ConfigurationError)

    def test_duplicate_registration_is_rejected(self):
        registry = SchemeRegistry().register(CASH_NETWORK, CashScheme())

        with pytest.raises(DuplicateSchemeError):
            registry.register([CASH_NETWORK], CashScheme())

    def test_failed_registration_adds_nothing(self):
        registry = SchemeRegistry().register(CASH_NETWORK, CashScheme())

        with pytest.raises(DuplicateSchemeError):
            registry.register(["x402:coupons", CASH_NETWORK], CashScheme())

        assert not registry.supports("cash", "x402:coupons")

    def test_empty_network_list_is_rejected(self):
        with pytest.raises(ConfigurationError):
            SchemeRegistry().register([], CashScheme())

    def test_frozen_registry_is_read_only(self):
        registry = SchemeRegistry().register(CASH_NETWORK, CashScheme())
        registry.freeze()

        assert registry.frozen
        with pytest.raises(ConfigurationError):
            registry.register("x402:coupons", CashScheme())
        assert registry.supports("cash", CASH_NETWORK)

    def test_schemes_for_network(self):
        first, second = CashScheme(), CashScheme()
        second.scheme = "iou"
        registry = SchemeRegistry().register(CASH_NETWORK, first).register(CASH_NETWORK, second)

        assert registry.schemes_for_network(CASH_NETWORK) == [first, second]
        assert registry.schemes_for_network("x402:coupons") == []


class TestParsePayload:
    def test_parses_with_registered_scheme(self):
        scheme = CashScheme()
        registry = SchemeRegistry().register(CASH_NETWORK, scheme)
        payload = PaymentPayload(
            scheme="cash",
            network=CASH_NETWORK,
            payload={"signature": "~John", "name": "John", "validUntil": 1},
        )

        found, parsed = registry.parse_payload(payload)

        assert found is scheme
        assert parsed == CashPayload(signature="~John", name="John", valid_until=1)

    def test_unregistered_pair_raises_before_parsing(self):
        registry = SchemeRegistry().register(CASH_NETWORK, CashScheme())
        payload = PaymentPayload(scheme="cash", network="x402:coupons", payload={})

        with pytest.raises(SchemeNotFoundError):
            registry.parse_payload(payload)

    def test_wrong_shape_is_malformed(self):
        registry = SchemeRegistry().register(CASH_NETWORK, CashScheme())
        payload = PaymentPayload(scheme="cash", network=CASH_NETWORK, payload={"name": "John"})

        with pytest.raises(MalformedPayload):
            registry.parse_payload(payload)
