import threading

import pytest

from anyspend_x402.exceptions import ConfigurationError, SchemeNotFoundError
from anyspend_x402.facilitator import (
    ERR_ALREADY_SETTLED,
    ERR_SETTLEMENT_IN_PROGRESS,
    payment_fingerprint,
    x402Facilitator,
)
from anyspend_x402.types import PaymentPayload, QuoteData, QuoteRequest, QuoteResponse, SettleResponse

from .mocks import CASH_NETWORK, CashScheme, build_cash_payment_requirements


def make_payment(name: str = "John") -> tuple[PaymentPayload, object]:
    requirements = build_cash_payment_requirements("Company", "USD", "1")
    payload = CashScheme().build_payload(requirements, name)
    return payload, requirements


class TestFacilitatorVerify:
    def test_routes_to_registered_scheme(self):
        facilitator = x402Facilitator().register(CASH_NETWORK, CashScheme())
        payload, requirements = make_payment()

        result = facilitator.verify(payload, requirements)

        assert result.is_valid is True
        assert result.payer == "~John"

    def test_unregistered_pair(self):
        facilitator = x402Facilitator()
        payload, requirements = make_payment()

        with pytest.raises(SchemeNotFoundError):
            facilitator.verify(payload, requirements)

    def test_invalid_payment_is_structured(self):
        facilitator = x402Facilitator().register(CASH_NETWORK, CashScheme())
        payload, requirements = make_payment()
        payload = payload.model_copy(
            update={"payload": {**payload.payload, "signature": "~Mallory"}}
        )

        result = facilitator.verify(payload, requirements)

        assert result.is_valid is False
        assert result.invalid_reason == "invalid_signature"


class TestFacilitatorSettle:
    def test_settles_once(self):
        scheme = CashScheme()
        facilitator = x402Facilitator().register(CASH_NETWORK, scheme)
        payload, requirements = make_payment()

        first = facilitator.settle(payload, requirements)
        second = facilitator.settle(payload, requirements)

        assert first.success is True
        assert first.transaction == "John transferred 1 USD to Company"
        assert second.success is False
        assert second.error_reason == ERR_ALREADY_SETTLED
        assert second.transaction == first.transaction
        assert scheme.settle_calls == 1

    def test_distinct_payments_both_settle(self):
        facilitator = x402Facilitator().register(CASH_NETWORK, CashScheme())
        john, requirements = make_payment("John")
        jane, _ = make_payment("Jane")

        assert facilitator.settle(john, requirements).success
        assert facilitator.settle(jane, requirements).success

    def test_failed_settlement_can_be_retried(self):
        scheme = CashScheme()
        facilitator = x402Facilitator().register(CASH_NETWORK, scheme)
        payload, requirements = make_payment()
        expired = payload.model_copy(update={"payload": {**payload.payload, "validUntil": 0}})

        assert facilitator.settle(expired, requirements).error_reason == "expired"
        assert facilitator.settle(expired, requirements).error_reason == "expired"
        assert scheme.settle_calls == 2

    def test_concurrent_settlement_is_refused(self):
        started = threading.Event()
        release = threading.Event()

        class SlowCashScheme(CashScheme):
            def settle(self, payload, requirements):
                started.set()
                release.wait(5)
                return super().settle(payload, requirements)

        scheme = SlowCashScheme()
        facilitator = x402Facilitator().register(CASH_NETWORK, scheme)
        payload, requirements = make_payment()
        results: list[SettleResponse] = []

        worker = threading.Thread(
            target=lambda: results.append(facilitator.settle(payload, requirements))
        )
        worker.start()
        assert started.wait(5)

        concurrent = facilitator.settle(payload, requirements)
        release.set()
        worker.join(5)

        assert concurrent.success is False
        assert concurrent.error_reason == ERR_SETTLEMENT_IN_PROGRESS
        assert results[0].success is True
        assert scheme.settle_calls == 1

    def test_fingerprint_is_stable(self):
        payload, _ = make_payment()
        copy = PaymentPayload.model_validate(payload.to_wire())

        assert payment_fingerprint(payload) == payment_fingerprint(copy)


class TestFacilitatorDiscovery:
    def test_get_supported(self):
        facilitator = x402Facilitator().register([CASH_NETWORK, "x402:coupons"], CashScheme())

        assert facilitator.get_supported().pairs() == [
            ("cash", CASH_NETWORK),
            ("cash", "x402:coupons"),
        ]

    def test_quote_without_provider(self):
        request = QuoteRequest(
            src_token_address="COUPON",
            src_network="x402:coupons",
            dst_token_address="USD",
            dst_network=CASH_NETWORK,
            dst_amount="1000",
        )

        with pytest.raises(ConfigurationError):
            x402Facilitator().quote(request)

    def test_quote_with_provider(self):
        def provider(request: QuoteRequest) -> QuoteResponse:
            return QuoteResponse(
                success=True,
                data=QuoteData(
                    payment_amount=str(int(request.dst_amount) + 2),
                    facilitator_address="Facilitator",
                    fee_payer_address="FeePayer",
                ),
            )

        facilitator = x402Facilitator(quote_provider=provider)
        request = QuoteRequest(
            src_token_address="COUPON",
            src_network="x402:coupons",
            dst_token_address="USD",
            dst_network=CASH_NETWORK,
            dst_amount="1000",
        )

        assert facilitator.quote(request).data.payment_amount == "1002"


class TestSettlementMemory:
    def test_payment_is_forgotten_after_its_timeout(self):
        now = [1_000.0]
        scheme = CashScheme()
        facilitator = x402Facilitator(clock=lambda: now[0]).register(CASH_NETWORK, scheme)
        payload, requirements = make_payment()

        assert facilitator.settle(payload, requirements).success
        now[0] += requirements.max_timeout_seconds - 1
        assert facilitator.settle(payload, requirements).error_reason == ERR_ALREADY_SETTLED

        now[0] += 1
        facilitator.settle(payload, requirements)

        # Past the window the payload reaches the scheme, whose expiry check owns it
        assert scheme.settle_calls == 2

    def test_oldest_payment_is_evicted_at_capacity(self):
        scheme = CashScheme()
        facilitator = x402Facilitator(max_settled=1).register(CASH_NETWORK, scheme)
        john, requirements = make_payment("John")
        jane, _ = make_payment("Jane")

        facilitator.settle(john, requirements)
        facilitator.settle(jane, requirements)

        assert facilitator.settle(jane, requirements).error_reason == ERR_ALREADY_SETTLED
        assert scheme.settle_calls == 2
        facilitator.settle(john, requirements)
        assert scheme.settle_calls == 3

    def test_capacity_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            x402Facilitator(max_settled=0)
