import base64
import json
import time

import pytest

from anyspend_x402.config import ResourceServerConfig, RouteConfig
from anyspend_x402.encoding import decode_settle_response, encode_payment
from anyspend_x402.exceptions import (
    ConfigurationError,
    MalformedPayload,
    NoMatchingRequirement,
    SchemeNotFoundError,
    TransportError,
    VerificationFailed,
)
from anyspend_x402.facilitator import x402Facilitator
from anyspend_x402.http import (
    PAYMENT_HEADER,
    PAYMENT_RESPONSE_HEADER,
    PREFERRED_NETWORK_HEADER,
    PREFERRED_TOKEN_HEADER,
)
from anyspend_x402.server import (
    RESULT_PAYMENT_ERROR,
    RESULT_PAYMENT_REQUIRED,
    RESULT_PAYMENT_VERIFIED,
    RequestContext,
    ResourceResponse,
    status_for_error,
    x402ResourceServer,
)
from anyspend_x402.types import PaymentPayload, PaymentPreferences, SettleResponse, VerifyResponse

from .mocks import CASH_NETWORK, CashFacilitatorClient, CashScheme

COUPON_NETWORK = "x402:coupons"


def make_route(**overrides) -> RouteConfig:
    fields = {"price": 1000, "asset": "USD", "network": CASH_NETWORK, "pay_to": "Company", "scheme": "cash"}
    fields.update(overrides)
    return RouteConfig(**fields)


def served(session) -> ResourceResponse:
    return ResourceResponse(status=200, body={"data": "secret"})


class UnreachableChainScheme(CashScheme):
    def settle(self, payload, requirements):
        raise ConnectionError("rpc node unreachable")


class TestResourceServerBase:
    def setup_method(self) -> None:
        self.facilitator_scheme = CashScheme()
        self.facilitator = x402Facilitator().register(
            [CASH_NETWORK, COUPON_NETWORK], self.facilitator_scheme
        )
        self.facilitator_client = CashFacilitatorClient(self.facilitator, quote_amount="1002")
        self.server = x402ResourceServer(self.facilitator_client)
        self.server.register([CASH_NETWORK, COUPON_NETWORK], CashScheme())

    def pay(self, accepts, name: str = "John", index: int = 0) -> str:
        return encode_payment(CashScheme().build_payload(accepts[index], name))

    def context(self, **headers) -> RequestContext:
        return RequestContext(path="/weather", headers=headers, url="https://company.co/weather")


class TestInitialize(TestResourceServerBase):
    def test_initialize_freezes_registry(self):
        self.server.initialize()

        assert self.facilitator_client.calls == ["supported"]
        assert self.server.registry.frozen

    def test_initialize_propagates_transport_error(self):
        self.facilitator_client.fail_with = "supported"

        with pytest.raises(TransportError):
            self.server.initialize()


class TestBuildPaymentRequirements(TestResourceServerBase):
    def test_primary_offer(self):
        accepts = self.server.build_payment_requirements(make_route(), "https://company.co/weather")

        assert len(accepts) == 1
        offer = accepts[0]
        assert offer.scheme == "cash"
        assert offer.max_amount_required == "1000"
        assert offer.resource == "https://company.co/weather"
        assert offer.max_timeout_seconds == 300
        assert offer.src_network is None
        assert self.facilitator_client.calls == []

    def test_route_timeout_wins(self):
        accepts = self.server.build_payment_requirements(
            make_route(max_timeout_seconds=60), "https://company.co/weather"
        )

        assert accepts[0].max_timeout_seconds == 60

    def test_unregistered_route_scheme(self):
        with pytest.raises(SchemeNotFoundError):
            self.server.build_payment_requirements(make_route(network="x402:gold"), "r")

    def test_preferences_add_secondary_offer(self):
        accepts = self.server.build_payment_requirements(
            make_route(),
            "https://company.co/weather",
            PaymentPreferences(preferred_token="COUPON", preferred_network=COUPON_NETWORK),
        )

        assert [offer.get_payment_network() for offer in accepts] == [CASH_NETWORK, COUPON_NETWORK]
        assert accepts[1].src_amount_required == "1002"
        assert accepts[1].max_amount_required == "1000"

    def test_failed_cross_asset_quote_keeps_primary(self):
        self.facilitator_client.fail_with = "quote"

        accepts = self.server.build_payment_requirements(
            make_route(),
            "https://company.co/weather",
            PaymentPreferences(preferred_token="COUPON", preferred_network=COUPON_NETWORK),
        )

        assert len(accepts) == 1

    def test_scheme_requiring_quote_gets_quoted_primary(self):
        server = x402ResourceServer(self.facilitator_client)
        server.register(CASH_NETWORK, CashScheme(requires_quote=True))

        accepts = server.build_payment_requirements(make_route(), "r")

        assert accepts[0].get_payment_amount() == "1002"
        assert accepts[0].get_extra("feePayer") == "FeePayer"

    def test_refused_required_quote_is_configuration_error(self):
        server = x402ResourceServer(self.facilitator_client)
        server.register(CASH_NETWORK, CashScheme(requires_quote=True))
        self.facilitator_client.quote_amount = None

        with pytest.raises(ConfigurationError):
            server.build_payment_requirements(make_route(), "r")


class TestFindMatchingRequirements(TestResourceServerBase):
    def test_prefers_offer_paid_on_payload_network(self):
        accepts = self.server.build_payment_requirements(
            make_route(),
            "r",
            PaymentPreferences(preferred_token="COUPON", preferred_network=COUPON_NETWORK),
        )
        payload = PaymentPayload(scheme="cash", network=COUPON_NETWORK, payload={})

        assert self.server.find_matching_requirements(accepts, payload) is accepts[1]

    def test_no_match(self):
        accepts = self.server.build_payment_requirements(make_route(), "r")
        payload = PaymentPayload(scheme="exact", network=CASH_NETWORK, payload={})

        assert self.server.find_matching_requirements(accepts, payload) is None


class TestVerifyPayment(TestResourceServerBase):
    """Decode, shape check and match happen before the facilitator is asked."""

    def test_verified_session(self):
        accepts = self.server.build_payment_requirements(make_route(), "r")

        session = self.server.verify_payment(self.pay(accepts), accepts)

        assert session.payer == "~John"
        assert session.requirements is accepts[0]
        assert session.settlement is None
        assert self.facilitator_client.calls == ["verify"]

    def test_undecodable_header(self):
        accepts = self.server.build_payment_requirements(make_route(), "r")

        with pytest.raises(MalformedPayload):
            self.server.verify_payment("not-base64!", accepts)
        assert self.facilitator_client.calls == []

    def test_unregistered_pair_makes_no_facilitator_calls(self):
        accepts = self.server.build_payment_requirements(make_route(), "r")
        payload = PaymentPayload(scheme="exact", network="base", payload={"signature": "0x"})

        with pytest.raises(SchemeNotFoundError):
            self.server.verify_payment(encode_payment(payload), accepts)
        assert self.facilitator_client.calls == []

    def test_wrong_inner_shape(self):
        accepts = self.server.build_payment_requirements(make_route(), "r")
        payload = PaymentPayload(scheme="cash", network=CASH_NETWORK, payload={"name": "John"})

        with pytest.raises(MalformedPayload):
            self.server.verify_payment(encode_payment(payload), accepts)
        assert self.facilitator_client.calls == []

    def test_payment_for_unoffered_network(self):
        accepts = self.server.build_payment_requirements(make_route(), "r")
        coupon_offer = accepts[0].model_copy(update={"network": COUPON_NETWORK})

        with pytest.raises(NoMatchingRequirement):
            self.server.verify_payment(self.pay([coupon_offer]), accepts)
        assert self.facilitator_client.calls == []

    def test_rejected_payment(self):
        accepts = self.server.build_payment_requirements(make_route(), "r")
        payload = CashScheme().build_payload(accepts[0], "John")
        payload = payload.model_copy(update={"payload": {**payload.payload, "signature": "~Jane"}})

        with pytest.raises(VerificationFailed) as exc_info:
            self.server.verify_payment(encode_payment(payload), accepts)
        assert exc_info.value.reason == "invalid_signature"


class TestProcessRequest(TestResourceServerBase):
    def test_no_payment_header(self):
        result = self.server.process_request(self.context(), make_route())

        assert result.type == RESULT_PAYMENT_REQUIRED
        assert result.status == 402
        assert result.body["x402Version"] == 1
        assert result.body["error"] == "X-PAYMENT header is required"
        assert result.body["accepts"][0]["resource"] == "https://company.co/weather"
        assert self.facilitator_client.calls == []

    def test_preference_headers_add_offer(self):
        context = self.context(
            **{PREFERRED_TOKEN_HEADER: "COUPON", PREFERRED_NETWORK_HEADER: COUPON_NETWORK}
        )

        result = self.server.process_request(context, make_route())

        assert len(result.body["accepts"]) == 2
        assert result.body["accepts"][1]["srcTokenAddress"] == "COUPON"

    def test_header_lookup_is_case_insensitive(self):
        accepts = self.server.build_payment_requirements(make_route(), "https://company.co/weather")
        context = self.context(**{"x-payment": self.pay(accepts)})

        result = self.server.process_request(context, make_route())

        assert result.type == RESULT_PAYMENT_VERIFIED

    @pytest.mark.parametrize(
        ("header", "status"),
        [
            ("%%%", 400),
            (
                base64.b64encode(
                    json.dumps({"scheme": "exact", "network": "base", "payload": {}}).encode()
                ).decode(),
                400,
            ),
        ],
    )
    def test_unusable_payment_is_bad_request(self, header, status):
        result = self.server.process_request(self.context(**{PAYMENT_HEADER: header}), make_route())

        assert result.type == RESULT_PAYMENT_ERROR
        assert result.status == status
        assert "verify" not in self.facilitator_client.calls

    def test_rejected_payment_is_payment_required(self):
        accepts = self.server.build_payment_requirements(make_route(), "https://company.co/weather")
        payload = CashScheme().build_payload(accepts[0], "John")
        payload = payload.model_copy(update={"payload": {**payload.payload, "validUntil": 0}})

        result = self.server.process_request(
            self.context(**{PAYMENT_HEADER: encode_payment(payload)}), make_route()
        )

        assert result.status == 402
        assert result.error == "expired"
        assert result.body["accepts"]

    def test_facilitator_unreachable_is_bad_gateway(self):
        accepts = self.server.build_payment_requirements(make_route(), "https://company.co/weather")
        self.facilitator_client.fail_with = "verify"

        result = self.server.process_request(
            self.context(**{PAYMENT_HEADER: self.pay(accepts)}), make_route()
        )

        assert result.status == 502
        assert result.error == "facilitator_unavailable"

    def test_unquotable_route_is_server_error(self):
        server = x402ResourceServer(self.facilitator_client)
        server.register(CASH_NETWORK, CashScheme(requires_quote=True))
        self.facilitator_client.quote_amount = None

        result = server.process_request(self.context(), make_route())

        assert result.status == 500

    def test_quote_transport_failure_is_bad_gateway(self):
        server = x402ResourceServer(self.facilitator_client)
        server.register(CASH_NETWORK, CashScheme(requires_quote=True))
        self.facilitator_client.fail_with = "quote"

        result = server.process_request(self.context(), make_route())

        assert result.status == 502

    def test_unregistered_pair_is_rejected_before_quoting(self):
        server = x402ResourceServer(self.facilitator_client)
        server.register(CASH_NETWORK, CashScheme(requires_quote=True))
        payload = PaymentPayload(scheme="nope", network="x402:unknown", payload={})
        context = self.context(
            **{
                PAYMENT_HEADER: encode_payment(payload),
                PREFERRED_TOKEN_HEADER: "COUPON",
                PREFERRED_NETWORK_HEADER: COUPON_NETWORK,
            }
        )

        result = server.process_request(context, make_route())

        assert result.type == RESULT_PAYMENT_ERROR
        assert result.status == 400
        assert self.facilitator_client.calls == []


class TestSettlement(TestResourceServerBase):
    def verified_session(self):
        accepts = self.server.build_payment_requirements(make_route(), "https://company.co/weather")
        return self.server.verify_payment(self.pay(accepts), accepts)

    def test_settles_at_most_once_per_session(self):
        session = self.verified_session()

        first = self.server.process_settlement(session)
        second = self.server.process_settlement(session)

        assert first.success is True
        assert second is first
        assert self.facilitator_client.calls.count("settle") == 1
        assert self.facilitator_scheme.settle_calls == 1

    def test_transport_failure_is_failed_settlement(self):
        session = self.verified_session()
        self.facilitator_client.fail_with = "settle"

        result = self.server.process_settlement(session)

        assert result.success is False
        assert result.error_reason.startswith("facilitator_unavailable")
        assert result.payer == "~John"

    def test_background_settlement(self):
        session = self.verified_session()

        thread = self.server.settle_in_background(session)
        thread.join(5)

        assert session.settlement is not None
        assert session.settlement.success is True


class TestHandle(TestResourceServerBase):
    """verify, then serve, then settle."""

    def paid_context(self):
        accepts = self.server.build_payment_requirements(make_route(), "https://company.co/weather")
        return self.context(**{PAYMENT_HEADER: self.pay(accepts)})

    def test_unpaid_request_is_not_served(self):
        calls = []

        response = self.server.handle(self.context(), make_route(), lambda s: calls.append(s))

        assert response.status == 402
        assert calls == []

    def test_order_is_verify_serve_settle(self):
        order = []

        def serve(session):
            order.append(list(self.facilitator_client.calls))
            return served(session)

        response = self.server.handle(self.paid_context(), make_route(), serve)

        assert order == [["verify"]]
        assert self.facilitator_client.calls == ["verify", "settle"]
        assert response.status == 200
        assert response.body == {"data": "secret"}
        settlement = decode_settle_response(response.headers[PAYMENT_RESPONSE_HEADER])
        assert isinstance(settlement, SettleResponse)
        assert settlement.transaction == "John transferred 1000 USD to Company"
        assert response.headers["Access-Control-Expose-Headers"] == PAYMENT_RESPONSE_HEADER

    def test_handler_error_is_not_settled(self):
        response = self.server.handle(
            self.paid_context(), make_route(), lambda s: ResourceResponse(status=500)
        )

        assert response.status == 500
        assert "settle" not in self.facilitator_client.calls
        assert PAYMENT_RESPONSE_HEADER not in response.headers

    def test_settlement_failure_still_serves_with_failed_header(self):
        self.facilitator_client.fail_with = "settle"

        response = self.server.handle(self.paid_context(), make_route(), served)

        assert response.status == 200
        settlement = decode_settle_response(response.headers[PAYMENT_RESPONSE_HEADER])
        assert settlement.success is False

    def test_settlement_crash_still_serves_with_failed_header(self):
        facilitator = x402Facilitator().register(CASH_NETWORK, UnreachableChainScheme())
        server = x402ResourceServer(CashFacilitatorClient(facilitator))
        server.register(CASH_NETWORK, CashScheme())
        accepts = server.build_payment_requirements(make_route(), "https://company.co/weather")
        sessions = []

        def serve(session):
            sessions.append(session)
            return served(session)

        response = server.handle(
            self.context(**{PAYMENT_HEADER: self.pay(accepts)}), make_route(), serve
        )

        assert response.status == 200
        assert response.body == {"data": "secret"}
        settlement = decode_settle_response(response.headers[PAYMENT_RESPONSE_HEADER])
        assert settlement.success is False
        assert settlement.error_reason == "settlement_error: rpc node unreachable"
        assert sessions[0].settlement.success is False

    def test_deferred_settlement(self):
        server = x402ResourceServer(
            self.facilitator_client, config=ResourceServerConfig(settlement="deferred")
        )
        server.register(CASH_NETWORK, CashScheme())
        accepts = server.build_payment_requirements(make_route(), "https://company.co/weather")
        context = self.context(**{PAYMENT_HEADER: self.pay(accepts)})

        response = server.handle(context, make_route(), served)

        confirmation = decode_settle_response(response.headers[PAYMENT_RESPONSE_HEADER])
        assert isinstance(confirmation, VerifyResponse)
        assert confirmation.is_valid is True

        deadline = time.time() + 5
        while self.facilitator_scheme.settle_calls == 0 and time.time() < deadline:
            time.sleep(0.01)
        assert self.facilitator_scheme.settle_calls == 1

    def test_retry_with_same_payment_is_refused_at_settlement(self):
        context = self.paid_context()

        first = self.server.handle(context, make_route(), served)
        second = self.server.handle(context, make_route(), served)

        assert decode_settle_response(first.headers[PAYMENT_RESPONSE_HEADER]).success is True
        assert decode_settle_response(second.headers[PAYMENT_RESPONSE_HEADER]).success is False
        assert self.facilitator_scheme.settle_calls == 1


def test_status_for_error():
    assert status_for_error(MalformedPayload("x")) == 400
    assert status_for_error(SchemeNotFoundError("exact", "base")) == 400
    assert status_for_error(NoMatchingRequirement("x")) == 402
    assert status_for_error(VerificationFailed("x")) == 402
    assert status_for_error(TransportError("x")) == 502
