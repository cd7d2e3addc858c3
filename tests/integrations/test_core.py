"""Integration tests for x402Client, x402ResourceServer, and x402Facilitator.

The cash flow exercises the protocol core with a mock scheme; the EVM flow
runs real EIP-3009 signing and verification against a mocked chain.
"""

from unittest.mock import MagicMock

from eth_account import Account

from anyspend_x402 import (
    PaymentPreferences,
    RequestContext,
    ResourceResponse,
    RouteConfig,
    SettleResponse,
    x402Client,
    x402Facilitator,
    x402ResourceServer,
)
from anyspend_x402.http import PAYMENT_HEADER, PAYMENT_RESPONSE_HEADER
from anyspend_x402.mechanisms.evm import EthAccountSigner, ExactEvmScheme, TransactionReceipt

from ..mocks import CASH_NETWORK, CashFacilitatorClient, CashScheme

COUPON_NETWORK = "x402:coupons"
USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
SELLER = "0x1111111111111111111111111111111111111111"


def serve(session) -> ResourceResponse:
    return ResourceResponse(status=200, body={"weather": "sunny"})


class TestCashFlow:
    """Full client -> server -> facilitator round trips with the cash scheme."""

    def setup_method(self) -> None:
        self.facilitator = x402Facilitator().register([CASH_NETWORK, COUPON_NETWORK], CashScheme())
        self.facilitator_client = CashFacilitatorClient(self.facilitator, quote_amount="1002")

        self.server = x402ResourceServer(self.facilitator_client)
        self.server.register([CASH_NETWORK, COUPON_NETWORK], CashScheme())
        self.server.initialize()

        self.route = RouteConfig(
            price=1000, asset="USD", network=CASH_NETWORK, pay_to="Company", scheme="cash"
        )

    def request(self, headers=None) -> ResourceResponse:
        context = RequestContext(path="/weather", headers=headers or {}, url="https://company.co/weather")
        return self.server.handle(context, self.route, serve)

    def test_server_should_verify_and_settle_cash_payment_from_client(self) -> None:
        client = x402Client().register(CASH_NETWORK, CashScheme(), "John")

        challenge = self.request()
        assert challenge.status == 402

        response = self.request(client.payment_headers(challenge.body))

        assert response.status == 200
        assert response.body == {"weather": "sunny"}
        settlement = x402Client.check_payment_response(response.headers[PAYMENT_RESPONSE_HEADER])
        assert isinstance(settlement, SettleResponse)
        assert settlement.transaction == "John transferred 1000 USD to Company"
        assert self.facilitator_client.calls == ["supported", "verify", "settle"]

    def test_cross_asset_payment_in_preferred_token(self) -> None:
        client = x402Client(
            preferences=PaymentPreferences(preferred_token="COUPON", preferred_network=COUPON_NETWORK)
        ).register([CASH_NETWORK, COUPON_NETWORK], CashScheme(), "John")

        challenge = self.request(client.preference_headers())
        accepts = challenge.body["accepts"]
        assert len(accepts) == 2
        assert accepts[1]["srcAmountRequired"] == "1002"

        # The server re-quotes on the paid retry; nothing was kept between requests
        response = self.request(client.payment_headers(challenge.body))

        assert response.status == 200
        settlement = x402Client.check_payment_response(response.headers[PAYMENT_RESPONSE_HEADER])
        assert settlement.transaction == "John transferred 1002 COUPON to Company"
        assert settlement.network == COUPON_NETWORK
        assert self.facilitator_client.calls.count("quote") == 2

    def test_payment_cannot_be_settled_twice(self) -> None:
        client = x402Client().register(CASH_NETWORK, CashScheme(), "John")
        headers = client.payment_headers(self.request().body)

        first = self.request(headers)
        replay = self.request(headers)

        assert x402Client.decode_payment_response(first.headers[PAYMENT_RESPONSE_HEADER]).success
        assert not x402Client.decode_payment_response(replay.headers[PAYMENT_RESPONSE_HEADER]).success

    def test_payment_for_unregistered_network_is_rejected_locally(self) -> None:
        client = x402Client().register("x402:gold", CashScheme(), "John")
        offer = self.request().body["accepts"][0]
        offer["network"] = "x402:gold"
        header = client.create_payment_header({"accepts": [offer]})

        response = self.request({PAYMENT_HEADER: header})

        assert response.status == 400
        assert "verify" not in self.facilitator_client.calls


class TestExactEvmFlow:
    """Client signs EIP-3009, the local facilitator verifies and settles."""

    def setup_method(self) -> None:
        self.chain = MagicMock()
        self.chain.read_contract.side_effect = (
            lambda address, abi, function_name, *args: False
            if function_name == "authorizationState"
            else 10_000_000
        )
        self.chain.write_contract.return_value = "0x" + "cd" * 32
        self.chain.wait_for_transaction_receipt.return_value = TransactionReceipt(status=1)

        self.facilitator = x402Facilitator().register(
            "base", ExactEvmScheme(facilitator_signer=self.chain)
        )
        self.server = x402ResourceServer(self.facilitator)
        self.server.register("base", ExactEvmScheme())
        self.server.initialize()

        self.route = RouteConfig(price=1000, asset=USDC_BASE, network="base", pay_to=SELLER)
        self.account = Account.from_key("0x" + "22" * 32)
        self.client = x402Client().register("base", ExactEvmScheme(), EthAccountSigner(self.account))

    def request(self, headers=None) -> ResourceResponse:
        context = RequestContext(path="/weather", headers=headers or {}, url="https://api.example.com/weather")
        return self.server.handle(context, self.route, serve)

    def test_pay_and_settle(self) -> None:
        challenge = self.request()
        assert challenge.status == 402
        assert challenge.body["accepts"][0]["maxTimeoutSeconds"] == 300

        response = self.request(self.client.payment_headers(challenge.body))

        assert response.status == 200
        settlement = x402Client.check_payment_response(response.headers[PAYMENT_RESPONSE_HEADER])
        assert settlement.transaction == "0x" + "cd" * 32
        assert settlement.payer == self.account.address
        self.chain.write_contract.assert_called_once()

    def test_underpayment_is_not_served(self) -> None:
        challenge = self.request()
        cheaper = dict(challenge.body["accepts"][0], maxAmountRequired="999")
        header = self.client.create_payment_header({"accepts": [cheaper]})

        response = self.request({PAYMENT_HEADER: header})

        assert response.status == 402
        assert response.body["error"] == "invalid_exact_evm_payload_authorization_value"
        self.chain.write_contract.assert_not_called()
