from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

X402_VERSION = 1

# Sentinel asset address used for native SOL payments
NATIVE_SOL_ADDRESS = "11111111111111111111111111111111"


def _validate_integer_string(v: str, field: str) -> str:
    if not isinstance(v, str):
        raise ValueError(f"{field} must be an integer encoded as a string")
    try:
        amount = int(v)
    except ValueError:
        raise ValueError(f"{field} must be an integer encoded as a string")
    if amount < 0:
        raise ValueError(f"{field} must not be negative")
    return v


class CamelModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PaymentRequirements(CamelModel):
    scheme: str
    network: str
    asset: str
    pay_to: str
    max_amount_required: str
    resource: str
    description: str = ""
    mime_type: str = ""
    max_timeout_seconds: int = 300
    src_network: Optional[str] = None
    src_token_address: Optional[str] = None
    src_amount_required: Optional[str] = None
    extra: Optional[dict[str, Any]] = None

    @field_validator("max_amount_required")
    def validate_max_amount_required(cls, v):
        return _validate_integer_string(v, "maxAmountRequired")

    @field_validator("src_amount_required")
    def validate_src_amount_required(cls, v):
        if v is None:
            return v
        return _validate_integer_string(v, "srcAmountRequired")

    def is_cross_asset(self) -> bool:
        """Whether the payer settles in a different asset than the seller."""
        return self.src_token_address is not None

    def get_payment_network(self) -> str:
        """Network the payer signs on."""
        return self.src_network or self.network

    def get_payment_asset(self) -> str:
        """Asset the payer spends."""
        return self.src_token_address or self.asset

    def get_payment_amount(self) -> str:
        """Amount the payer spends, in the payment asset's smallest unit."""
        return self.src_amount_required or self.max_amount_required

    def get_payment_recipient(self) -> str:
        """Account the payer's funds move to.

        Cross-asset offers pay the facilitator, which converts and forwards
        to ``pay_to``.
        """
        if self.is_cross_asset():
            recipient = (self.extra or {}).get("facilitatorAddress")
            if recipient:
                return recipient
        return self.pay_to

    def get_extra(self, key: str, default: Any = None) -> Any:
        return (self.extra or {}).get(key, default)

    def matches_network(self, network: str) -> bool:
        return network == self.network or (
            self.src_network is not None and network == self.src_network
        )


class PaymentPayload(CamelModel):
    x402_version: int = X402_VERSION
    scheme: str
    network: str
    payload: dict[str, Any]


class PaymentRequiredResponse(CamelModel):
    """Returned by a server as json alongside a 402 response code."""

    x402_version: int = X402_VERSION
    accepts: list[PaymentRequirements]
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Scheme payloads
# ---------------------------------------------------------------------------


class SchemePayload(CamelModel):
    """Base for scheme-specific payloads. Unknown fields are rejected."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        extra="forbid",
    )


class EIP3009Authorization(SchemePayload):
    from_: str = Field(alias="from")
    to: str
    value: str
    valid_after: str
    valid_before: str
    nonce: str

    @field_validator("value", "valid_after", "valid_before")
    def validate_integers(cls, v, info):
        return _validate_integer_string(v, info.field_name)


class ExactEvmPayload(SchemePayload):
    signature: str
    authorization: EIP3009Authorization


class SolanaApproval(SchemePayload):
    owner: str
    delegate: str
    token_account: str
    token_mint: str
    value: str
    serialized_transaction: str
    blockhash: str
    last_valid_block_height: int

    @field_validator("value")
    def validate_value(cls, v):
        return _validate_integer_string(v, "value")


class SolanaNativeTransfer(SchemePayload):
    owner: str
    destination: str
    value: str
    serialized_transaction: str
    blockhash: str
    last_valid_block_height: int

    @field_validator("value")
    def validate_value(cls, v):
        return _validate_integer_string(v, "value")


class GaslessApprovalPayload(SchemePayload):
    signature: str
    approval: SolanaApproval


class GaslessNativePayload(SchemePayload):
    signature: str
    transfer: SolanaNativeTransfer


# ---------------------------------------------------------------------------
# Facilitator results
# ---------------------------------------------------------------------------


class VerifyResponse(CamelModel):
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None


class SettleResponse(CamelModel):
    success: bool
    error_reason: Optional[str] = None
    transaction: str = ""
    network: Optional[str] = None
    payer: Optional[str] = None


class SupportedKind(CamelModel):
    x402_version: int = X402_VERSION
    scheme: str
    network: str
    extra: Optional[dict[str, Any]] = None


class SupportedResponse(CamelModel):
    kinds: list[SupportedKind] = Field(default_factory=list)

    def pairs(self) -> list[tuple[str, str]]:
        return [(kind.scheme, kind.network) for kind in self.kinds]


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


class QuoteRequest(CamelModel):
    src_token_address: str
    src_network: str
    dst_token_address: str
    dst_network: str
    dst_amount: str

    @field_validator("dst_amount")
    def validate_dst_amount(cls, v):
        return _validate_integer_string(v, "dstAmount")


class QuoteData(CamelModel):
    payment_amount: str
    facilitator_address: str
    fee_payer_address: str

    @field_validator("payment_amount")
    def validate_payment_amount(cls, v):
        return _validate_integer_string(v, "paymentAmount")


class QuoteResponse(CamelModel):
    success: bool
    data: Optional[QuoteData] = None
    error: Optional[str] = None


class PaymentPreferences(CamelModel):
    """Payer hints carried by the X-PREFERRED-* request headers."""

    preferred_token: Optional[str] = None
    preferred_network: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.preferred_token and self.preferred_network)


SettlementPolicy = Literal["sync", "deferred"]
