"""Exact EVM scheme: EIP-3009 transferWithAuthorization payments."""

from __future__ import annotations

import logging
import time
from typing import Callable

from pydantic import ValidationError

from ....exceptions import ConfigurationError, MalformedPayload
from ....types import (
    X402_VERSION,
    EIP3009Authorization,
    ExactEvmPayload,
    PaymentPayload,
    PaymentRequirements,
    QuoteResponse,
    SettleResponse,
    VerifyResponse,
)
from ..constants import (
    AUTHORIZATION_STATE_ABI,
    AUTHORIZATION_TYPES,
    BALANCE_OF_ABI,
    DEFAULT_CLOCK_SKEW,
    ERR_ASSET_MISMATCH,
    ERR_CHAIN_READ_FAILED,
    ERR_INSUFFICIENT_AMOUNT,
    ERR_INSUFFICIENT_BALANCE,
    ERR_INVALID_PAYLOAD,
    ERR_INVALID_SIGNATURE,
    ERR_MISSING_EIP712_DOMAIN,
    ERR_NETWORK_MISMATCH,
    ERR_NONCE_ALREADY_USED,
    ERR_RECIPIENT_MISMATCH,
    ERR_TRANSACTION_FAILED,
    ERR_UNSUPPORTED_SCHEME,
    ERR_VALID_AFTER_FUTURE,
    ERR_VALID_BEFORE_EXPIRED,
    EXPIRY_BUFFER_SECONDS,
    FUNCTION_AUTHORIZATION_STATE,
    FUNCTION_BALANCE_OF,
    FUNCTION_TRANSFER_WITH_AUTHORIZATION,
    SCHEME_EXACT,
    TRANSFER_WITH_AUTHORIZATION_VRS_ABI,
    TX_STATUS_SUCCESS,
)
from ..signer import ClientEvmSigner, FacilitatorEvmSigner
from ..types import TypedDataDomain
from ..utils import (
    addresses_equal,
    build_authorization_message,
    bytes_to_hex,
    create_nonce,
    create_validity_window,
    get_asset_info,
    get_evm_chain_id,
    hex_to_bytes,
    normalize_address,
    recover_typed_data_signer,
    split_signature,
)

logger = logging.getLogger(__name__)


class ExactEvmScheme:
    """Exact payments on EVM chains via EIP-3009 authorizations.

    The payer signs a TransferWithAuthorization off-chain; the facilitator
    redeems it once on-chain. Verification is purely cryptographic, only
    settlement touches the chain.

    Example:
        ```python
        scheme = ExactEvmScheme(facilitator_signer=Web3FacilitatorSigner(key, rpc))
        registry.register(["base", "base-sepolia"], scheme)
        ```
    """

    scheme = SCHEME_EXACT
    requires_quote = False

    def __init__(
        self,
        facilitator_signer: FacilitatorEvmSigner | None = None,
        clock_skew: int = DEFAULT_CLOCK_SKEW,
        clock: Callable[[], float] = time.time,
    ):
        """Create ExactEvmScheme.

        Args:
            facilitator_signer: Chain access for settlement. Not needed to
                build or verify payloads.
            clock_skew: Seconds of tolerated clock drift.
            clock: Time source returning unix seconds.
        """
        self._facilitator_signer = facilitator_signer
        self._clock_skew = clock_skew
        self._clock = clock

    # ========================================================================
    # Payload parsing
    # ========================================================================

    def parse_payload(self, payload: PaymentPayload) -> ExactEvmPayload:
        if payload.scheme != self.scheme:
            raise MalformedPayload(f"Expected scheme '{self.scheme}', got '{payload.scheme}'")
        try:
            return ExactEvmPayload.model_validate(payload.payload)
        except ValidationError as e:
            raise MalformedPayload(f"Invalid exact EVM payload: {e}") from e

    def _get_domain(self, requirements: PaymentRequirements) -> TypedDataDomain:
        """Resolve the EIP-712 domain of the payment asset.

        Raises:
            ConfigurationError: If name/version cannot be determined.
        """
        network = requirements.get_payment_network()
        asset = requirements.get_payment_asset()
        info = get_asset_info(network, asset)

        if requirements.is_cross_asset():
            name = requirements.get_extra("srcTokenName") or info["name"]
            version = requirements.get_extra("srcTokenVersion") or info["version"]
        else:
            name = requirements.get_extra("name") or info["name"]
            version = requirements.get_extra("version") or info["version"]

        if not name or not version:
            raise ConfigurationError(
                f"EIP-712 domain name and version are required for asset {asset} on {network}"
            )

        chain_id = requirements.get_extra("chainId")
        if chain_id is None or requirements.is_cross_asset():
            chain_id = get_evm_chain_id(network)

        return TypedDataDomain(
            name=name,
            version=version,
            chain_id=int(chain_id),
            verifying_contract=normalize_address(asset),
        )

    # ========================================================================
    # Client side
    # ========================================================================

    def build_payload(
        self,
        requirements: PaymentRequirements,
        signer: ClientEvmSigner,
        quote: QuoteResponse | None = None,
    ) -> PaymentPayload:
        """Sign a transfer authorization for the requirements.

        Args:
            requirements: Selected payment requirements.
            signer: Payer's signing capability.
            quote: Unused; authorizations carry their own amount.

        Returns:
            PaymentPayload carrying an ExactEvmPayload.

        Raises:
            ConfigurationError: If the asset's EIP-712 domain is unknown.
        """
        domain = self._get_domain(requirements)
        recipient = requirements.get_payment_recipient()
        amount = requirements.get_payment_amount()

        valid_after, valid_before = create_validity_window(
            requirements.max_timeout_seconds,
            skew=self._clock_skew,
            now=int(self._clock()),
        )
        nonce = create_nonce()

        message = build_authorization_message(
            signer.address,
            recipient,
            int(amount),
            valid_after,
            valid_before,
            nonce,
        )
        signature = signer.sign_typed_data(
            domain,
            AUTHORIZATION_TYPES,
            "TransferWithAuthorization",
            message,
        )

        exact_payload = ExactEvmPayload(
            signature=bytes_to_hex(signature),
            authorization=EIP3009Authorization(
                from_=signer.address,
                to=recipient,
                value=amount,
                valid_after=str(valid_after),
                valid_before=str(valid_before),
                nonce=nonce,
            ),
        )

        return PaymentPayload(
            x402_version=X402_VERSION,
            scheme=self.scheme,
            network=requirements.get_payment_network(),
            payload=exact_payload.to_wire(),
        )

    # ========================================================================
    # Facilitator side
    # ========================================================================

    def verify(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> VerifyResponse:
        """Verify an authorization against requirements.

        Checks, in order: scheme and network, payload shape, recipient,
        amount, validity window, EIP-712 domain and signer.
        """
        if payload.scheme != self.scheme or requirements.scheme != self.scheme:
            return VerifyResponse(is_valid=False, invalid_reason=ERR_UNSUPPORTED_SCHEME)

        if payload.network != requirements.get_payment_network():
            return VerifyResponse(is_valid=False, invalid_reason=ERR_NETWORK_MISMATCH)

        try:
            exact_payload = self.parse_payload(payload)
        except MalformedPayload as e:
            return VerifyResponse(is_valid=False, invalid_reason=f"{ERR_INVALID_PAYLOAD}: {e}")

        auth = exact_payload.authorization
        payer = auth.from_

        if not addresses_equal(auth.to, requirements.get_payment_recipient()):
            return VerifyResponse(is_valid=False, invalid_reason=ERR_RECIPIENT_MISMATCH, payer=payer)

        if int(auth.value) < int(requirements.get_payment_amount()):
            return VerifyResponse(is_valid=False, invalid_reason=ERR_INSUFFICIENT_AMOUNT, payer=payer)

        now = int(self._clock())
        if int(auth.valid_before) < now + EXPIRY_BUFFER_SECONDS:
            return VerifyResponse(
                is_valid=False, invalid_reason=ERR_VALID_BEFORE_EXPIRED, payer=payer
            )
        if int(auth.valid_after) > now + self._clock_skew:
            return VerifyResponse(is_valid=False, invalid_reason=ERR_VALID_AFTER_FUTURE, payer=payer)

        verifying_contract = requirements.get_extra("verifyingContract")
        if (
            verifying_contract
            and not requirements.is_cross_asset()
            and not addresses_equal(verifying_contract, requirements.asset)
        ):
            return VerifyResponse(is_valid=False, invalid_reason=ERR_ASSET_MISMATCH, payer=payer)

        try:
            domain = self._get_domain(requirements)
        except (ConfigurationError, ValueError):
            return VerifyResponse(
                is_valid=False, invalid_reason=ERR_MISSING_EIP712_DOMAIN, payer=payer
            )

        try:
            message = build_authorization_message(
                auth.from_,
                auth.to,
                int(auth.value),
                int(auth.valid_after),
                int(auth.valid_before),
                auth.nonce,
            )
            recovered = recover_typed_data_signer(domain, message, exact_payload.signature)
        except Exception as e:
            logger.debug("Signature recovery failed: %s", e)
            return VerifyResponse(is_valid=False, invalid_reason=ERR_INVALID_SIGNATURE, payer=payer)

        if not addresses_equal(recovered, auth.from_):
            return VerifyResponse(is_valid=False, invalid_reason=ERR_INVALID_SIGNATURE, payer=payer)

        return VerifyResponse(is_valid=True, payer=payer)

    def settle(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> SettleResponse:
        """Redeem the authorization on-chain.

        Re-verifies first; the settle path never trusts an earlier verify.

        Raises:
            ConfigurationError: If no facilitator signer is configured.
        """
        signer = self._facilitator_signer
        if signer is None:
            raise ConfigurationError("ExactEvmScheme needs a facilitator_signer to settle")

        network = payload.network
        verify_result = self.verify(payload, requirements)
        if not verify_result.is_valid:
            return SettleResponse(
                success=False,
                error_reason=verify_result.invalid_reason,
                network=network,
                payer=verify_result.payer,
            )

        exact_payload = self.parse_payload(payload)
        auth = exact_payload.authorization
        asset = requirements.get_payment_asset()
        payer = normalize_address(auth.from_)
        nonce = hex_to_bytes(auth.nonce)

        try:
            used = signer.read_contract(
                asset, AUTHORIZATION_STATE_ABI, FUNCTION_AUTHORIZATION_STATE, payer, nonce
            )
            balance = signer.read_contract(asset, BALANCE_OF_ABI, FUNCTION_BALANCE_OF, payer)
        except Exception as e:
            logger.error("Pre-settlement chain read on %s failed: %s", network, e)
            return SettleResponse(
                success=False,
                error_reason=f"{ERR_CHAIN_READ_FAILED}: {e}",
                network=network,
                payer=payer,
            )

        if used:
            return SettleResponse(
                success=False,
                error_reason=ERR_NONCE_ALREADY_USED,
                network=network,
                payer=payer,
            )

        if int(balance) < int(auth.value):
            return SettleResponse(
                success=False,
                error_reason=ERR_INSUFFICIENT_BALANCE,
                network=network,
                payer=payer,
            )

        v, r, s = split_signature(hex_to_bytes(exact_payload.signature))

        try:
            tx_hash = signer.write_contract(
                asset,
                TRANSFER_WITH_AUTHORIZATION_VRS_ABI,
                FUNCTION_TRANSFER_WITH_AUTHORIZATION,
                payer,
                normalize_address(auth.to),
                int(auth.value),
                int(auth.valid_after),
                int(auth.valid_before),
                nonce,
                v,
                r,
                s,
            )
        except Exception as e:
            logger.error("transferWithAuthorization submission failed: %s", e)
            return SettleResponse(
                success=False,
                error_reason=f"{ERR_TRANSACTION_FAILED}: {e}",
                network=network,
                payer=payer,
            )

        try:
            receipt = signer.wait_for_transaction_receipt(tx_hash)
        except Exception as e:
            # Submitted but unconfirmed; the hash lets the caller follow up
            logger.error("No receipt for %s on %s: %s", tx_hash, network, e)
            return SettleResponse(
                success=False,
                error_reason=f"{ERR_TRANSACTION_FAILED}: {e}",
                transaction=tx_hash,
                network=network,
                payer=payer,
            )

        if receipt.status != TX_STATUS_SUCCESS:
            return SettleResponse(
                success=False,
                error_reason=ERR_TRANSACTION_FAILED,
                transaction=tx_hash,
                network=network,
                payer=payer,
            )

        logger.info("Settled exact EVM payment from %s on %s: %s", payer, network, tx_hash)
        return SettleResponse(success=True, transaction=tx_hash, network=network, payer=payer)
