"""Gasless exact scheme for Solana.

The payer signs either an SPL ``Approve`` that makes the facilitator a
delegate over exactly the quoted amount, or (for native SOL) a system
transfer to the facilitator. The fee payer slot is left for the sponsoring
facilitator, which co-signs and submits the transaction at settlement.
"""

from __future__ import annotations

import logging
from typing import Union

from pydantic import ValidationError
from solana.rpc.api import Client as SolanaClient
from solana.rpc.commitment import Confirmed
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import ApproveParams, approve, get_associated_token_address

from ....exceptions import (
    ConfigurationError,
    MalformedPayload,
    MissingQuoteError,
    TransportError,
    UnknownTokenProgram,
)
from ....types import (
    X402_VERSION,
    GaslessApprovalPayload,
    GaslessNativePayload,
    PaymentPayload,
    PaymentRequirements,
    QuoteData,
    QuoteResponse,
    SettleResponse,
    SolanaApproval,
    SolanaNativeTransfer,
    VerifyResponse,
)
from ..constants import (
    DEFAULT_CONFIRM_TIMEOUT,
    ERR_AMOUNT_MISMATCH,
    ERR_BLOCKHASH_EXPIRED,
    ERR_BLOCKHASH_MISMATCH,
    ERR_DELEGATE_MISMATCH,
    ERR_FEE_PAYER_MISMATCH,
    ERR_FEE_PAYER_UNAVAILABLE,
    ERR_INVALID_INSTRUCTION,
    ERR_INVALID_INSTRUCTION_COUNT,
    ERR_INVALID_PAYLOAD,
    ERR_INVALID_SIGNATURE,
    ERR_INVALID_TRANSACTION,
    ERR_MINT_MISMATCH,
    ERR_MISSING_QUOTE,
    ERR_NETWORK_MISMATCH,
    ERR_OWNER_MISMATCH,
    ERR_PAYLOAD_TYPE_MISMATCH,
    ERR_RECIPIENT_MISMATCH,
    ERR_RPC_UNAVAILABLE,
    ERR_SIMULATION_FAILED,
    ERR_TOKEN_ACCOUNT_MISMATCH,
    ERR_TRANSACTION_FAILED,
    ERR_UNKNOWN_TOKEN_PROGRAM,
    ERR_UNSUPPORTED_SCHEME,
    NATIVE_SOL_ADDRESS,
    SCHEME_EXACT,
    SYSTEM_PROGRAM_ADDRESS,
)
from ..signer import ClientSvmSigner, FacilitatorSvmSigner
from ..utils import (
    decode_transaction,
    encode_transaction,
    get_rpc_client,
    message_bytes,
    normalize_network,
    parse_approve_amount,
    parse_transfer_lamports,
    signer_index,
)

logger = logging.getLogger(__name__)

GaslessPayload = Union[GaslessApprovalPayload, GaslessNativePayload]

_TOKEN_PROGRAMS = (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID)
_SYSTEM_PROGRAM = Pubkey.from_string(SYSTEM_PROGRAM_ADDRESS)


def _invalid(reason: str, payer: str | None = None) -> VerifyResponse:
    return VerifyResponse(is_valid=False, invalid_reason=reason, payer=payer)


class GaslessSvmScheme:
    """Fee-sponsored exact payments on Solana.

    Needs a quote (facilitator address, fee payer, payment amount) folded
    into ``requirements.extra`` or passed explicitly to ``build_payload``.

    Example:
        ```python
        scheme = GaslessSvmScheme(facilitator_signer=FacilitatorKeypairSigner(keypair))
        registry.register(["solana", "solana-devnet"], scheme)
        ```
    """

    scheme = SCHEME_EXACT
    requires_quote = True

    def __init__(
        self,
        facilitator_signer: FacilitatorSvmSigner | None = None,
        rpc_url: str | None = None,
        confirm_timeout: int = DEFAULT_CONFIRM_TIMEOUT,
    ):
        """Create GaslessSvmScheme.

        Args:
            facilitator_signer: Fee-payer signer used for settlement.
            rpc_url: Optional custom RPC URL for all networks.
            confirm_timeout: Seconds to wait for confirmation when settling.
        """
        self._facilitator_signer = facilitator_signer
        self._custom_rpc_url = rpc_url
        self._confirm_timeout = confirm_timeout
        self._clients: dict[str, SolanaClient] = {}

    def _get_client(self, network: str) -> SolanaClient:
        name = normalize_network(network)
        if name not in self._clients:
            self._clients[name] = get_rpc_client(name, self._custom_rpc_url)
        return self._clients[name]

    # ========================================================================
    # Payload parsing
    # ========================================================================

    def parse_payload(self, payload: PaymentPayload) -> GaslessPayload:
        if payload.scheme != self.scheme:
            raise MalformedPayload(f"Expected scheme '{self.scheme}', got '{payload.scheme}'")

        inner = payload.payload
        try:
            if "approval" in inner:
                return GaslessApprovalPayload.model_validate(inner)
            if "transfer" in inner:
                return GaslessNativePayload.model_validate(inner)
        except ValidationError as e:
            raise MalformedPayload(f"Invalid gasless SVM payload: {e}") from e

        raise MalformedPayload("Gasless SVM payload must carry an approval or a transfer")

    @staticmethod
    def resolve_quote(
        requirements: PaymentRequirements,
        quote: QuoteResponse | None = None,
    ) -> QuoteData:
        """Quote data for a payment, from an explicit quote or requirements.extra.

        Raises:
            MissingQuoteError: If neither source provides the quote.
        """
        if quote is not None:
            if not quote.success or quote.data is None:
                raise MissingQuoteError(f"Invalid quote response: {quote.error or 'no data'}")
            return quote.data

        facilitator_address = requirements.get_extra("facilitatorAddress")
        fee_payer = requirements.get_extra("feePayer")
        if not facilitator_address or not fee_payer:
            raise MissingQuoteError(
                "Gasless Solana payments require facilitatorAddress and feePayer in "
                "paymentRequirements.extra. The server must request a quote first."
            )

        return QuoteData(
            payment_amount=requirements.get_payment_amount(),
            facilitator_address=facilitator_address,
            fee_payer_address=fee_payer,
        )

    # ========================================================================
    # Client side
    # ========================================================================

    def build_payload(
        self,
        requirements: PaymentRequirements,
        signer: ClientSvmSigner,
        quote: QuoteResponse | None = None,
    ) -> PaymentPayload:
        """Build a partially-signed gasless payment.

        Native SOL is paid by direct transfer; SPL tokens by delegate approval.

        Raises:
            MissingQuoteError: If no quote data is available.
            UnknownTokenProgram: If the mint is not owned by Token or Token-2022.
            ConfigurationError: If the mint or the payer's token account is missing.
        """
        quote_data = self.resolve_quote(requirements, quote)
        network = requirements.get_payment_network()
        client = self._get_client(network)

        if requirements.get_payment_asset() == NATIVE_SOL_ADDRESS:
            inner = self._build_native(client, requirements, signer, quote_data)
        else:
            inner = self._build_approval(client, requirements, signer, quote_data)

        return PaymentPayload(
            x402_version=X402_VERSION,
            scheme=self.scheme,
            network=network,
            payload=inner.to_wire(),
        )

    def get_token_program(self, client: SolanaClient, mint: Pubkey) -> Pubkey:
        """Find which token program owns a mint.

        Raises:
            ConfigurationError: If the mint account does not exist.
            UnknownTokenProgram: If the owner is not a known token program.
        """
        info = client.get_account_info(mint)
        if info.value is None:
            raise ConfigurationError(f"Token mint {mint} not found")

        owner = info.value.owner
        if owner not in _TOKEN_PROGRAMS:
            raise UnknownTokenProgram(str(mint), str(owner))
        return owner

    def _build_approval(
        self,
        client: SolanaClient,
        requirements: PaymentRequirements,
        signer: ClientSvmSigner,
        quote: QuoteData,
    ) -> GaslessApprovalPayload:
        owner = Pubkey.from_string(signer.address)
        mint = Pubkey.from_string(requirements.get_payment_asset())
        delegate = Pubkey.from_string(quote.facilitator_address)

        program_id = self.get_token_program(client, mint)
        token_account = get_associated_token_address(owner, mint, program_id)

        if client.get_account_info(token_account).value is None:
            raise ConfigurationError(
                f"Payer {owner} does not have a token account for {mint}"
            )

        instruction = approve(
            ApproveParams(
                program_id=program_id,
                source=token_account,
                delegate=delegate,
                owner=owner,
                amount=int(quote.payment_amount),
            )
        )
        tx, signature, blockhash, last_valid = self._partially_sign(
            client, quote.fee_payer_address, instruction, signer
        )

        return GaslessApprovalPayload(
            signature=signature,
            approval=SolanaApproval(
                owner=str(owner),
                delegate=str(delegate),
                token_account=str(token_account),
                token_mint=str(mint),
                value=quote.payment_amount,
                serialized_transaction=tx,
                blockhash=blockhash,
                last_valid_block_height=last_valid,
            ),
        )

    def _build_native(
        self,
        client: SolanaClient,
        requirements: PaymentRequirements,
        signer: ClientSvmSigner,
        quote: QuoteData,
    ) -> GaslessNativePayload:
        owner = Pubkey.from_string(signer.address)
        destination = Pubkey.from_string(quote.facilitator_address)

        instruction = transfer(
            TransferParams(
                from_pubkey=owner,
                to_pubkey=destination,
                lamports=int(quote.payment_amount),
            )
        )
        tx, signature, blockhash, last_valid = self._partially_sign(
            client, quote.fee_payer_address, instruction, signer
        )

        return GaslessNativePayload(
            signature=signature,
            transfer=SolanaNativeTransfer(
                owner=str(owner),
                destination=str(destination),
                value=quote.payment_amount,
                serialized_transaction=tx,
                blockhash=blockhash,
                last_valid_block_height=last_valid,
            ),
        )

    def _partially_sign(
        self,
        client: SolanaClient,
        fee_payer: str,
        instruction: Instruction,
        signer: ClientSvmSigner,
    ) -> tuple[str, str, str, int]:
        """Compile a v0 message and add only the payer's signature.

        Returns:
            (base64 transaction, payer signature, blockhash, last valid block height)
        """
        latest = client.get_latest_blockhash(commitment=Confirmed).value
        message = MessageV0.try_compile(
            payer=Pubkey.from_string(fee_payer),
            instructions=[instruction],
            address_lookup_table_accounts=[],
            recent_blockhash=latest.blockhash,
        )

        unsigned = VersionedTransaction.populate(
            message, [Signature.default()] * message.header.num_required_signatures
        )
        index = signer_index(unsigned, Pubkey.from_string(signer.address))
        if index is None:
            raise ConfigurationError("Payer is not a signer of the payment transaction")

        signature = signer.sign_message(message_bytes(unsigned))
        signatures = list(unsigned.signatures)
        signatures[index] = signature
        tx = VersionedTransaction.populate(message, signatures)

        return (
            encode_transaction(tx),
            str(signature),
            str(latest.blockhash),
            int(latest.last_valid_block_height),
        )

    # ========================================================================
    # Facilitator side
    # ========================================================================

    def verify(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> VerifyResponse:
        """Verify a gasless payment against the quoted requirements.

        Raises:
            TransportError: If the RPC node cannot report the block height.
        """
        if payload.scheme != self.scheme or requirements.scheme != self.scheme:
            return _invalid(ERR_UNSUPPORTED_SCHEME)

        network = requirements.get_payment_network()
        if payload.network != network:
            return _invalid(ERR_NETWORK_MISMATCH)

        try:
            parsed = self.parse_payload(payload)
        except MalformedPayload as e:
            return _invalid(f"{ERR_INVALID_PAYLOAD}: {e}")

        try:
            quote = self.resolve_quote(requirements)
        except MissingQuoteError:
            return _invalid(ERR_MISSING_QUOTE)

        is_native = requirements.get_payment_asset() == NATIVE_SOL_ADDRESS
        if is_native != isinstance(parsed, GaslessNativePayload):
            return _invalid(ERR_PAYLOAD_TYPE_MISMATCH)

        details = parsed.transfer if isinstance(parsed, GaslessNativePayload) else parsed.approval
        payer = details.owner

        if details.value != quote.payment_amount:
            return _invalid(ERR_AMOUNT_MISMATCH, payer)

        try:
            tx = decode_transaction(details.serialized_transaction)
            owner = Pubkey.from_string(details.owner)
            signature = Signature.from_string(parsed.signature)
        except ValueError as e:
            return _invalid(f"{ERR_INVALID_TRANSACTION}: {e}", payer)

        message = tx.message
        account_keys = list(message.account_keys)
        if not account_keys:
            return _invalid(f"{ERR_INVALID_TRANSACTION}: no account keys", payer)

        if str(account_keys[0]) != quote.fee_payer_address:
            return _invalid(ERR_FEE_PAYER_MISMATCH, payer)

        if str(message.recent_blockhash) != details.blockhash:
            return _invalid(ERR_BLOCKHASH_MISMATCH, payer)

        instructions = list(message.instructions)
        if len(instructions) != 1:
            return _invalid(ERR_INVALID_INSTRUCTION_COUNT, payer)

        instruction = instructions[0]
        # Indices are client data; deserialization does not bound them
        if instruction.program_id_index >= len(account_keys) or any(
            i >= len(account_keys) for i in instruction.accounts
        ):
            return _invalid(f"{ERR_INVALID_TRANSACTION}: account index out of range", payer)
        program_id = account_keys[instruction.program_id_index]
        accounts = [account_keys[i] for i in instruction.accounts]

        if isinstance(parsed, GaslessNativePayload):
            reason = self._check_native(parsed.transfer, program_id, accounts, bytes(instruction.data), quote)
        else:
            reason = self._check_approval(
                parsed.approval, program_id, accounts, bytes(instruction.data), quote, requirements
            )
        if reason:
            return _invalid(reason, payer)

        index = signer_index(tx, owner)
        if index is None or index >= len(tx.signatures) or tx.signatures[index] != signature:
            return _invalid(ERR_INVALID_SIGNATURE, payer)
        if not signature.verify(owner, message_bytes(tx)):
            return _invalid(ERR_INVALID_SIGNATURE, payer)

        try:
            block_height = self._get_client(network).get_block_height(commitment=Confirmed).value
        except Exception as e:
            raise TransportError(f"Could not read block height on {network}: {e}") from e
        if block_height > details.last_valid_block_height:
            return _invalid(ERR_BLOCKHASH_EXPIRED, payer)

        return VerifyResponse(is_valid=True, payer=payer)

    def _check_approval(
        self,
        approval: SolanaApproval,
        program_id: Pubkey,
        accounts: list[Pubkey],
        data: bytes,
        quote: QuoteData,
        requirements: PaymentRequirements,
    ) -> str | None:
        if program_id not in _TOKEN_PROGRAMS:
            return ERR_UNKNOWN_TOKEN_PROGRAM

        try:
            amount = parse_approve_amount(data)
        except ValueError:
            return ERR_INVALID_INSTRUCTION
        if len(accounts) < 3:
            return ERR_INVALID_INSTRUCTION

        source, delegate, owner = accounts[:3]

        if str(delegate) != quote.facilitator_address or approval.delegate != quote.facilitator_address:
            return ERR_DELEGATE_MISMATCH
        if str(owner) != approval.owner:
            return ERR_OWNER_MISMATCH
        if approval.token_mint != requirements.get_payment_asset():
            return ERR_MINT_MISMATCH

        expected_account = get_associated_token_address(
            owner, Pubkey.from_string(approval.token_mint), program_id
        )
        if source != expected_account or approval.token_account != str(expected_account):
            return ERR_TOKEN_ACCOUNT_MISMATCH

        if amount != int(quote.payment_amount):
            return ERR_AMOUNT_MISMATCH
        return None

    def _check_native(
        self,
        native: SolanaNativeTransfer,
        program_id: Pubkey,
        accounts: list[Pubkey],
        data: bytes,
        quote: QuoteData,
    ) -> str | None:
        if program_id != _SYSTEM_PROGRAM:
            return ERR_INVALID_INSTRUCTION

        try:
            lamports = parse_transfer_lamports(data)
        except ValueError:
            return ERR_INVALID_INSTRUCTION
        if len(accounts) < 2:
            return ERR_INVALID_INSTRUCTION

        source, destination = accounts[:2]

        if str(destination) != quote.facilitator_address or native.destination != quote.facilitator_address:
            return ERR_RECIPIENT_MISMATCH
        if str(source) != native.owner:
            return ERR_OWNER_MISMATCH
        if lamports != int(quote.payment_amount):
            return ERR_AMOUNT_MISMATCH
        return None

    def settle(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> SettleResponse:
        """Co-sign as fee payer, submit and confirm.

        Chain and signer failures come back as ``SettleResponse(success=False)``.

        Raises:
            ConfigurationError: If no facilitator signer is configured.
        """
        signer = self._facilitator_signer
        if signer is None:
            raise ConfigurationError("GaslessSvmScheme needs a facilitator_signer to settle")

        network = payload.network
        try:
            verify_result = self.verify(payload, requirements)
        except TransportError as e:
            logger.error("Re-verification on %s failed: %s", network, e)
            return SettleResponse(
                success=False,
                error_reason=f"{ERR_RPC_UNAVAILABLE}: {e}",
                network=network,
            )
        if not verify_result.is_valid:
            return SettleResponse(
                success=False,
                error_reason=verify_result.invalid_reason,
                network=network,
                payer=verify_result.payer,
            )

        parsed = self.parse_payload(payload)
        details = parsed.transfer if isinstance(parsed, GaslessNativePayload) else parsed.approval
        payer = details.owner
        fee_payer = self.resolve_quote(requirements).fee_payer_address

        try:
            signed = signer.sign_transaction(details.serialized_transaction, fee_payer, network)
        except (ConfigurationError, ValueError) as e:
            logger.error("Cannot co-sign as fee payer %s: %s", fee_payer, e)
            return SettleResponse(
                success=False,
                error_reason=f"{ERR_FEE_PAYER_UNAVAILABLE}: {e}",
                network=network,
                payer=payer,
            )

        try:
            signer.simulate_transaction(signed, network)
        except Exception as e:
            logger.warning("Simulation of gasless payment from %s failed: %s", payer, e)
            return SettleResponse(
                success=False,
                error_reason=f"{ERR_SIMULATION_FAILED}: {e}",
                network=network,
                payer=payer,
            )

        try:
            tx_signature = signer.send_transaction(signed, network)
        except Exception as e:
            logger.error("Submitting gasless payment from %s failed: %s", payer, e)
            return SettleResponse(
                success=False,
                error_reason=f"{ERR_TRANSACTION_FAILED}: {e}",
                network=network,
                payer=payer,
            )

        try:
            signer.confirm_transaction(tx_signature, network, self._confirm_timeout)
        except Exception as e:
            logger.error("Gasless payment %s did not confirm: %s", tx_signature, e)
            return SettleResponse(
                success=False,
                error_reason=f"{ERR_TRANSACTION_FAILED}: {e}",
                transaction=tx_signature,
                network=network,
                payer=payer,
            )

        logger.info("Settled gasless payment from %s on %s: %s", payer, network, tx_signature)
        return SettleResponse(success=True, transaction=tx_signature, network=network, payer=payer)
