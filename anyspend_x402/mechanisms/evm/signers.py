"""EVM signer implementations for common wallet libraries.

Provides ready-to-use signers built on eth_account (payer side) and
web3.py (facilitator side).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .constants import TX_STATUS_FAILED, TX_STATUS_SUCCESS
from .types import TransactionReceipt, TypedDataDomain

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount

logger = logging.getLogger(__name__)


class EthAccountSigner:
    """Client-side EVM signer using eth_account library.

    Implements the ClientEvmSigner protocol for use with eth_account's
    LocalAccount (from private key or mnemonic).

    Example:
        ```python
        from eth_account import Account
        from anyspend_x402.mechanisms.evm.signers import EthAccountSigner

        account = Account.from_key("0x...")
        signer = EthAccountSigner(account)
        ```

    Args:
        account: eth_account LocalAccount instance.
    """

    def __init__(self, account: "LocalAccount") -> None:
        self._account = account

    @property
    def address(self) -> str:
        """The signer's Ethereum address (checksummed)."""
        return self._account.address

    def sign_typed_data(
        self,
        domain: TypedDataDomain,
        types: dict[str, list[dict[str, str]]],
        primary_type: str,
        message: dict[str, Any],
    ) -> bytes:
        """Sign EIP-712 typed data.

        Args:
            domain: EIP-712 domain separator.
            types: Type definitions, excluding EIP712Domain.
            primary_type: Primary type name (unused, inferred by eth_account).
            message: Message data.

        Returns:
            65-byte ECDSA signature (r, s, v).
        """
        domain_dict = domain.to_dict() if isinstance(domain, TypedDataDomain) else domain

        signed = self._account.sign_typed_data(
            domain_data=domain_dict,
            message_types=types,
            message_data=message,
        )
        return bytes(signed.signature)


class Web3FacilitatorSigner:
    """Facilitator signer using web3.py for contract reads and writes.

    Example:
        ```python
        signer = Web3FacilitatorSigner("0x<private key>", "https://sepolia.base.org")
        scheme = ExactEvmScheme(facilitator_signer=signer)
        ```
    """

    def __init__(
        self,
        private_key: str,
        rpc_url: str,
        gas_limit: int = 200000,
        receipt_timeout: int = 120,
    ):
        try:
            from eth_account import Account
            from web3 import Web3
        except ImportError as e:
            raise ImportError(
                "Web3FacilitatorSigner requires web3. Install with: pip install web3"
            ) from e

        if not private_key.startswith("0x"):
            private_key = "0x" + private_key
        self._account = Account.from_key(private_key)
        self._w3 = Web3(Web3.HTTPProvider(rpc_url))
        self._gas_limit = gas_limit
        self._receipt_timeout = receipt_timeout

    def get_addresses(self) -> list[str]:
        return [self._account.address]

    def _contract(self, address: str, abi: list[dict[str, Any]]) -> Any:
        return self._w3.eth.contract(
            address=self._w3.to_checksum_address(address),
            abi=abi,
        )

    def read_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        *args: Any,
    ) -> Any:
        func = getattr(self._contract(address, abi).functions, function_name)
        return func(*args).call()

    def write_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        *args: Any,
    ) -> str:
        """Build, sign and send a contract call.

        Returns:
            Transaction hash (0x-prefixed).
        """
        func = getattr(self._contract(address, abi).functions, function_name)
        tx = func(*args).build_transaction(
            {
                "from": self._account.address,
                "nonce": self._w3.eth.get_transaction_count(self._account.address),
                "gas": self._gas_limit,
                "gasPrice": self._w3.eth.gas_price,
            }
        )

        signed_tx = self._account.sign_transaction(tx)
        tx_hash = self._w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        logger.info("Submitted %s to %s: %s", function_name, address, tx_hash.hex())
        return self._w3.to_hex(tx_hash)

    def wait_for_transaction_receipt(self, tx_hash: str) -> TransactionReceipt:
        if not tx_hash.startswith("0x"):
            tx_hash = "0x" + tx_hash
        receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
        return TransactionReceipt(
            status=TX_STATUS_SUCCESS if receipt["status"] == 1 else TX_STATUS_FAILED,
            block_number=receipt["blockNumber"],
            tx_hash=tx_hash,
        )
