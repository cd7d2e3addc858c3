"""Concrete SVM signer implementations."""

import logging
import time

try:
    from solana.rpc.api import Client as SolanaClient
    from solana.rpc.commitment import Confirmed
    from solana.rpc.core import RPCException
    from solana.rpc.types import TxOpts
    from solders.keypair import Keypair
    from solders.signature import Signature
    from solders.transaction import VersionedTransaction
    from solders.transaction_status import TransactionConfirmationStatus
except ImportError as e:
    raise ImportError(
        "SVM mechanism requires solana packages. Install with: pip install solana solders"
    ) from e

from ...exceptions import ConfigurationError
from .constants import DEFAULT_CONFIRM_TIMEOUT
from .utils import decode_transaction, encode_transaction, get_rpc_client, message_bytes, normalize_network

logger = logging.getLogger(__name__)


class KeypairSigner:
    """Client-side signer using a Solana keypair.

    Example:
        ```python
        from solders.keypair import Keypair

        keypair = Keypair.from_base58_string(private_key)
        signer = KeypairSigner(keypair)
        ```
    """

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @property
    def address(self) -> str:
        """Base58 encoded public key."""
        return str(self._keypair.pubkey())

    @property
    def keypair(self) -> Keypair:
        return self._keypair

    def sign_message(self, message: bytes) -> Signature:
        """Sign serialized message bytes."""
        return self._keypair.sign_message(message)

    @classmethod
    def from_base58(cls, private_key: str) -> "KeypairSigner":
        """Create signer from base58 encoded private key (64 bytes)."""
        return cls(Keypair.from_base58_string(private_key))

    @classmethod
    def from_bytes(cls, private_key: bytes) -> "KeypairSigner":
        """Create signer from private key bytes (64 bytes)."""
        return cls(Keypair.from_bytes(private_key))


class FacilitatorKeypairSigner:
    """Fee-payer signer using Solana keypair(s).

    Supports multiple keypairs for load balancing and key rotation.

    Example:
        ```python
        keypair = Keypair.from_base58_string(private_key)
        signer = FacilitatorKeypairSigner(keypair)

        # Or with multiple keypairs
        signer = FacilitatorKeypairSigner([keypair1, keypair2])
        ```
    """

    def __init__(
        self,
        keypairs: Keypair | list[Keypair],
        rpc_url: str | None = None,
    ):
        """Create FacilitatorKeypairSigner.

        Args:
            keypairs: Single keypair or list of keypairs.
            rpc_url: Optional custom RPC URL. If not provided, uses network-specific default.
        """
        if isinstance(keypairs, Keypair):
            keypairs = [keypairs]
        self._keypairs = {str(kp.pubkey()): kp for kp in keypairs}
        self._custom_rpc_url = rpc_url
        self._clients: dict[str, SolanaClient] = {}

    def _get_client(self, network: str) -> SolanaClient:
        """Get or create RPC client for network."""
        name = normalize_network(network)
        if name not in self._clients:
            self._clients[name] = get_rpc_client(name, self._custom_rpc_url)
        return self._clients[name]

    def get_addresses(self) -> list[str]:
        """All fee payer addresses (base58)."""
        return list(self._keypairs.keys())

    def sign_transaction(
        self,
        tx_base64: str,
        fee_payer: str,
        network: str,
    ) -> str:
        """Add the fee payer signature to a partially-signed transaction.

        Args:
            tx_base64: Base64 encoded partially-signed transaction.
            fee_payer: Fee payer address.
            network: Network identifier.

        Returns:
            Base64 encoded fully-signed transaction.

        Raises:
            ConfigurationError: If no keypair is held for fee_payer.
        """
        if fee_payer not in self._keypairs:
            available = ", ".join(self._keypairs.keys())
            raise ConfigurationError(f"No signer for fee payer {fee_payer}. Available: {available}")

        keypair = self._keypairs[fee_payer]
        tx = decode_transaction(tx_base64)

        # Fee payer is always the first account and first signature slot
        signatures = list(tx.signatures)
        signatures[0] = keypair.sign_message(message_bytes(tx))
        signed_tx = VersionedTransaction.populate(tx.message, signatures)

        return encode_transaction(signed_tx)

    def simulate_transaction(self, tx_base64: str, network: str) -> None:
        """Simulate a transaction with signature verification.

        Raises:
            RuntimeError: If simulation fails.
        """
        client = self._get_client(network)
        tx = decode_transaction(tx_base64)

        result = client.simulate_transaction(tx, sig_verify=True, commitment=Confirmed)

        if result.value.err:
            raise RuntimeError(f"Simulation failed: {result.value.err}")

    def send_transaction(self, tx_base64: str, network: str) -> str:
        """Send a transaction.

        Returns:
            Transaction signature (base58).

        Raises:
            RuntimeError: If the RPC node rejects the transaction.
        """
        client = self._get_client(network)
        tx = decode_transaction(tx_base64)

        try:
            result = client.send_raw_transaction(bytes(tx), opts=TxOpts(skip_preflight=True))
        except RPCException as e:
            raise RuntimeError(f"RPC error sending transaction: {e}") from e

        logger.info("Sent sponsored transaction %s on %s", result.value, network)
        return str(result.value)

    def confirm_transaction(
        self,
        signature: str,
        network: str,
        timeout_seconds: int = DEFAULT_CONFIRM_TIMEOUT,
    ) -> None:
        """Wait for transaction confirmation.

        Raises:
            RuntimeError: If confirmation fails or times out.
        """
        client = self._get_client(network)
        sig = Signature.from_string(signature)

        start_time = time.time()
        while time.time() - start_time < timeout_seconds:
            result = client.get_signature_statuses([sig])

            if result.value and result.value[0]:
                status = result.value[0]
                if status.err:
                    raise RuntimeError(f"Transaction failed: {status.err}")
                if status.confirmation_status in (
                    TransactionConfirmationStatus.Confirmed,
                    TransactionConfirmationStatus.Finalized,
                ):
                    return

            time.sleep(1)

        raise RuntimeError("Transaction confirmation timeout")

    @classmethod
    def from_base58(
        cls,
        private_keys: str | list[str],
        rpc_url: str | None = None,
    ) -> "FacilitatorKeypairSigner":
        """Create signer from base58 encoded private key(s)."""
        if isinstance(private_keys, str):
            private_keys = [private_keys]

        keypairs = [Keypair.from_base58_string(pk) for pk in private_keys]
        return cls(keypairs, rpc_url)
