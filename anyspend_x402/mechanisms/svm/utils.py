"""SVM utility functions for networks, RPC clients and transaction decoding."""

import base64
import binascii
import struct

try:
    from solana.rpc.api import Client as SolanaClient
    from solders.message import to_bytes_versioned
    from solders.pubkey import Pubkey
    from solders.transaction import VersionedTransaction
except ImportError as e:
    raise ImportError(
        "SVM mechanism requires solana packages. Install with: pip install solana solders"
    ) from e

from .constants import (
    NETWORK_CONFIGS,
    SYSTEM_TRANSFER_INSTRUCTION,
    TOKEN_APPROVE_INSTRUCTION,
)

_APPROVE_LAYOUT = struct.Struct("<BQ")
_TRANSFER_LAYOUT = struct.Struct("<IQ")


def normalize_network(network: str) -> str:
    """Map a CAIP-2 Solana network identifier to its legacy name.

    Raises:
        ValueError: If the network is not a known Solana cluster.
    """
    if network in NETWORK_CONFIGS:
        return network
    for name, config in NETWORK_CONFIGS.items():
        if config["caip2"] == network:
            return name
    raise ValueError(f"Unsupported Solana network: {network}")


def get_rpc_url(network: str, custom_url: str | None = None) -> str:
    """Get the RPC URL for a network, preferring a custom URL."""
    if custom_url:
        return custom_url
    return NETWORK_CONFIGS[normalize_network(network)]["rpc_url"]


def get_rpc_client(network: str, custom_url: str | None = None) -> SolanaClient:
    return SolanaClient(get_rpc_url(network, custom_url))


def decode_transaction(serialized: str) -> VersionedTransaction:
    """Decode a base64 wire transaction.

    Raises:
        ValueError: If the data is not a valid transaction.
    """
    try:
        raw = base64.b64decode(serialized, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Transaction is not valid base64: {e}") from e
    try:
        return VersionedTransaction.from_bytes(raw)
    except Exception as e:
        raise ValueError(f"Could not deserialize transaction: {e}") from e


def encode_transaction(tx: VersionedTransaction) -> str:
    return base64.b64encode(bytes(tx)).decode("utf-8")


def message_bytes(tx: VersionedTransaction) -> bytes:
    """Bytes covered by the transaction signatures."""
    return to_bytes_versioned(tx.message)


def signer_index(tx: VersionedTransaction, pubkey: Pubkey) -> int | None:
    """Signature slot of ``pubkey``, or None if it is not a required signer."""
    message = tx.message
    required = message.header.num_required_signatures
    keys = list(message.account_keys)[:required]
    try:
        return keys.index(pubkey)
    except ValueError:
        return None


def parse_approve_amount(data: bytes) -> int:
    """Amount granted by a token-program Approve instruction.

    Raises:
        ValueError: If ``data`` is not an Approve instruction.
    """
    if len(data) != _APPROVE_LAYOUT.size:
        raise ValueError(f"Approve data must be {_APPROVE_LAYOUT.size} bytes")
    tag, amount = _APPROVE_LAYOUT.unpack(data)
    if tag != TOKEN_APPROVE_INSTRUCTION:
        raise ValueError(f"Not an Approve instruction (tag {tag})")
    return amount


def parse_transfer_lamports(data: bytes) -> int:
    """Lamports moved by a system-program Transfer instruction.

    Raises:
        ValueError: If ``data`` is not a Transfer instruction.
    """
    if len(data) != _TRANSFER_LAYOUT.size:
        raise ValueError(f"Transfer data must be {_TRANSFER_LAYOUT.size} bytes")
    tag, lamports = _TRANSFER_LAYOUT.unpack(data)
    if tag != SYSTEM_TRANSFER_INSTRUCTION:
        raise ValueError(f"Not a Transfer instruction (tag {tag})")
    return lamports
