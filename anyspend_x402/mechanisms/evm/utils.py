"""EVM utility functions for networks, typed data, signatures and nonces."""

import os
import time
from typing import Any

try:
    from eth_account import Account
    from eth_account.messages import encode_typed_data
    from eth_utils import to_checksum_address
except ImportError as e:
    raise ImportError(
        "EVM mechanism requires ethereum packages. Install with: pip install eth-account eth-utils"
    ) from e

from .constants import (
    AUTHORIZATION_TYPES,
    DEFAULT_CLOCK_SKEW,
    DEFAULT_DECIMALS,
    EIP712_DOMAIN_TYPE,
    NETWORK_CONFIGS,
    AssetInfo,
    NetworkConfig,
)
from .types import TypedDataDomain


def get_evm_chain_id(network: str) -> int:
    """Resolve the chain ID for a network.

    Accepts legacy names ("base-sepolia") and CAIP-2 identifiers
    ("eip155:84532").

    Args:
        network: Network identifier.

    Returns:
        Numeric chain ID.

    Raises:
        ValueError: If the network is unknown or malformed.
    """
    if network in NETWORK_CONFIGS:
        return NETWORK_CONFIGS[network]["chain_id"]

    if network.startswith("eip155:"):
        try:
            return int(network.split(":")[1])
        except (IndexError, ValueError) as e:
            raise ValueError(f"Invalid CAIP-2 network format: {network}") from e

    raise ValueError(f"Unsupported EVM network: {network}")


def get_network_config(network: str) -> NetworkConfig:
    """Get configuration for a network.

    Returns a full config for known networks, or a minimal config (chain_id only)
    for any valid eip155 network.

    Raises:
        ValueError: If the network is not an EVM network.
    """
    if network in NETWORK_CONFIGS:
        return NETWORK_CONFIGS[network]
    return {"chain_id": get_evm_chain_id(network)}


def get_asset_info(network: str, asset_address: str) -> AssetInfo:
    """Get asset info by address.

    Returns the default asset info if the address matches the network's default
    asset, otherwise a minimal AssetInfo without EIP-712 domain data.
    """
    config = get_network_config(network)
    default = config.get("default_asset")

    if default and default["address"].lower() == asset_address.lower():
        return default

    return {"address": asset_address, "name": "", "version": "", "decimals": DEFAULT_DECIMALS}


def create_nonce() -> str:
    """Generate random 32-byte nonce as hex string (0x...).

    Returns:
        Hex string with 0x prefix.
    """
    return "0x" + os.urandom(32).hex()


def normalize_address(address: str) -> str:
    """Normalize Ethereum address to checksummed format.

    Raises:
        ValueError: If address is invalid.
    """
    addr = address.lower().removeprefix("0x")

    if len(addr) != 40:
        raise ValueError(f"Invalid address length: {len(addr)}")

    try:
        int(addr, 16)
    except ValueError as e:
        raise ValueError(f"Invalid hex in address: {address}") from e

    return to_checksum_address("0x" + addr)


def addresses_equal(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def create_validity_window(
    timeout_seconds: int,
    skew: int = DEFAULT_CLOCK_SKEW,
    now: int | None = None,
) -> tuple[int, int]:
    """Create valid_after/valid_before timestamps.

    Args:
        timeout_seconds: How long the authorization stays valid.
        skew: Seconds before now for valid_after (clock skew).
        now: Current unix time, for tests.

    Returns:
        (valid_after, valid_before) as Unix timestamps.
    """
    if now is None:
        now = int(time.time())
    return (now - skew, now + timeout_seconds)


def hex_to_bytes(hex_str: str) -> bytes:
    """Convert hex string to bytes (handles 0x prefix)."""
    return bytes.fromhex(hex_str.removeprefix("0x"))


def bytes_to_hex(data: bytes) -> str:
    """Convert bytes to hex string with 0x prefix."""
    return "0x" + data.hex()


def split_signature(signature: bytes) -> tuple[int, bytes, bytes]:
    """Split a 65-byte ECDSA signature into (v, r, s).

    Raises:
        ValueError: If the signature is not 65 bytes.
    """
    if len(signature) != 65:
        raise ValueError(f"Expected 65-byte signature, got {len(signature)} bytes")
    r = signature[:32]
    s = signature[32:64]
    v = signature[64]
    if v < 27:
        v += 27
    return v, r, s


def build_authorization_message(
    from_address: str,
    to: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: str,
) -> dict[str, Any]:
    """Build the TransferWithAuthorization message for signing/recovery."""
    return {
        "from": normalize_address(from_address),
        "to": normalize_address(to),
        "value": value,
        "validAfter": valid_after,
        "validBefore": valid_before,
        "nonce": hex_to_bytes(nonce),
    }


def build_typed_data(domain: TypedDataDomain, message: dict[str, Any]) -> dict[str, Any]:
    """Assemble a full EIP-712 structure for TransferWithAuthorization."""
    return {
        "types": {"EIP712Domain": EIP712_DOMAIN_TYPE, **AUTHORIZATION_TYPES},
        "primaryType": "TransferWithAuthorization",
        "domain": domain.to_dict(),
        "message": message,
    }


def recover_typed_data_signer(
    domain: TypedDataDomain,
    message: dict[str, Any],
    signature: str,
) -> str:
    """Recover the address that signed a TransferWithAuthorization.

    Raises:
        ValueError: If the signature cannot be decoded or recovered.
    """
    typed_data = build_typed_data(domain, message)
    signable = encode_typed_data(full_message=typed_data)
    return Account.recover_message(signable, signature=hex_to_bytes(signature))
