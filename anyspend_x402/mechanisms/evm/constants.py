"""EVM mechanism constants - network configs, ABIs, error codes."""

from typing import TypedDict

# Scheme identifier
SCHEME_EXACT = "exact"

# Default token decimals for USDC
DEFAULT_DECIMALS = 6

# EIP-3009 function names
FUNCTION_TRANSFER_WITH_AUTHORIZATION = "transferWithAuthorization"
FUNCTION_AUTHORIZATION_STATE = "authorizationState"
FUNCTION_BALANCE_OF = "balanceOf"

# Transaction status
TX_STATUS_SUCCESS = 1
TX_STATUS_FAILED = 0

# Seconds valid_after is backdated when building, and tolerated ahead of now when verifying
DEFAULT_CLOCK_SKEW = 60

# An authorization must stay valid at least this long for settlement to land
EXPIRY_BUFFER_SECONDS = 6

# Error codes
ERR_INVALID_PAYLOAD = "invalid_exact_evm_payload"
ERR_INVALID_SIGNATURE = "invalid_exact_evm_payload_signature"
ERR_RECIPIENT_MISMATCH = "invalid_exact_evm_payload_recipient_mismatch"
ERR_ASSET_MISMATCH = "invalid_exact_evm_payload_asset_mismatch"
ERR_INSUFFICIENT_AMOUNT = "invalid_exact_evm_payload_authorization_value"
ERR_VALID_BEFORE_EXPIRED = "invalid_exact_evm_payload_authorization_valid_before"
ERR_VALID_AFTER_FUTURE = "invalid_exact_evm_payload_authorization_valid_after"
ERR_MISSING_EIP712_DOMAIN = "missing_eip712_domain"
ERR_NETWORK_MISMATCH = "network_mismatch"
ERR_UNSUPPORTED_SCHEME = "unsupported_scheme"
ERR_NONCE_ALREADY_USED = "nonce_already_used"
ERR_INSUFFICIENT_BALANCE = "insufficient_balance"
ERR_TRANSACTION_FAILED = "transaction_failed"
ERR_CHAIN_READ_FAILED = "chain_read_failed"


class _AssetInfoRequired(TypedDict):
    """Required fields for a token asset."""

    address: str
    name: str
    version: str
    decimals: int


class AssetInfo(_AssetInfoRequired, total=False):
    """Information about a token asset."""

    symbol: str


class _NetworkConfigRequired(TypedDict):
    """Required fields for an EVM network configuration."""

    chain_id: int


class NetworkConfig(_NetworkConfigRequired, total=False):
    """Configuration for an EVM network."""

    default_asset: AssetInfo


_USDC_BASE: AssetInfo = {
    "address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    "name": "USD Coin",
    "version": "2",
    "decimals": 6,
    "symbol": "USDC",
}

_USDC_BASE_SEPOLIA: AssetInfo = {
    "address": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    "name": "USDC",
    "version": "2",
    "decimals": 6,
    "symbol": "USDC",
}

_USDC_ETHEREUM: AssetInfo = {
    "address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    "name": "USD Coin",
    "version": "2",
    "decimals": 6,
    "symbol": "USDC",
}

_USDC_POLYGON: AssetInfo = {
    "address": "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
    "name": "USD Coin",
    "version": "2",
    "decimals": 6,
    "symbol": "USDC",
}

_USDC_AVALANCHE: AssetInfo = {
    "address": "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",
    "name": "USD Coin",
    "version": "2",
    "decimals": 6,
    "symbol": "USDC",
}

# Network configurations, keyed by legacy network name
NETWORK_CONFIGS: dict[str, NetworkConfig] = {
    "base": {"chain_id": 8453, "default_asset": _USDC_BASE},
    "base-sepolia": {"chain_id": 84532, "default_asset": _USDC_BASE_SEPOLIA},
    "ethereum": {"chain_id": 1, "default_asset": _USDC_ETHEREUM},
    "polygon": {"chain_id": 137, "default_asset": _USDC_POLYGON},
    "polygon-amoy": {"chain_id": 80002},
    "avalanche": {"chain_id": 43114, "default_asset": _USDC_AVALANCHE},
    "avalanche-fuji": {"chain_id": 43113},
    "arbitrum": {"chain_id": 42161},
    "optimism": {"chain_id": 10},
}

# EIP-712 TransferWithAuthorization type definition
AUTHORIZATION_TYPES = {
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ]
}

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

# EIP-3009 ABIs
TRANSFER_WITH_AUTHORIZATION_VRS_ABI = [
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "validAfter", "type": "uint256"},
            {"name": "validBefore", "type": "uint256"},
            {"name": "nonce", "type": "bytes32"},
            {"name": "v", "type": "uint8"},
            {"name": "r", "type": "bytes32"},
            {"name": "s", "type": "bytes32"},
        ],
        "name": "transferWithAuthorization",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    }
]

AUTHORIZATION_STATE_ABI = [
    {
        "inputs": [
            {"name": "authorizer", "type": "address"},
            {"name": "nonce", "type": "bytes32"},
        ],
        "name": "authorizationState",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    }
]

BALANCE_OF_ABI = [
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    }
]
