"""SVM mechanism constants - programs, networks, error codes."""

from typing import TypedDict

# Scheme identifier
SCHEME_EXACT = "exact"

# Program addresses
SYSTEM_PROGRAM_ADDRESS = "11111111111111111111111111111111"
TOKEN_PROGRAM_ADDRESS = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ADDRESS = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

# Native SOL is addressed by the system program id
NATIVE_SOL_ADDRESS = SYSTEM_PROGRAM_ADDRESS

# Instruction discriminators
TOKEN_APPROVE_INSTRUCTION = 4
SYSTEM_TRANSFER_INSTRUCTION = 2

# USDC mints
USDC_MAINNET_ADDRESS = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDC_DEVNET_ADDRESS = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"

# Networks
SOLANA_MAINNET = "solana"
SOLANA_DEVNET = "solana-devnet"
SOLANA_MAINNET_CAIP2 = "solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp"
SOLANA_DEVNET_CAIP2 = "solana:EtWTRABZaYq6iMfeYKouRu166VU2xqa1"

MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
DEVNET_RPC_URL = "https://api.devnet.solana.com"

# Seconds to wait for a submitted transaction to confirm
DEFAULT_CONFIRM_TIMEOUT = 30

# Error codes
ERR_INVALID_PAYLOAD = "invalid_exact_svm_payload"
ERR_MISSING_QUOTE = "invalid_exact_svm_payload_missing_quote"
ERR_PAYLOAD_TYPE_MISMATCH = "invalid_exact_svm_payload_type_mismatch"
ERR_INVALID_TRANSACTION = "invalid_exact_svm_payload_transaction"
ERR_INVALID_INSTRUCTION = "invalid_exact_svm_payload_instruction"
ERR_INVALID_INSTRUCTION_COUNT = "invalid_exact_svm_payload_instruction_count"
ERR_UNKNOWN_TOKEN_PROGRAM = "invalid_exact_svm_payload_unknown_token_program"
ERR_AMOUNT_MISMATCH = "invalid_exact_svm_payload_amount_mismatch"
ERR_DELEGATE_MISMATCH = "invalid_exact_svm_payload_delegate_mismatch"
ERR_RECIPIENT_MISMATCH = "invalid_exact_svm_payload_recipient_mismatch"
ERR_OWNER_MISMATCH = "invalid_exact_svm_payload_owner_mismatch"
ERR_MINT_MISMATCH = "invalid_exact_svm_payload_mint_mismatch"
ERR_TOKEN_ACCOUNT_MISMATCH = "invalid_exact_svm_payload_token_account_mismatch"
ERR_FEE_PAYER_MISMATCH = "invalid_exact_svm_payload_fee_payer_mismatch"
ERR_BLOCKHASH_MISMATCH = "invalid_exact_svm_payload_blockhash_mismatch"
ERR_BLOCKHASH_EXPIRED = "invalid_exact_svm_payload_blockhash_expired"
ERR_INVALID_SIGNATURE = "invalid_exact_svm_payload_signature"
ERR_NETWORK_MISMATCH = "network_mismatch"
ERR_UNSUPPORTED_SCHEME = "unsupported_scheme"
ERR_SIMULATION_FAILED = "transaction_simulation_failed"
ERR_TRANSACTION_FAILED = "transaction_failed"
ERR_FEE_PAYER_UNAVAILABLE = "fee_payer_unavailable"
ERR_RPC_UNAVAILABLE = "rpc_unavailable"


class NetworkConfig(TypedDict):
    """Configuration for a Solana cluster."""

    caip2: str
    rpc_url: str
    usdc_address: str


NETWORK_CONFIGS: dict[str, NetworkConfig] = {
    SOLANA_MAINNET: {
        "caip2": SOLANA_MAINNET_CAIP2,
        "rpc_url": MAINNET_RPC_URL,
        "usdc_address": USDC_MAINNET_ADDRESS,
    },
    SOLANA_DEVNET: {
        "caip2": SOLANA_DEVNET_CAIP2,
        "rpc_url": DEVNET_RPC_URL,
        "usdc_address": USDC_DEVNET_ADDRESS,
    },
}
