"""SVM mechanisms for x402."""

from .constants import (
    ERR_AMOUNT_MISMATCH,
    ERR_BLOCKHASH_EXPIRED,
    ERR_DELEGATE_MISMATCH,
    ERR_FEE_PAYER_MISMATCH,
    ERR_FEE_PAYER_UNAVAILABLE,
    ERR_INVALID_SIGNATURE,
    ERR_INVALID_TRANSACTION,
    ERR_MISSING_QUOTE,
    ERR_PAYLOAD_TYPE_MISMATCH,
    ERR_RPC_UNAVAILABLE,
    ERR_SIMULATION_FAILED,
    NATIVE_SOL_ADDRESS,
    NETWORK_CONFIGS,
    SCHEME_EXACT,
    SOLANA_DEVNET,
    SOLANA_MAINNET,
    TOKEN_2022_PROGRAM_ADDRESS,
    TOKEN_PROGRAM_ADDRESS,
    USDC_DEVNET_ADDRESS,
    USDC_MAINNET_ADDRESS,
)
from .gasless import GaslessSvmScheme
from .signer import ClientSvmSigner, FacilitatorSvmSigner
from .signers import FacilitatorKeypairSigner, KeypairSigner
from .utils import normalize_network

__all__ = [
    "ERR_AMOUNT_MISMATCH",
    "ERR_BLOCKHASH_EXPIRED",
    "ERR_DELEGATE_MISMATCH",
    "ERR_FEE_PAYER_MISMATCH",
    "ERR_FEE_PAYER_UNAVAILABLE",
    "ERR_INVALID_SIGNATURE",
    "ERR_INVALID_TRANSACTION",
    "ERR_MISSING_QUOTE",
    "ERR_PAYLOAD_TYPE_MISMATCH",
    "ERR_RPC_UNAVAILABLE",
    "ERR_SIMULATION_FAILED",
    "NATIVE_SOL_ADDRESS",
    "NETWORK_CONFIGS",
    "SCHEME_EXACT",
    "SOLANA_DEVNET",
    "SOLANA_MAINNET",
    "TOKEN_2022_PROGRAM_ADDRESS",
    "TOKEN_PROGRAM_ADDRESS",
    "USDC_DEVNET_ADDRESS",
    "USDC_MAINNET_ADDRESS",
    "ClientSvmSigner",
    "FacilitatorKeypairSigner",
    "FacilitatorSvmSigner",
    "GaslessSvmScheme",
    "KeypairSigner",
    "normalize_network",
]
