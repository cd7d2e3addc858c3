"""EVM mechanisms for x402."""

from .constants import (
    ERR_ASSET_MISMATCH,
    ERR_CHAIN_READ_FAILED,
    ERR_INSUFFICIENT_AMOUNT,
    ERR_INSUFFICIENT_BALANCE,
    ERR_INVALID_SIGNATURE,
    ERR_NONCE_ALREADY_USED,
    ERR_RECIPIENT_MISMATCH,
    ERR_VALID_AFTER_FUTURE,
    ERR_VALID_BEFORE_EXPIRED,
    NETWORK_CONFIGS,
    SCHEME_EXACT,
)
from .exact import ExactEvmScheme
from .signer import ClientEvmSigner, FacilitatorEvmSigner
from .signers import EthAccountSigner, Web3FacilitatorSigner
from .types import TransactionReceipt, TypedDataDomain
from .utils import get_asset_info, get_evm_chain_id

__all__ = [
    "ERR_ASSET_MISMATCH",
    "ERR_CHAIN_READ_FAILED",
    "ERR_INSUFFICIENT_AMOUNT",
    "ERR_INSUFFICIENT_BALANCE",
    "ERR_INVALID_SIGNATURE",
    "ERR_NONCE_ALREADY_USED",
    "ERR_RECIPIENT_MISMATCH",
    "ERR_VALID_AFTER_FUTURE",
    "ERR_VALID_BEFORE_EXPIRED",
    "NETWORK_CONFIGS",
    "SCHEME_EXACT",
    "ClientEvmSigner",
    "EthAccountSigner",
    "ExactEvmScheme",
    "FacilitatorEvmSigner",
    "TransactionReceipt",
    "TypedDataDomain",
    "Web3FacilitatorSigner",
    "get_asset_info",
    "get_evm_chain_id",
]
