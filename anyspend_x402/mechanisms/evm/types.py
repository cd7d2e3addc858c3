"""EVM-specific types."""

from dataclasses import dataclass


@dataclass
class TypedDataDomain:
    """EIP-712 domain separator."""

    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


@dataclass
class TypedDataField:
    """Field in an EIP-712 type definition."""

    name: str
    type: str


@dataclass
class TransactionReceipt:
    """Minimal transaction receipt."""

    status: int
    block_number: int | None = None
    tx_hash: str | None = None
