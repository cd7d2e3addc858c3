"""EVM signer protocols."""

from typing import Any, Protocol

from .types import TransactionReceipt, TypedDataDomain


class ClientEvmSigner(Protocol):
    """Payer-side signing capability.

    Produces EIP-712 signatures without exposing key material.
    """

    @property
    def address(self) -> str: ...

    def sign_typed_data(
        self,
        domain: TypedDataDomain,
        types: dict[str, list[dict[str, str]]],
        primary_type: str,
        message: dict[str, Any],
    ) -> bytes: ...


class FacilitatorEvmSigner(Protocol):
    """Facilitator-side chain access used for settlement."""

    def get_addresses(self) -> list[str]: ...

    def read_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        *args: Any,
    ) -> Any: ...

    def write_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        *args: Any,
    ) -> str: ...

    def wait_for_transaction_receipt(self, tx_hash: str) -> TransactionReceipt: ...
