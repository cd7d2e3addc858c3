"""SVM signer protocols."""

from typing import Protocol

from solders.signature import Signature


class ClientSvmSigner(Protocol):
    """Payer-side signing capability.

    Signs serialized transaction messages; key material stays inside.
    """

    @property
    def address(self) -> str: ...

    def sign_message(self, message: bytes) -> Signature: ...


class FacilitatorSvmSigner(Protocol):
    """Fee-payer side: co-signs, submits and confirms sponsored transactions."""

    def get_addresses(self) -> list[str]: ...

    def sign_transaction(self, tx_base64: str, fee_payer: str, network: str) -> str: ...

    def simulate_transaction(self, tx_base64: str, network: str) -> None: ...

    def send_transaction(self, tx_base64: str, network: str) -> str: ...

    def confirm_transaction(
        self,
        signature: str,
        network: str,
        timeout_seconds: int = 30,
    ) -> None: ...
