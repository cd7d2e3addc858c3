"""HTTP-based facilitator client for x402 protocol."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from ..exceptions import TransportError
from ..types import (
    X402_VERSION,
    PaymentPayload,
    PaymentRequirements,
    QuoteRequest,
    QuoteResponse,
    SettleResponse,
    SupportedResponse,
    VerifyResponse,
)
from .constants import DEFAULT_FACILITATOR_TIMEOUT, DEFAULT_FACILITATOR_URL, DEFAULT_QUOTE_PATH

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)


# ============================================================================
# Auth Provider Protocol
# ============================================================================


@dataclass
class AuthHeaders:
    """Authentication headers for facilitator endpoints."""

    verify: dict[str, str] = field(default_factory=dict)
    settle: dict[str, str] = field(default_factory=dict)
    supported: dict[str, str] = field(default_factory=dict)
    quote: dict[str, str] = field(default_factory=dict)


class AuthProvider(Protocol):
    """Generates authentication headers for facilitator requests."""

    def get_auth_headers(self) -> AuthHeaders:
        """Get authentication headers for each endpoint."""
        ...


class CreateHeadersAuthProvider:
    """AuthProvider that wraps a create_headers callable.

    Adapts a dict-style ``create_headers`` function to the AuthProvider
    protocol.
    """

    def __init__(self, create_headers: Callable[[], dict[str, dict[str, str]]]) -> None:
        self._create_headers = create_headers

    def get_auth_headers(self) -> AuthHeaders:
        """Get authentication headers by calling the create_headers function."""
        result = self._create_headers()
        return AuthHeaders(
            verify=result.get("verify", {}),
            settle=result.get("settle", {}),
            supported=result.get("supported", result.get("list", {})),
            quote=result.get("quote", {}),
        )


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class FacilitatorConfig:
    """Configuration for HTTP facilitator client."""

    url: str = DEFAULT_FACILITATOR_URL
    timeout: float = DEFAULT_FACILITATOR_TIMEOUT
    http_client: Any = None  # Optional httpx.Client
    auth_provider: AuthProvider | None = None
    quote_path: str = DEFAULT_QUOTE_PATH

    @classmethod
    def from_env(cls, prefix: str = "X402_FACILITATOR_") -> FacilitatorConfig:
        """Read ``{prefix}URL``, ``{prefix}TIMEOUT`` and ``{prefix}QUOTE_PATH``.

        Raises:
            ValueError: If the timeout is not a number.
        """
        return cls(
            url=os.environ.get(f"{prefix}URL", DEFAULT_FACILITATOR_URL),
            timeout=float(os.environ.get(f"{prefix}TIMEOUT", DEFAULT_FACILITATOR_TIMEOUT)),
            quote_path=os.environ.get(f"{prefix}QUOTE_PATH", DEFAULT_QUOTE_PATH),
        )


# ============================================================================
# HTTP Facilitator Client
# ============================================================================


class HTTPFacilitatorClient:
    """HTTP-based facilitator client.

    Answers are classified three ways:

    - 2xx with a parseable body: the typed result.
    - Non-2xx carrying an explicit verdict (``isValid``/``success`` false,
      or a 4xx with an ``error`` message): a failed result. This is the
      facilitator rejecting the payment.
    - Anything else (connection failure, timeout, non-JSON or unrecognised
      body, 5xx without a verdict): ``TransportError``. The payment's
      validity is unknown; nothing is retried automatically.
    """

    def __init__(self, config: FacilitatorConfig | dict[str, Any] | None = None) -> None:
        """Create HTTP facilitator client.

        Args:
            config: Optional configuration. Accepts either:
                - FacilitatorConfig dataclass (recommended)
                - Dict with 'url' and optional 'create_headers', 'timeout', 'quote_path'
                - None (uses defaults)
        """
        if isinstance(config, dict):
            create_headers = config.get("create_headers")
            config = FacilitatorConfig(
                url=config.get("url", DEFAULT_FACILITATOR_URL),
                timeout=config.get("timeout", DEFAULT_FACILITATOR_TIMEOUT),
                auth_provider=CreateHeadersAuthProvider(create_headers) if create_headers else None,
                quote_path=config.get("quote_path", DEFAULT_QUOTE_PATH),
            )
        else:
            config = config or FacilitatorConfig()

        self._url = config.url.rstrip("/")
        self._timeout = config.timeout
        self._auth_provider = config.auth_provider
        self._quote_path = "/" + config.quote_path.lstrip("/")
        self._http_client = config.http_client
        self._owns_client = config.http_client is None

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._http_client is None:
            import httpx

            self._http_client = httpx.Client(timeout=self._timeout, follow_redirects=True)
        return self._http_client

    def close(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client:
            self._http_client.close()
            self._http_client = None

    def __enter__(self) -> HTTPFacilitatorClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def url(self) -> str:
        """Get facilitator URL."""
        return self._url

    # =========================================================================
    # FacilitatorClient Implementation
    # =========================================================================

    def verify(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> VerifyResponse:
        """Verify a payment with the facilitator.

        Returns:
            VerifyResponse; ``is_valid=False`` when the facilitator rejects.

        Raises:
            TransportError: If the facilitator cannot give an answer.
        """
        data = self._post("/verify", self._payment_body(payload, requirements), "verify")
        return self._to_result(data, VerifyResponse, "isValid", "invalidReason", "verify")

    def settle(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> SettleResponse:
        """Settle a payment with the facilitator.

        Returns:
            SettleResponse; ``success=False`` when the facilitator rejects.

        Raises:
            TransportError: If the facilitator cannot give an answer.
        """
        data = self._post("/settle", self._payment_body(payload, requirements), "settle")
        result = self._to_result(data, SettleResponse, "success", "errorReason", "settle")
        if result.network is None:
            result.network = payload.network
        return result

    def get_supported(self) -> SupportedResponse:
        """Get supported payment kinds.

        Raises:
            TransportError: If the request fails or the answer is not a kinds list.
        """
        response = self._send("GET", "/supported", None, "supported")
        status, data = self._read_json(response, "supported")

        if not 200 <= status < 300:
            raise TransportError(
                f"Facilitator get_supported failed ({status}): {response.text}",
                status_code=status,
            )
        try:
            return SupportedResponse.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"Invalid supported response: {e}", status_code=status) from e

    def quote(self, request: QuoteRequest) -> QuoteResponse:
        """Request a payment quote.

        Returns:
            QuoteResponse; ``success=False`` when the facilitator declines.

        Raises:
            TransportError: If the facilitator cannot give an answer.
        """
        data = self._post(self._quote_path, request.to_wire(), "quote")
        return self._to_result(data, QuoteResponse, "success", "error", "quote")

    # =========================================================================
    # Internal HTTP Methods
    # =========================================================================

    @staticmethod
    def _payment_body(
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> dict[str, Any]:
        return {
            "x402Version": payload.x402_version or X402_VERSION,
            "paymentPayload": payload.to_wire(),
            "paymentRequirements": requirements.to_wire(),
        }

    def _headers(self, endpoint: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._auth_provider:
            auth = self._auth_provider.get_auth_headers()
            headers.update(getattr(auth, endpoint))
        return headers

    def _send(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None,
        endpoint: str,
    ) -> httpx.Response:
        import httpx

        client = self._get_client()
        try:
            return client.request(
                method,
                f"{self._url}{path}",
                headers=self._headers(endpoint),
                json=body,
            )
        except httpx.TimeoutException as e:
            logger.error("Facilitator %s timed out after %ss", endpoint, self._timeout)
            raise TransportError(f"Facilitator {endpoint} timed out") from e
        except httpx.HTTPError as e:
            logger.error("Facilitator %s request failed: %s", endpoint, e)
            raise TransportError(f"Facilitator {endpoint} request failed: {e}") from e

    @staticmethod
    def _read_json(response: httpx.Response, endpoint: str) -> tuple[int, Any]:
        try:
            return response.status_code, response.json()
        except ValueError as e:
            raise TransportError(
                f"Facilitator {endpoint} returned non-JSON body ({response.status_code})",
                status_code=response.status_code,
            ) from e

    def _post(self, path: str, body: dict[str, Any], endpoint: str) -> tuple[int, Any]:
        return self._read_json(self._send("POST", path, body, endpoint), endpoint)

    @staticmethod
    def _to_result(
        answer: tuple[int, Any],
        model: type[ResultT],
        verdict_key: str,
        reason_key: str,
        endpoint: str,
    ) -> ResultT:
        status, data = answer

        if not isinstance(data, dict):
            raise TransportError(
                f"Facilitator {endpoint} returned an unexpected body ({status})",
                status_code=status,
            )

        if 200 <= status < 300:
            try:
                return model.model_validate(data)
            except ValidationError as e:
                raise TransportError(
                    f"Invalid {endpoint} response: {e}", status_code=status
                ) from e

        # Non-2xx: only an explicit verdict counts as a rejection
        reason = data.get(reason_key) or data.get("error")
        if data.get(verdict_key) is False or (400 <= status < 500 and reason):
            logger.warning("Facilitator rejected %s (%s): %s", endpoint, status, reason)
            return model.model_validate(
                {**data, verdict_key: False, reason_key: reason or f"http_{status}"}
            )

        raise TransportError(
            f"Facilitator {endpoint} failed ({status}) without a verdict",
            status_code=status,
        )
